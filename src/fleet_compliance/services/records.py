"""Compliance record lifecycle: onboarding, renewal and suspension."""

import logging
from datetime import datetime

from beartype import beartype

from ..core.errors import NotFoundError, StateTransitionError, ValidationError
from ..models.compliance import ComplianceDomain, ComplianceRecord, DomainThresholds
from ..models.monitoring import Alert, AlertStatus
from ..storage.base import AlertRepository, ComplianceRecordRepository
from .evaluator import evaluate

logger = logging.getLogger(__name__)


class RecordLifecycle:
    """Owns the changes to a record that are not driven by monitoring."""

    def __init__(
        self,
        records: ComplianceRecordRepository,
        alerts: AlertRepository,
        thresholds: dict[ComplianceDomain, DomainThresholds],
    ) -> None:
        self._records = records
        self._alerts = alerts
        self._thresholds = thresholds

    @beartype
    async def onboard(
        self, record: ComplianceRecord, now: datetime
    ) -> ComplianceRecord:
        """Add a new record with its status evaluated at ``now``."""
        evaluated = record.model_copy(
            update={
                "status": evaluate(record, now, self._thresholds[record.domain]),
                "last_evaluated_at": now,
            }
        )
        stored = await self._records.add(evaluated)
        logger.info(
            "Onboarded %s record for %s expiring %s",
            record.domain.value,
            record.entity_id,
            record.expiry_date.isoformat(),
        )
        return stored

    @beartype
    async def get(self, entity_id: str, domain: ComplianceDomain) -> ComplianceRecord:
        """Fetch a record."""
        record = await self._records.get(entity_id, domain)
        if record is None:
            raise NotFoundError(
                f"No {domain.value} record for {entity_id}",
                entity_id=entity_id,
                domain=domain.value,
            )
        return record

    @beartype
    async def renew(
        self,
        entity_id: str,
        domain: ComplianceDomain,
        new_expiry: datetime,
        now: datetime,
        issued_date: datetime | None = None,
        document_number: str | None = None,
    ) -> ComplianceRecord:
        """Start a new expiry cycle.

        Escalation history is cleared so levels can fire again for the new
        expiry, and the entity's active alerts for the domain are resolved.
        """
        record = await self.get(entity_id, domain)
        issued = issued_date or now
        if new_expiry <= record.expiry_date or new_expiry <= issued:
            raise ValidationError(
                "Renewal must extend the expiry date past the issue date",
                entity_id=entity_id,
                domain=domain.value,
            )

        renewed = record.next_version(
            expiry_date=new_expiry,
            issued_date=issued,
            document_number=document_number or record.document_number,
            renewal_count=record.renewal_count + 1,
            last_renewed_at=now,
            last_fired_escalation_level=None,
            pending_protective_level=None,
        )
        renewed = renewed.model_copy(
            update={
                "status": evaluate(renewed, now, self._thresholds[domain]),
                "last_evaluated_at": now,
            }
        )
        stored = await self._records.save(renewed)

        resolved = await self._resolve_alerts(entity_id, domain, now)
        logger.info(
            "Renewed %s for %s until %s; %d alert(s) resolved",
            domain.value,
            entity_id,
            new_expiry.isoformat(),
            len(resolved),
        )
        return stored

    @beartype
    async def suspend(
        self,
        entity_id: str,
        domain: ComplianceDomain,
        reason: str,
        now: datetime,
    ) -> ComplianceRecord:
        """Suspend an entity in one domain."""
        if not reason.strip():
            raise ValidationError(
                "A suspension reason is required", entity_id=entity_id
            )
        record = await self.get(entity_id, domain)
        if record.suspended:
            raise StateTransitionError(
                f"{entity_id} is already suspended for {domain.value}",
                current="suspended",
                target="suspended",
            )
        suspended = record.next_version(
            suspended=True,
            suspension_reason=reason,
            suspended_at=now,
        )
        suspended = suspended.model_copy(
            update={"status": evaluate(suspended, now, self._thresholds[domain])}
        )
        logger.warning("Suspended %s for %s: %s", entity_id, domain.value, reason)
        return await self._records.save(suspended)

    @beartype
    async def reinstate(
        self, entity_id: str, domain: ComplianceDomain, now: datetime
    ) -> ComplianceRecord:
        """Lift a suspension; status falls back to the expiry-based one."""
        record = await self.get(entity_id, domain)
        if not record.suspended:
            raise StateTransitionError(
                f"{entity_id} is not suspended for {domain.value}",
                current=record.status.value,
                target="reinstated",
            )
        reinstated = record.next_version(
            suspended=False, suspension_reason=None, suspended_at=None
        )
        reinstated = reinstated.model_copy(
            update={
                "status": evaluate(reinstated, now, self._thresholds[domain]),
                "last_evaluated_at": now,
            }
        )
        logger.info("Reinstated %s for %s", entity_id, domain.value)
        return await self._records.save(reinstated)

    async def _resolve_alerts(
        self, entity_id: str, domain: ComplianceDomain, now: datetime
    ) -> list[Alert]:
        resolved = []
        for alert in await self._alerts.list_active_for_entity(entity_id, domain):
            resolved.append(
                await self._alerts.save(
                    alert.next_version(status=AlertStatus.RESOLVED, resolved_at=now)
                )
            )
        return resolved
