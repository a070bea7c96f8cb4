"""On-demand compliance checks and bulk agency sync.

Status always comes from locally known dates. Agency verification only adds
confidence: when it fails, times out or the agency is down, the domain is
reported unverified and its status is left as computed.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from beartype import beartype

from ..core.cache import Cache, ReadThroughCache
from ..core.config import Settings
from ..core.errors import ComplianceError, ExternalServiceError, NotFoundError
from ..core.logging_utils import log_context
from ..core.performance_monitor import performance_monitor
from ..models.compliance import (
    ComplianceDomain,
    ComplianceRecord,
    ComplianceStatus,
    DomainThresholds,
)
from ..models.violation import Violation, ViolationStatus
from ..schemas.compliance import (
    AgencyHealth,
    BulkSyncResult,
    ComplianceCheckRequest,
    ComplianceCheckResponse,
    DomainComplianceStatus,
    EntitySyncResult,
    SyncOutcome,
    VerificationRef,
    VerificationResult,
)
from ..storage.base import AlertRepository, ComplianceRecordRepository
from .evaluator import days_until_expiry, evaluate, is_critical
from .gateway import GovernmentGateway, agency_for
from .violation_ledger import ViolationLedger

logger = logging.getLogger(__name__)

_OUTSTANDING = frozenset({ViolationStatus.PENDING, ViolationStatus.OVERDUE})


def verification_cache(
    ttl_seconds: int, backend: Cache | None = None
) -> ReadThroughCache[VerificationResult]:
    """Read-through cache of successful agency verifications."""
    return ReadThroughCache(
        "verification",
        ttl_seconds,
        backend=backend,
        encode=lambda result: result.model_dump(mode="json"),
        decode=VerificationResult.model_validate,
    )


@beartype
def recommendations_for(
    statuses: Sequence[DomainComplianceStatus],
    records: Sequence[ComplianceRecord],
    violations: Sequence[Violation],
) -> tuple[str, ...]:
    """Actionable advice for the checked entity."""
    reasons = {r.domain: r.suspension_reason for r in records if r.suspended}
    advice: list[str] = []
    for status in statuses:
        name = status.domain.value
        match status.status:
            case ComplianceStatus.SUSPENDED:
                advice.append(
                    f"Resolve {name} suspension: {reasons.get(status.domain)}"
                )
            case ComplianceStatus.EXPIRED:
                advice.append(
                    f"Renew {name} document immediately; expired "
                    f"{-status.days_until_expiry} day(s) ago"
                )
            case ComplianceStatus.EXPIRING_SOON if status.is_critical:
                advice.append(
                    f"Urgent: renew {name} document within "
                    f"{status.days_until_expiry} day(s)"
                )
            case ComplianceStatus.EXPIRING_SOON:
                advice.append(
                    f"Schedule {name} renewal before "
                    f"{status.expiry_date.date().isoformat()}"
                )
        if status.verification_error is not None:
            advice.append(f"Confirm {name} document manually with the agency")

    outstanding = [v for v in violations if v.status in _OUTSTANDING]
    overdue = sum(1 for v in outstanding if v.status == ViolationStatus.OVERDUE)
    if overdue:
        advice.append(f"Settle {overdue} overdue violation(s)")
    if len(outstanding) > overdue:
        pending = len(outstanding) - overdue
        advice.append(f"Pay or contest {pending} pending violation(s)")
    return tuple(advice)


class ComplianceCheckService:
    """Best-effort compliance snapshot of one entity, and bulk sync."""

    def __init__(
        self,
        records: ComplianceRecordRepository,
        alerts: AlertRepository,
        ledger: ViolationLedger,
        gateway: GovernmentGateway,
        settings: Settings,
        thresholds: dict[ComplianceDomain, DomainThresholds] | None = None,
        cache: ReadThroughCache[VerificationResult] | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._records = records
        self._alerts = alerts
        self._ledger = ledger
        self._gateway = gateway
        self._thresholds = thresholds or settings.domain_thresholds()
        self._timeout = settings.compliance_check_timeout_seconds
        self._bulk_concurrency = settings.bulk_sync_concurrency
        self._cache = cache or verification_cache(
            settings.verification_cache_ttl_seconds
        )
        self._clock = clock

    @beartype
    @performance_monitor("compliance_check", max_duration_ms=15000)
    async def check(
        self, request: ComplianceCheckRequest, now: datetime | None = None
    ) -> ComplianceCheckResponse:
        """Evaluate an entity's records and verify them with the agencies.

        Raises:
            NotFoundError: the entity has no records in the requested domains.
        """
        now = now or self._clock()
        records = await self._records.list_for_entity(request.entity_id)
        if request.domains is not None:
            records = [r for r in records if r.domain in request.domains]
        if not records:
            raise NotFoundError(
                f"No compliance records for {request.entity_id}",
                entity_id=request.entity_id,
            )

        verifications = await asyncio.gather(
            *(self._verify_bounded(r, request.force_refresh) for r in records)
        )
        statuses = [
            self._domain_status(record, now, verification)
            for record, verification in zip(records, verifications)
        ]

        alerts = await self._alerts.list_active_for_entity(request.entity_id)
        checked = {r.domain for r in records}
        violations = await self._ledger.list_for_entity(request.entity_id)

        return ComplianceCheckResponse(
            entity_id=request.entity_id,
            status_by_domain={s.domain: s for s in statuses},
            active_alerts=tuple(a for a in alerts if a.domain in checked),
            recommendations=recommendations_for(statuses, records, violations),
            last_checked=now,
        )

    def _domain_status(
        self,
        record: ComplianceRecord,
        now: datetime,
        verification: tuple[VerificationResult | None, str | None],
    ) -> DomainComplianceStatus:
        thresholds = self._thresholds[record.domain]
        days = days_until_expiry(record.expiry_date, now)
        result, error = verification
        if result is not None and not result.valid:
            error = f"{result.agency.value} reports the document invalid"
        return DomainComplianceStatus(
            domain=record.domain,
            status=evaluate(record, now, thresholds),
            days_until_expiry=days,
            expiry_date=record.expiry_date,
            is_critical=is_critical(days, thresholds),
            verified=result is not None and result.valid,
            verification_error=error,
            agency=agency_for(record.domain),
        )

    async def _verify_bounded(
        self, record: ComplianceRecord, force_refresh: bool
    ) -> tuple[VerificationResult | None, str | None]:
        context = log_context(entity=record.entity_id, domain=record.domain.value)
        try:
            result = await asyncio.wait_for(
                self._verify(record, force_refresh), timeout=self._timeout
            )
        except TimeoutError:
            logger.warning("Verification timed out %s", context)
            return None, "verification timed out"
        except ExternalServiceError as e:
            logger.warning("Verification failed %s: %s", context, e)
            return None, e.message
        return result, None

    async def _verify(
        self, record: ComplianceRecord, force_refresh: bool
    ) -> VerificationResult:
        agency = agency_for(record.domain)
        if await self._gateway.health_status(agency) == AgencyHealth.DOWN:
            raise ExternalServiceError.unavailable(agency.value, "agency is down")

        ref = VerificationRef(
            entity_id=record.entity_id,
            domain=record.domain,
            document_number=record.document_number,
        )

        async def load() -> VerificationResult:
            result = await self._gateway.verify(ref)
            if result.is_err():
                raise result.unwrap_err()
            return result.unwrap()

        key = f"{record.entity_id}:{record.domain.value}:{record.document_number}"
        return await self._cache.get_or_load(key, load, force_refresh=force_refresh)

    @beartype
    async def bulk_sync(
        self,
        entity_ids: Sequence[str],
        domains: tuple[ComplianceDomain, ...] | None = None,
        deadline: datetime | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> BulkSyncResult:
        """Re-verify many entities with bounded concurrency.

        Once ``deadline`` passes or ``cancel_event`` is set no new entity is
        started; entities already in flight finish. Entities never started
        are reported as skipped.
        """
        started_at = self._clock()
        semaphore = asyncio.Semaphore(self._bulk_concurrency)
        stop_reason: list[str] = []

        def should_stop() -> str | None:
            if stop_reason:
                return stop_reason[0]
            if cancel_event is not None and cancel_event.is_set():
                stop_reason.append("cancelled")
            elif deadline is not None and self._clock() >= deadline:
                stop_reason.append("deadline reached")
            return stop_reason[0] if stop_reason else None

        async def sync_one(entity_id: str) -> EntitySyncResult:
            async with semaphore:
                reason = should_stop()
                if reason is not None:
                    return EntitySyncResult(
                        entity_id=entity_id, outcome=SyncOutcome.SKIPPED, error=reason
                    )
                return await self._sync_entity(entity_id, domains)

        results = await asyncio.gather(*(sync_one(e) for e in entity_ids))
        report = BulkSyncResult(
            results=tuple(results),
            started_at=started_at,
            finished_at=self._clock(),
            cancelled=bool(stop_reason),
        )
        logger.info(
            "Bulk sync finished: %d succeeded, %d failed, %d skipped",
            report.succeeded,
            report.failed,
            report.skipped,
        )
        return report

    async def _sync_entity(
        self, entity_id: str, domains: tuple[ComplianceDomain, ...] | None
    ) -> EntitySyncResult:
        try:
            response = await self.check(
                ComplianceCheckRequest(
                    entity_id=entity_id, domains=domains, force_refresh=True
                )
            )
        except ComplianceError as e:
            logger.warning("Sync failed %s: %s", log_context(entity=entity_id), e)
            return EntitySyncResult(
                entity_id=entity_id, outcome=SyncOutcome.FAILED, error=e.message
            )
        except Exception as e:
            logger.exception("Sync failed %s", log_context(entity=entity_id))
            return EntitySyncResult(
                entity_id=entity_id,
                outcome=SyncOutcome.FAILED,
                error=f"{type(e).__name__}: {e}",
            )
        return EntitySyncResult(
            entity_id=entity_id,
            outcome=SyncOutcome.SUCCESS,
            domains=tuple(response.status_by_domain.values()),
        )
