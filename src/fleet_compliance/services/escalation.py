"""Escalation orchestrator.

For each entity a rule applies to, the orchestrator recomputes the compliance
status and fires the most severe escalation level already crossed, at most
once per level per expiry cycle. ``last_fired_escalation_level`` on the
record is the dedup marker; renewal resets it. A level whose protective
action failed still counts as fired, and ``pending_protective_level`` marks
it so later runs retry only its protective actions.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from functools import partial
from typing import assert_never
from uuid import uuid4

from beartype import beartype

from ..core.errors import ExternalServiceError
from ..core.logging_utils import log_context
from ..core.performance_monitor import performance_monitor
from ..core.result_types import Err, Ok, Result
from ..models.compliance import (
    ComplianceDomain,
    ComplianceRecord,
    DomainThresholds,
)
from ..models.monitoring import (
    PROTECTIVE_ACTION_KINDS,
    Alert,
    AlertPriority,
    ApiCall,
    DisableVehicle,
    EmailNotification,
    EscalationAction,
    EscalationLevel,
    FiredEscalation,
    GenerateReport,
    InAppNotification,
    MonitoringRule,
    RecipientRole,
    SmsAlert,
    SuspendDriver,
)
from ..models.violation import ViolationDomain
from ..storage.base import AlertRepository, ComplianceRecordRepository
from .evaluator import days_until_expiry, evaluate, is_critical
from .fleet import FleetOperations, ReportRequest
from .gateway import GovernmentGateway
from .notifications import Notification, NotificationChannel, NotificationDispatcher

logger = logging.getLogger(__name__)

_FALLBACK_RECIPIENTS = (RecipientRole.COMPLIANCE_TEAM,)


@beartype
def select_level(
    levels: tuple[EscalationLevel, ...], days: int
) -> EscalationLevel | None:
    """Most severe level whose threshold has been crossed.

    ``levels`` are ordered earliest warning first, so the last crossed one
    has the lowest ``days_from_expiry``.
    """
    crossed = [lvl for lvl in levels if lvl.days_from_expiry >= days]
    return crossed[-1] if crossed else None


def _action_label(action: EscalationAction) -> str:
    match action:
        case EmailNotification(template=template) | SmsAlert(template=template):
            return f"{action.kind}:{template}"
        case DisableVehicle(reason=reason) | SuspendDriver(reason=reason):
            return f"{action.kind}:{reason}"
        case GenerateReport(report_type=report_type):
            return f"{action.kind}:{report_type}"
        case ApiCall(agency=agency, endpoint=endpoint):
            return f"{action.kind}:{agency.value}{endpoint}"
        case InAppNotification(priority=priority):
            return f"{action.kind}:{priority.value}"
        case _:
            assert_never(action)


class EscalationOrchestrator:
    """Runs monitoring rules against compliance records."""

    def __init__(
        self,
        records: ComplianceRecordRepository,
        alerts: AlertRepository,
        dispatcher: NotificationDispatcher,
        fleet: FleetOperations,
        gateway: GovernmentGateway,
        thresholds: dict[ComplianceDomain, DomainThresholds],
        id_factory: Callable[[], str] = lambda: uuid4().hex,
    ) -> None:
        self._records = records
        self._alerts = alerts
        self._dispatcher = dispatcher
        self._fleet = fleet
        self._gateway = gateway
        self._thresholds = thresholds
        self._new_id = id_factory

    @beartype
    @performance_monitor("escalation_run_rule", max_duration_ms=30000)
    async def run_rule(
        self, rule: MonitoringRule, now: datetime
    ) -> Result[list[FiredEscalation], str]:
        """Evaluate every applicable entity and fire due escalations.

        Per-entity failures are logged and skipped; only a failure to list the
        rule's entities makes the run fail.
        """
        try:
            records = await self._records.list_by_domain(rule.domain)
        except Exception as e:
            logger.exception(
                "Could not list records for rule %s", rule.id, extra={"rule": rule.id}
            )
            return Err(f"Failed to list {rule.domain.value} records: {e}")

        fired: list[FiredEscalation] = []
        for record in records:
            if not rule.applies_to(record):
                continue
            try:
                escalation = await self._process_record(rule, record, now)
            except Exception:
                logger.exception(
                    "Escalation failed %s",
                    log_context(rule=rule.id, entity=record.entity_id),
                )
                continue
            if escalation is not None:
                fired.append(escalation)

        logger.info(
            "Rule %s evaluated at %s: %d escalation(s) fired",
            rule.id,
            now.isoformat(),
            len(fired),
        )
        return Ok(fired)

    async def _process_record(
        self, rule: MonitoringRule, record: ComplianceRecord, now: datetime
    ) -> FiredEscalation | None:
        thresholds = self._thresholds[record.domain]
        status = evaluate(record, now, thresholds)
        days = days_until_expiry(record.expiry_date, now)
        if record.pending_protective_level is not None:
            record = await self._retry_protective(rule, record, days, now)
        level = select_level(rule.escalation_levels, days)
        last_fired = record.last_fired_escalation_level or 0

        if level is None or level.level <= last_fired:
            if status != record.status:
                await self._records.save(
                    record.next_version(status=status, last_evaluated_at=now)
                )
            return None

        dispatched, failed, protective_failed = await self._dispatch_level(
            rule, record, level, days, now
        )
        await self._alerts.add(self._build_alert(rule, record, level, days, now))

        pending = record.pending_protective_level
        if protective_failed:
            pending = level.level
            logger.warning(
                "Protective action failed, retry pending %s",
                log_context(rule=rule.id, entity=record.entity_id, level=level.level),
            )

        await self._records.save(
            record.next_version(
                status=status,
                last_evaluated_at=now,
                last_fired_escalation_level=level.level,
                pending_protective_level=pending,
            )
        )
        return FiredEscalation(
            rule_id=rule.id,
            entity_id=record.entity_id,
            domain=record.domain,
            level=level.level,
            days_until_expiry=days,
            expiry_date=record.expiry_date,
            fired_at=now,
            dispatched_actions=tuple(dispatched),
            failed_actions=tuple(failed),
        )

    async def _dispatch_level(
        self,
        rule: MonitoringRule,
        record: ComplianceRecord,
        level: EscalationLevel,
        days: int,
        now: datetime,
    ) -> tuple[list[str], list[str], bool]:
        dispatched: list[str] = []
        failed: list[str] = []
        protective_failed = False

        for action in level.actions:
            label = _action_label(action)
            try:
                await self._dispatch_action(rule, record, level, action, days, now)
            except Exception as e:
                failed.append(label)
                if action.kind in PROTECTIVE_ACTION_KINDS:
                    protective_failed = True
                context = log_context(rule=rule.id, entity=record.entity_id)
                if isinstance(e, ExternalServiceError):
                    logger.warning("Action %s failed %s: %s", label, context, e)
                else:
                    logger.exception("Action %s failed %s", label, context)
            else:
                dispatched.append(label)

        return dispatched, failed, protective_failed

    async def _retry_protective(
        self,
        rule: MonitoringRule,
        record: ComplianceRecord,
        days: int,
        now: datetime,
    ) -> ComplianceRecord:
        """Re-issue the protective actions of an already fired level.

        Notifications and alerts of that level are not repeated. The marker is
        cleared once every protective action succeeds.
        """
        pending = record.pending_protective_level
        context = log_context(rule=rule.id, entity=record.entity_id, level=pending)
        level = next(
            (lvl for lvl in rule.escalation_levels if lvl.level == pending), None
        )
        if level is None:
            logger.warning("Pending level no longer in rule %s", context)
        else:
            for action in level.actions:
                if action.kind not in PROTECTIVE_ACTION_KINDS:
                    continue
                try:
                    await self._dispatch_action(rule, record, level, action, days, now)
                except Exception as e:
                    label = _action_label(action)
                    if isinstance(e, ExternalServiceError):
                        logger.warning("Retry of %s failed %s: %s", label, context, e)
                    else:
                        logger.exception("Retry of %s failed %s", label, context)
                    return record
            logger.info("Protective actions completed %s", context)

        return await self._records.save(
            record.next_version(pending_protective_level=None)
        )

    async def _dispatch_action(
        self,
        rule: MonitoringRule,
        record: ComplianceRecord,
        level: EscalationLevel,
        action: EscalationAction,
        days: int,
        now: datetime,
    ) -> None:
        notify = partial(self._notify, rule, record, level, action, days)
        match action:
            case EmailNotification(template=template):
                await notify(NotificationChannel.EMAIL, template, AlertPriority.MEDIUM)
            case SmsAlert(template=template):
                await notify(NotificationChannel.SMS, template, AlertPriority.HIGH)
            case InAppNotification(priority=priority):
                template = f"{rule.id}.level_{level.level}"
                await notify(NotificationChannel.IN_APP, template, priority)
            case DisableVehicle(reason=reason):
                changed = await self._fleet.disable_vehicle(record.entity_id, reason)
                if not changed:
                    logger.info("Vehicle %s already disabled", record.entity_id)
            case SuspendDriver(reason=reason):
                changed = await self._fleet.suspend_driver(record.entity_id, reason)
                if not changed:
                    logger.info("Driver %s already suspended", record.entity_id)
            case GenerateReport(report_type=report_type):
                await self._fleet.request_report(
                    ReportRequest(
                        report_type=report_type,
                        entity_id=record.entity_id,
                        domain=record.domain,
                        requested_at=now,
                    )
                )
            case ApiCall(agency=agency, endpoint=endpoint):
                result = await self._gateway.submit(
                    agency,
                    endpoint,
                    {
                        "entity_id": record.entity_id,
                        "domain": record.domain.value,
                        "document_number": record.document_number,
                        "expiry_date": record.expiry_date.isoformat(),
                        "days_until_expiry": days,
                        "escalation_level": level.level,
                    },
                )
                if result.is_err():
                    raise result.unwrap_err()
            case _:
                assert_never(action)

    async def _notify(
        self,
        rule: MonitoringRule,
        record: ComplianceRecord,
        level: EscalationLevel,
        action: EscalationAction,
        days: int,
        channel: NotificationChannel,
        template: str,
        priority: AlertPriority,
    ) -> None:
        recipients = level.recipients_for(action) or _FALLBACK_RECIPIENTS
        await self._dispatcher.send(
            Notification(
                channel=channel,
                recipients=recipients,
                template=template,
                priority=priority,
                entity_id=record.entity_id,
                domain=ViolationDomain(record.domain.value),
                context={
                    "rule_id": rule.id,
                    "escalation_level": str(level.level),
                    "days_until_expiry": str(days),
                    "expiry_date": record.expiry_date.isoformat(),
                    "document_number": record.document_number or "",
                },
            )
        )

    def _build_alert(
        self,
        rule: MonitoringRule,
        record: ComplianceRecord,
        level: EscalationLevel,
        days: int,
        now: datetime,
    ) -> Alert:
        thresholds = self._thresholds[record.domain]
        if days < 0:
            priority = AlertPriority.CRITICAL
            message = (
                f"{record.domain.value.title()} document for {record.entity_id} "
                f"expired {-days} day(s) ago"
            )
        else:
            if is_critical(days, thresholds):
                priority = AlertPriority.CRITICAL
            elif level.level > 1:
                priority = AlertPriority.HIGH
            else:
                priority = AlertPriority.MEDIUM
            message = (
                f"{record.domain.value.title()} document for {record.entity_id} "
                f"expires in {days} day(s)"
            )
        if record.suspended:
            message = f"{message}; entity is suspended"

        return Alert(
            id=self._new_id(),
            entity_id=record.entity_id,
            domain=record.domain,
            priority=priority,
            title=f"{rule.name}: level {level.level}",
            message=message,
            rule_id=rule.id,
            escalation_level=level.level,
            expiry_date=record.expiry_date,
            created_at=now,
            metadata={"days_until_expiry": str(days)},
        )
