"""Monitoring rule registry and stock rules."""

import calendar
import logging
from datetime import datetime, timedelta
from typing import Any

from beartype import beartype
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import NotFoundError, ValidationError
from ..models.compliance import ComplianceDomain, EntityKind
from ..models.monitoring import (
    AlertPriority,
    Applicability,
    CheckFrequency,
    DisableVehicle,
    EmailNotification,
    EscalationLevel,
    GenerateReport,
    InAppNotification,
    MonitoringRule,
    RecipientRole,
    SmsAlert,
    SuspendDriver,
)
from ..storage.base import MonitoringRuleRepository

logger = logging.getLogger(__name__)


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@beartype
def next_run_after(ran_at: datetime, frequency: CheckFrequency) -> datetime:
    """Next run time for a rule that ran at ``ran_at``.

    Monthly and quarterly cadences move by calendar months, clamped to the
    last day of shorter months.
    """
    match frequency:
        case CheckFrequency.DAILY:
            return ran_at + timedelta(days=1)
        case CheckFrequency.WEEKLY:
            return ran_at + timedelta(weeks=1)
        case CheckFrequency.MONTHLY:
            return _add_months(ran_at, 1)
        case CheckFrequency.QUARTERLY:
            return _add_months(ran_at, 3)
    raise ValueError(f"Unknown check frequency: {frequency}")


# Descriptor keys accepted in camelCase as well as snake_case.
_KEY_ALIASES = {
    "triggerCondition": "trigger_condition",
    "checkFrequency": "check_frequency",
    "escalationLevels": "escalation_levels",
    "daysFromExpiry": "days_from_expiry",
    "ownershipTypes": "ownership_types",
    "serviceTypes": "service_types",
    "entityKinds": "entity_kinds",
    "isActive": "is_active",
    "nextRunAt": "next_run_at",
}


def _normalize(data: dict[str, Any]) -> dict[str, Any]:
    return {_KEY_ALIASES.get(k, k): v for k, v in data.items()}


def _action_from_descriptor(action: dict[str, Any]) -> dict[str, Any]:
    action = _normalize(action)
    config = action.pop("config", None) or {}
    if not isinstance(config, dict):
        raise ValidationError(
            "Action config must be a mapping", kind=action.get("kind")
        )
    return {**config, **action}


@beartype
def rule_from_descriptor(descriptor: dict[str, Any], now: datetime) -> MonitoringRule:
    """Build a rule from a domain-agnostic descriptor.

    Descriptor shape::

        {id, name?, domain, triggerCondition, checkFrequency,
         escalationLevels: [{level, daysFromExpiry, recipients?,
                             actions: [{kind, config, recipients?}]}],
         applicability: {regions, ownershipTypes, serviceTypes, entityKinds}}
    """
    try:
        data = _normalize(descriptor)
        levels = [
            {
                **_normalize(level),
                "actions": [
                    _action_from_descriptor(a)
                    for a in _normalize(level).get("actions", [])
                ],
            }
            for level in data.get("escalation_levels", [])
        ]
        data["escalation_levels"] = levels
        data["applicability"] = _normalize(data.get("applicability") or {})
        data.setdefault("name", data.get("id"))
        data.setdefault("next_run_at", now)
        return MonitoringRule.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid monitoring rule descriptor: {e.error_count()} error(s)",
            rule_id=descriptor.get("id"),
            errors=e.errors(include_url=False),
        ) from e
    except (AttributeError, TypeError) as e:
        raise ValidationError(
            f"Malformed monitoring rule descriptor: {e}", rule_id=descriptor.get("id")
        ) from e


class RuleRegistry:
    """Holds domain-scoped monitoring rules and their cadence."""

    def __init__(self, repository: MonitoringRuleRepository) -> None:
        self._repository = repository

    @beartype
    async def register(self, rule: MonitoringRule) -> MonitoringRule:
        """Store a new rule; ConflictError on duplicate id."""
        stored = await self._repository.add(rule)
        logger.info("Registered monitoring rule %s (%s)", rule.id, rule.domain.value)
        return stored

    @beartype
    async def load_descriptors(
        self, descriptors: list[dict[str, Any]], now: datetime
    ) -> list[MonitoringRule]:
        """Validate every descriptor, then register them all."""
        rules = [rule_from_descriptor(d, now) for d in descriptors]
        return [await self.register(rule) for rule in rules]

    @beartype
    async def get(self, rule_id: str) -> MonitoringRule:
        """Fetch a rule or raise NotFoundError."""
        rule = await self._repository.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Monitoring rule {rule_id} not found", rule_id=rule_id)
        return rule

    @beartype
    async def list_rules(
        self, domain: ComplianceDomain | None = None
    ) -> list[MonitoringRule]:
        """All rules, optionally for one domain."""
        rules = await self._repository.list_all()
        return [r for r in rules if domain is None or r.domain == domain]

    @beartype
    async def due_rules(self, now: datetime) -> list[MonitoringRule]:
        """Active rules whose next run is at or before ``now``."""
        rules = await self._repository.list_all()
        return sorted(
            (r for r in rules if r.is_active and r.next_run_at <= now),
            key=lambda r: (r.next_run_at, r.id),
        )

    @beartype
    async def advance(self, rule_id: str, ran_at: datetime) -> MonitoringRule:
        """Record a run and schedule the next one."""
        rule = await self.get(rule_id)
        updated = rule.next_version(
            last_run_at=ran_at,
            next_run_at=next_run_after(ran_at, rule.check_frequency),
        )
        return await self._repository.save(updated)

    @beartype
    async def set_active(self, rule_id: str, active: bool) -> MonitoringRule:
        """Enable or disable a rule."""
        rule = await self.get(rule_id)
        if rule.is_active == active:
            return rule
        return await self._repository.save(rule.next_version(is_active=active))


_OWNER = RecipientRole.VEHICLE_OWNER
_DRIVER = RecipientRole.DRIVER
_COMPLIANCE = RecipientRole.COMPLIANCE_TEAM
_OPS = RecipientRole.OPERATIONS_MANAGER
_LEGAL = RecipientRole.LEGAL_TEAM
_INSURANCE = RecipientRole.INSURANCE_TEAM
_ENVIRONMENTAL = RecipientRole.ENVIRONMENTAL_TEAM


@beartype
def default_monitoring_rules(now: datetime) -> list[MonitoringRule]:
    """Stock rules for the four regulatory domains, first run at ``now``."""
    vehicles = Applicability(entity_kinds=frozenset({EntityKind.VEHICLE}))
    drivers = Applicability(entity_kinds=frozenset({EntityKind.DRIVER}))
    critical = InAppNotification(priority=AlertPriority.CRITICAL)

    return [
        MonitoringRule(
            id="ltfrb-expiry-warning",
            name="LTFRB Franchise Expiry Warning",
            domain=ComplianceDomain.FRANCHISE,
            trigger_condition="expiry_approaching",
            check_frequency=CheckFrequency.DAILY,
            applicability=vehicles,
            next_run_at=now,
            escalation_levels=(
                EscalationLevel(
                    level=1,
                    days_from_expiry=60,
                    actions=(EmailNotification(template="franchise_expiry_60_days"),),
                    recipients=(_OWNER, _COMPLIANCE),
                ),
                EscalationLevel(
                    level=2,
                    days_from_expiry=30,
                    actions=(
                        EmailNotification(template="franchise_expiry_30_days"),
                        SmsAlert(template="franchise_expiry_sms"),
                    ),
                    recipients=(_OWNER, _DRIVER, _COMPLIANCE),
                ),
                EscalationLevel(
                    level=3,
                    days_from_expiry=7,
                    actions=(
                        EmailNotification(template="franchise_expiry_critical"),
                        SmsAlert(template="franchise_expiry_critical_sms"),
                        critical,
                    ),
                    recipients=(_OWNER, _DRIVER, _COMPLIANCE, _OPS),
                ),
                EscalationLevel(
                    level=4,
                    days_from_expiry=-1,
                    actions=(
                        DisableVehicle(reason="franchise_expired"),
                        EmailNotification(template="franchise_expired"),
                        GenerateReport(report_type="violation_report"),
                    ),
                    recipients=(_OWNER, _DRIVER, _COMPLIANCE, _OPS, _LEGAL),
                ),
            ),
        ),
        MonitoringRule(
            id="lto-registration-expiry",
            name="Vehicle Registration Expiry Monitoring",
            domain=ComplianceDomain.REGISTRATION,
            trigger_condition="expiry_approaching",
            check_frequency=CheckFrequency.DAILY,
            applicability=vehicles,
            next_run_at=now,
            escalation_levels=(
                EscalationLevel(
                    level=1,
                    days_from_expiry=60,
                    actions=(
                        EmailNotification(template="registration_expiry_60_days"),
                    ),
                    recipients=(_OWNER, _COMPLIANCE),
                ),
                EscalationLevel(
                    level=2,
                    days_from_expiry=30,
                    actions=(
                        EmailNotification(template="registration_expiry_30_days"),
                        SmsAlert(template="registration_expiry_sms"),
                    ),
                    recipients=(_OWNER, _DRIVER, _COMPLIANCE),
                ),
                EscalationLevel(
                    level=3,
                    days_from_expiry=7,
                    actions=(
                        EmailNotification(template="registration_expiry_critical"),
                        critical,
                    ),
                    recipients=(_OWNER, _DRIVER, _COMPLIANCE, _OPS),
                ),
            ),
        ),
        MonitoringRule(
            id="lto-license-expiry",
            name="Driver License Expiry Monitoring",
            domain=ComplianceDomain.REGISTRATION,
            trigger_condition="expiry_approaching",
            check_frequency=CheckFrequency.DAILY,
            applicability=drivers,
            next_run_at=now,
            escalation_levels=(
                EscalationLevel(
                    level=1,
                    days_from_expiry=30,
                    actions=(EmailNotification(template="license_expiry_30_days"),),
                    recipients=(_DRIVER, _COMPLIANCE),
                ),
                EscalationLevel(
                    level=2,
                    days_from_expiry=14,
                    actions=(
                        EmailNotification(template="license_expiry_14_days"),
                        SmsAlert(template="license_expiry_sms"),
                    ),
                    recipients=(_DRIVER, _COMPLIANCE, _OPS),
                ),
                EscalationLevel(
                    level=3,
                    days_from_expiry=-1,
                    actions=(
                        SuspendDriver(reason="license_expired"),
                        EmailNotification(template="license_expired"),
                    ),
                    recipients=(_DRIVER, _COMPLIANCE, _OPS),
                ),
            ),
        ),
        MonitoringRule(
            id="insurance-expiry-monitoring",
            name="Insurance Policy Expiry Monitoring",
            domain=ComplianceDomain.INSURANCE,
            trigger_condition="expiry_approaching",
            check_frequency=CheckFrequency.DAILY,
            applicability=vehicles,
            next_run_at=now,
            escalation_levels=(
                EscalationLevel(
                    level=1,
                    days_from_expiry=45,
                    actions=(EmailNotification(template="insurance_expiry_45_days"),),
                    recipients=(_OWNER, _INSURANCE),
                ),
                EscalationLevel(
                    level=2,
                    days_from_expiry=15,
                    actions=(
                        EmailNotification(template="insurance_expiry_15_days"),
                        SmsAlert(template="insurance_expiry_sms"),
                    ),
                    recipients=(_OWNER, _DRIVER, _INSURANCE),
                ),
                EscalationLevel(
                    level=3,
                    days_from_expiry=7,
                    actions=(
                        EmailNotification(template="insurance_expiry_critical"),
                        critical,
                    ),
                    recipients=(_OWNER, _DRIVER, _INSURANCE, _OPS),
                ),
                EscalationLevel(
                    level=4,
                    days_from_expiry=-1,
                    actions=(
                        DisableVehicle(reason="insurance_expired"),
                        EmailNotification(template="insurance_expired"),
                    ),
                    recipients=(_OWNER, _DRIVER, _INSURANCE, _OPS, _COMPLIANCE),
                ),
            ),
        ),
        MonitoringRule(
            id="environmental-emissions-monitoring",
            name="Emissions Testing Compliance Monitoring",
            domain=ComplianceDomain.ENVIRONMENTAL,
            trigger_condition="expiry_approaching",
            check_frequency=CheckFrequency.WEEKLY,
            applicability=vehicles,
            next_run_at=now,
            escalation_levels=(
                EscalationLevel(
                    level=1,
                    days_from_expiry=30,
                    actions=(
                        EmailNotification(template="emissions_test_due_30_days"),
                    ),
                    recipients=(_OWNER, _ENVIRONMENTAL),
                ),
                EscalationLevel(
                    level=2,
                    days_from_expiry=7,
                    actions=(
                        EmailNotification(template="emissions_test_due_7_days"),
                        SmsAlert(template="emissions_test_sms"),
                    ),
                    recipients=(_OWNER, _DRIVER, _ENVIRONMENTAL),
                ),
                EscalationLevel(
                    level=3,
                    days_from_expiry=-7,
                    actions=(
                        DisableVehicle(reason="emissions_test_overdue"),
                        EmailNotification(template="emissions_test_overdue"),
                    ),
                    recipients=(_OWNER, _DRIVER, _ENVIRONMENTAL, _COMPLIANCE),
                ),
            ),
        ),
    ]
