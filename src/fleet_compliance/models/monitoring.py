"""Monitoring rule, escalation and alert models.

Escalation actions are a tagged union discriminated by ``kind`` so the
orchestrator can dispatch every kind exhaustively.
"""

from enum import Enum
from typing import Annotated, Literal

from beartype import beartype
from pydantic import AwareDatetime, Field, field_validator

from .base import BaseModelConfig, VersionedModel
from .compliance import (
    ComplianceDomain,
    ComplianceRecord,
    EntityKind,
    OwnershipType,
    Region,
    ServiceType,
)


class CheckFrequency(str, Enum):
    """How often a monitoring rule runs."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class RecipientRole(str, Enum):
    """Roles that receive escalation notifications."""

    VEHICLE_OWNER = "vehicle_owner"
    DRIVER = "driver"
    COMPLIANCE_TEAM = "compliance_team"
    OPERATIONS_MANAGER = "operations_manager"
    LEGAL_TEAM = "legal_team"
    INSURANCE_TEAM = "insurance_team"
    ENVIRONMENTAL_TEAM = "environmental_team"


class AlertPriority(str, Enum):
    """Alert and in-app notification priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    """Alert lifecycle status."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class GovernmentAgency(str, Enum):
    """Agencies reachable through the government gateway."""

    LTFRB = "ltfrb"
    LTO = "lto"
    INSURANCE_COMMISSION = "insurance_commission"
    MMDA = "mmda"


class _ActionBase(BaseModelConfig):
    recipients: tuple[RecipientRole, ...] = Field(
        default=(), description="Overrides the level recipients when non-empty"
    )


@beartype
class EmailNotification(_ActionBase):
    """Send an email from a template."""

    kind: Literal["email_notification"] = "email_notification"
    template: str = Field(..., min_length=1)


@beartype
class SmsAlert(_ActionBase):
    """Send an SMS from a template."""

    kind: Literal["sms_alert"] = "sms_alert"
    template: str = Field(..., min_length=1)


@beartype
class InAppNotification(_ActionBase):
    """Raise an in-app notification."""

    kind: Literal["in_app_notification"] = "in_app_notification"
    priority: AlertPriority = Field(default=AlertPriority.MEDIUM)


@beartype
class DisableVehicle(_ActionBase):
    """Take a vehicle off the road."""

    kind: Literal["disable_vehicle"] = "disable_vehicle"
    reason: str = Field(..., min_length=1)


@beartype
class SuspendDriver(_ActionBase):
    """Suspend a driver."""

    kind: Literal["suspend_driver"] = "suspend_driver"
    reason: str = Field(..., min_length=1)


@beartype
class GenerateReport(_ActionBase):
    """Request a compliance report."""

    kind: Literal["generate_report"] = "generate_report"
    report_type: str = Field(..., min_length=1)


@beartype
class ApiCall(_ActionBase):
    """Submit a notice to a government agency."""

    kind: Literal["api_call"] = "api_call"
    agency: GovernmentAgency
    endpoint: str = Field(..., min_length=1)


EscalationAction = Annotated[
    EmailNotification
    | SmsAlert
    | InAppNotification
    | DisableVehicle
    | SuspendDriver
    | GenerateReport
    | ApiCall,
    Field(discriminator="kind"),
]

PROTECTIVE_ACTION_KINDS = frozenset({"disable_vehicle", "suspend_driver"})


@beartype
class EscalationLevel(BaseModelConfig):
    """Threshold, actions and recipients fired as an entity nears expiry."""

    level: int = Field(..., ge=1, description="Severity number, higher is later")
    days_from_expiry: int = Field(
        ..., ge=-365, le=365, description="Negative values are post-expiry"
    )
    actions: tuple[EscalationAction, ...] = Field(..., min_length=1)
    recipients: tuple[RecipientRole, ...] = Field(default=())

    def recipients_for(self, action: EscalationAction) -> tuple[RecipientRole, ...]:
        """Recipients of ``action``, inheriting the level's when unset."""
        return action.recipients or self.recipients


@beartype
class Applicability(BaseModelConfig):
    """Entity filters for a rule; an empty set matches anything."""

    regions: frozenset[Region] = Field(default=frozenset())
    ownership_types: frozenset[OwnershipType] = Field(default=frozenset())
    service_types: frozenset[ServiceType] = Field(default=frozenset())
    entity_kinds: frozenset[EntityKind] = Field(default=frozenset())

    def matches(self, record: ComplianceRecord) -> bool:
        """Check whether ``record`` passes every non-empty filter."""
        checks = (
            (self.regions, record.region),
            (self.ownership_types, record.ownership_type),
            (self.service_types, record.service_type),
            (self.entity_kinds, record.entity_kind),
        )
        return all(not allowed or value in allowed for allowed, value in checks)


@beartype
class MonitoringRule(VersionedModel):
    """Domain-scoped rule driving escalations on its own cadence."""

    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    domain: ComplianceDomain
    trigger_condition: str = Field(..., min_length=1, max_length=200)
    check_frequency: CheckFrequency
    escalation_levels: tuple[EscalationLevel, ...] = Field(..., min_length=1)
    applicability: Applicability = Field(default_factory=Applicability)
    is_active: bool = Field(default=True)
    next_run_at: AwareDatetime
    last_run_at: AwareDatetime | None = None

    @field_validator("escalation_levels")
    @classmethod
    def validate_levels(
        cls, v: tuple[EscalationLevel, ...]
    ) -> tuple[EscalationLevel, ...]:
        """Store levels earliest warning first with increasing severity."""
        ordered = tuple(sorted(v, key=lambda lvl: lvl.days_from_expiry, reverse=True))

        thresholds = [lvl.days_from_expiry for lvl in ordered]
        if len(set(thresholds)) != len(thresholds):
            raise ValueError("Duplicate days_from_expiry in escalation levels")

        numbers = [lvl.level for lvl in ordered]
        if any(a >= b for a, b in zip(numbers, numbers[1:])):
            raise ValueError(
                "Escalation level numbers must increase as days_from_expiry decreases"
            )
        return ordered

    def applies_to(self, record: ComplianceRecord) -> bool:
        """Check domain and applicability filters."""
        return record.domain == self.domain and self.applicability.matches(record)


@beartype
class FiredEscalation(BaseModelConfig):
    """Record of one escalation level firing for one entity."""

    rule_id: str
    entity_id: str
    domain: ComplianceDomain
    level: int = Field(..., ge=1)
    days_until_expiry: int
    expiry_date: AwareDatetime
    fired_at: AwareDatetime
    dispatched_actions: tuple[str, ...] = Field(default=())
    failed_actions: tuple[str, ...] = Field(default=())

    @property
    def fully_dispatched(self) -> bool:
        """Whether every action succeeded."""
        return not self.failed_actions


@beartype
class Alert(VersionedModel):
    """Append-only alert with a mutable status."""

    id: str = Field(..., min_length=1)
    entity_id: str = Field(..., min_length=1)
    domain: ComplianceDomain
    priority: AlertPriority
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    status: AlertStatus = Field(default=AlertStatus.ACTIVE)
    rule_id: str | None = None
    escalation_level: int | None = Field(default=None, ge=1)
    expiry_date: AwareDatetime | None = None
    created_at: AwareDatetime
    resolved_at: AwareDatetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
