"""Request/response schemas for compliance checks, coding checks and syncs.

These are the shapes the engine exchanges with whatever transport sits in
front of it. Domain models live in :mod:`fleet_compliance.models`.
"""

from enum import Enum

from beartype import beartype
from pydantic import AwareDatetime, Field

from ..models.base import BaseModelConfig
from ..models.coding import GeoPoint
from ..models.compliance import ComplianceDomain, ComplianceStatus
from ..models.monitoring import Alert, GovernmentAgency
from ..models.violation import CodingViolation


class AgencyHealth(str, Enum):
    """Health of a government agency integration."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    DOWN = "down"


class SyncOutcome(str, Enum):
    """Per-entity outcome of a bulk sync."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# ============================================================================
# VERIFICATION
# ============================================================================


@beartype
class VerificationRef(BaseModelConfig):
    """Reference to a document to verify with its issuing agency."""

    entity_id: str = Field(..., min_length=1)
    domain: ComplianceDomain
    document_number: str | None = None


@beartype
class VerificationResult(BaseModelConfig):
    """Agency answer about a document."""

    entity_id: str
    domain: ComplianceDomain
    agency: GovernmentAgency
    valid: bool
    expiry_date: AwareDatetime | None = None
    status_text: str | None = Field(default=None, max_length=200)
    checked_at: AwareDatetime


@beartype
class SubmissionReceipt(BaseModelConfig):
    """Acknowledgement of a submission to an agency."""

    agency: GovernmentAgency
    endpoint: str
    reference_number: str | None = None
    submitted_at: AwareDatetime


# ============================================================================
# COMPLIANCE CHECK
# ============================================================================


@beartype
class ComplianceCheckRequest(BaseModelConfig):
    """Check one entity across some or all domains."""

    entity_id: str = Field(..., min_length=1, max_length=100)
    domains: tuple[ComplianceDomain, ...] | None = Field(
        default=None, description="All domains on record when omitted"
    )
    force_refresh: bool = Field(default=False)


@beartype
class DomainComplianceStatus(BaseModelConfig):
    """Status of one domain for the checked entity."""

    domain: ComplianceDomain
    status: ComplianceStatus
    days_until_expiry: int
    expiry_date: AwareDatetime
    is_critical: bool
    verified: bool = Field(
        default=False, description="False when the agency could not confirm"
    )
    verification_error: str | None = None
    agency: GovernmentAgency | None = None


@beartype
class ComplianceCheckResponse(BaseModelConfig):
    """Best-effort compliance snapshot."""

    entity_id: str
    status_by_domain: dict[ComplianceDomain, DomainComplianceStatus]
    active_alerts: tuple[Alert, ...] = Field(default=())
    recommendations: tuple[str, ...] = Field(default=())
    last_checked: AwareDatetime

    @property
    def is_compliant(self) -> bool:
        """Every checked domain is compliant."""
        return all(
            s.status == ComplianceStatus.COMPLIANT
            for s in self.status_by_domain.values()
        )


# ============================================================================
# CODING CHECK
# ============================================================================


@beartype
class CodingCheckRequest(BaseModelConfig):
    """Location-aware vehicle event to check against number coding."""

    vehicle_id: str = Field(..., min_length=1, max_length=100)
    plate_number: str = Field(..., min_length=1, max_length=20)
    location: GeoPoint
    region_id: str = Field(..., min_length=1, max_length=50)
    driver_id: str | None = None
    event_id: str | None = Field(
        default=None, description="Makes retried events idempotent"
    )
    timestamp: AwareDatetime | None = None


@beartype
class CodingCheckResponse(BaseModelConfig):
    """Outcome of a coding check."""

    has_violation: bool
    violation_details: CodingViolation | None = None
    warnings: tuple[str, ...] = Field(default=())
    can_proceed: bool
    coding_rule_id: str | None = None
    banned_digits: frozenset[int] = Field(default=frozenset())
    exemption_reason: str | None = None


@beartype
class RouteCheckResult(BaseModelConfig):
    """Dry-run coding check for a point of a planned route."""

    location: GeoPoint
    at: AwareDatetime
    restricted: bool
    coding_rule_id: str | None = None
    reason: str | None = None


# ============================================================================
# BULK SYNC
# ============================================================================


@beartype
class EntitySyncResult(BaseModelConfig):
    """Per-entity result of a bulk sync."""

    entity_id: str
    outcome: SyncOutcome
    domains: tuple[DomainComplianceStatus, ...] = Field(default=())
    error: str | None = None


@beartype
class BulkSyncResult(BaseModelConfig):
    """Partial-result report of a bulk sync."""

    results: tuple[EntitySyncResult, ...]
    started_at: AwareDatetime
    finished_at: AwareDatetime
    cancelled: bool = Field(default=False)

    def count(self, outcome: SyncOutcome) -> int:
        """Number of entities with ``outcome``."""
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def succeeded(self) -> int:
        """Entities synced successfully."""
        return self.count(SyncOutcome.SUCCESS)

    @property
    def failed(self) -> int:
        """Entities that failed."""
        return self.count(SyncOutcome.FAILED)

    @property
    def skipped(self) -> int:
        """Entities never started because of the deadline or cancellation."""
        return self.count(SyncOutcome.SKIPPED)
