"""Compliance record domain models."""

from enum import Enum

from beartype import beartype
from pydantic import AwareDatetime, Field, model_validator

from .base import BaseModelConfig, VersionedModel


class ComplianceDomain(str, Enum):
    """Regulatory domains monitored per entity."""

    FRANCHISE = "franchise"  # LTFRB TNVS franchise
    REGISTRATION = "registration"  # LTO OR/CR and driver license
    INSURANCE = "insurance"  # CTPL / comprehensive
    ENVIRONMENTAL = "environmental"  # emissions testing


class ComplianceStatus(str, Enum):
    """Computed compliance status."""

    COMPLIANT = "compliant"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class EntityKind(str, Enum):
    """Kind of regulated entity."""

    VEHICLE = "vehicle"
    DRIVER = "driver"


class Region(str, Enum):
    """Operating regions."""

    NCR = "ncr"
    CALABARZON = "calabarzon"
    CENTRAL_VISAYAS = "central_visayas"
    DAVAO = "davao"
    NORTHERN_MINDANAO = "northern_mindanao"


class ServiceType(str, Enum):
    """Ridesharing service classes."""

    PREMIUM = "premium"
    STANDARD = "standard"
    ECONOMY = "economy"
    LUXURY = "luxury"
    MOTORCYCLE = "motorcycle"
    DELIVERY = "delivery"


class OwnershipType(str, Enum):
    """Vehicle ownership arrangements."""

    XPRESS_OWNED = "xpress_owned"
    FLEET_OWNED = "fleet_owned"
    OPERATOR_OWNED = "operator_owned"
    DRIVER_OWNED = "driver_owned"


@beartype
class DomainThresholds(BaseModelConfig):
    """Days-before-expiry thresholds for one domain."""

    warning_days: int = Field(..., ge=0, description="Expiring-soon threshold")
    critical_days: int = Field(..., ge=0, description="Critical threshold")

    @model_validator(mode="after")
    def validate_order(self) -> "DomainThresholds":
        """Critical threshold must not exceed the warning threshold."""
        if self.critical_days > self.warning_days:
            raise ValueError("critical_days must be <= warning_days")
        return self


@beartype
class ComplianceRecord(VersionedModel):
    """Compliance data for one (entity, domain) pair.

    ``expiry_date`` only changes through renewal; the record store rejects any
    other change to it.
    """

    entity_id: str = Field(..., min_length=1, max_length=100)
    domain: ComplianceDomain
    entity_kind: EntityKind = Field(default=EntityKind.VEHICLE)
    document_number: str | None = Field(default=None, max_length=100)
    issued_date: AwareDatetime
    expiry_date: AwareDatetime
    status: ComplianceStatus = Field(default=ComplianceStatus.COMPLIANT)
    last_fired_escalation_level: int | None = Field(default=None, ge=1)
    pending_protective_level: int | None = Field(default=None, ge=1)

    suspended: bool = Field(default=False)
    suspension_reason: str | None = Field(default=None, max_length=500)
    suspended_at: AwareDatetime | None = None

    region: Region | None = None
    ownership_type: OwnershipType | None = None
    service_type: ServiceType | None = None

    renewal_count: int = Field(default=0, ge=0)
    last_renewed_at: AwareDatetime | None = None
    last_evaluated_at: AwareDatetime | None = None

    @model_validator(mode="after")
    def validate_dates_and_suspension(self) -> "ComplianceRecord":
        """Expiry follows issue; a suspension carries its reason."""
        if self.expiry_date <= self.issued_date:
            raise ValueError("expiry_date must be after issued_date")
        if self.suspended and not self.suspension_reason:
            raise ValueError("suspension_reason is required when suspended")
        return self

    @property
    def key(self) -> tuple[str, ComplianceDomain]:
        """Identity of the record within the store."""
        return (self.entity_id, self.domain)
