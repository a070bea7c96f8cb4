"""Violation ledger models."""

from decimal import Decimal
from enum import Enum

from beartype import beartype
from pydantic import AwareDatetime, Field, model_validator

from .base import VersionedModel
from .coding import GeoPoint


class ViolationDomain(str, Enum):
    """Domains that can produce violations."""

    FRANCHISE = "franchise"
    REGISTRATION = "registration"
    INSURANCE = "insurance"
    ENVIRONMENTAL = "environmental"
    CODING = "coding"


class ViolationStatus(str, Enum):
    """Violation lifecycle status."""

    PENDING = "pending"
    PAID = "paid"
    CONTESTED = "contested"
    DISMISSED = "dismissed"
    OVERDUE = "overdue"


TERMINAL_VIOLATION_STATUSES = frozenset(
    {ViolationStatus.PAID, ViolationStatus.DISMISSED}
)


class ContestDecision(str, Enum):
    """Reviewer outcome for a contested violation."""

    UPHELD = "upheld"
    DISMISSED = "dismissed"
    REDUCED = "reduced"


class DetectionMethod(str, Enum):
    """How a coding violation was detected."""

    GPS_TRACKING = "gps_tracking"
    MANUAL_REPORT = "manual_report"
    CAMERA_DETECTION = "camera_detection"


@beartype
class Violation(VersionedModel):
    """Append-only violation with a mutable lifecycle status."""

    id: str = Field(..., min_length=1)
    entity_id: str = Field(..., min_length=1)
    domain: ViolationDomain
    violation_type: str = Field(..., min_length=1, max_length=100)
    fine_amount: Decimal = Field(..., ge=0, decimal_places=2)
    penalty_points: int = Field(default=0, ge=0)
    status: ViolationStatus = Field(default=ViolationStatus.PENDING)
    violation_date: AwareDatetime
    due_date: AwareDatetime
    contest_reason: str | None = Field(default=None, max_length=2000)
    contest_decision: ContestDecision | None = None
    contested_at: AwareDatetime | None = None
    paid_at: AwareDatetime | None = None
    resolved_at: AwareDatetime | None = None
    dedup_key: str | None = Field(default=None, max_length=200)
    ticket_number: str | None = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def validate_lifecycle_fields(self) -> "Violation":
        """Due date follows the violation; contested carries a reason."""
        if self.due_date < self.violation_date:
            raise ValueError("due_date must not precede violation_date")
        if self.status == ViolationStatus.CONTESTED and not self.contest_reason:
            raise ValueError("contest_reason is required when contested")
        if self.status == ViolationStatus.PAID and self.paid_at is None:
            raise ValueError("paid_at is required when paid")
        return self

    @property
    def is_terminal(self) -> bool:
        """Paid and dismissed violations never change again."""
        return self.status in TERMINAL_VIOLATION_STATUSES


@beartype
class CodingViolation(Violation):
    """Violation of a number-coding rule by a vehicle."""

    domain: ViolationDomain = Field(default=ViolationDomain.CODING)
    violation_type: str = Field(default="number_coding", min_length=1, max_length=100)
    driver_id: str | None = None
    plate_number: str = Field(..., min_length=1, max_length=20)
    last_digit: int = Field(..., ge=0, le=9)
    location: GeoPoint
    coding_rule_id: str = Field(..., min_length=1)
    detection_method: DetectionMethod = Field(default=DetectionMethod.GPS_TRACKING)

    @model_validator(mode="after")
    def validate_coding_domain(self) -> "CodingViolation":
        """Coding violations always live in the coding domain."""
        if self.domain != ViolationDomain.CODING:
            raise ValueError("CodingViolation domain must be 'coding'")
        return self

    @property
    def vehicle_id(self) -> str:
        """The offending vehicle."""
        return self.entity_id
