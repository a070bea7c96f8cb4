"""Number-coding rule and exemption models."""

import re
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from beartype import beartype
from pydantic import AwareDatetime, Field, field_validator, model_validator

from .base import BaseModelConfig, VersionedModel


class Weekday(str, Enum):
    """Days of the week, Monday first as in :meth:`date.weekday`."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, day: date) -> "Weekday":
        """Weekday of a calendar date."""
        return list(cls)[day.weekday()]


@beartype
class GeoPoint(BaseModelConfig):
    """WGS84 coordinate."""

    lat: float = Field(..., ge=-90.0, le=90.0)
    lon: float = Field(..., ge=-180.0, le=180.0)


Polygon = tuple[GeoPoint, ...]


@beartype
class CodingHours(BaseModelConfig):
    """Local time window, inclusive at both ends, minute precision.

    ``end`` earlier than ``start`` describes an overnight window.
    """

    start: time
    end: time

    @field_validator("start", "end")
    @classmethod
    def truncate_to_minute(cls, v: time) -> time:
        """Drop seconds and timezone; comparisons happen in rule-local time."""
        return time(v.hour, v.minute)


@beartype
class CodingRule(VersionedModel):
    """Number-coding scheme for a region.

    Banned digits are not stored for a particular day; they are derived from
    ``digit_rotation`` for whatever date is being checked.
    """

    id: str = Field(..., min_length=1, max_length=100)
    region_id: str = Field(..., min_length=1, max_length=50)
    scheme_name: str = Field(..., min_length=1, max_length=200)
    coding_hours: CodingHours
    coding_days: frozenset[Weekday] = Field(..., min_length=1)
    digit_rotation: dict[Weekday, frozenset[int]] = Field(...)
    coverage_area: Polygon = Field(..., min_length=3)
    exempted_areas: tuple[Polygon, ...] = Field(default=())
    holiday_exemptions: frozenset[date] = Field(default=frozenset())
    first_offense_fine: Decimal = Field(..., ge=0, decimal_places=2)
    repeat_offense_fine: Decimal = Field(..., ge=0, decimal_places=2)
    exempt_plate_patterns: tuple[str, ...] = Field(default=())
    effective_date: AwareDatetime
    expiry_date: AwareDatetime | None = None
    is_active: bool = Field(default=True)
    timezone: str = Field(default="Asia/Manila")

    @field_validator("digit_rotation")
    @classmethod
    def validate_digits(
        cls, v: dict[Weekday, frozenset[int]]
    ) -> dict[Weekday, frozenset[int]]:
        """Plate digits are 0-9."""
        for day, digits in v.items():
            bad = sorted(d for d in digits if not 0 <= d <= 9)
            if bad:
                raise ValueError(f"Invalid plate digits for {day.value}: {bad}")
        return v

    @field_validator("exempted_areas")
    @classmethod
    def validate_exempted_areas(cls, v: tuple[Polygon, ...]) -> tuple[Polygon, ...]:
        """Each exempted area must be a polygon."""
        for area in v:
            if len(area) < 3:
                raise ValueError("Exempted areas need at least 3 points")
        return v

    @field_validator("exempt_plate_patterns")
    @classmethod
    def validate_patterns(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Patterns must be valid regular expressions."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid plate pattern {pattern!r}: {e}") from e
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def validate_fines_and_period(self) -> "CodingRule":
        """Repeat fine is never lower; expiry follows the effective date."""
        if self.repeat_offense_fine < self.first_offense_fine:
            raise ValueError("repeat_offense_fine must be >= first_offense_fine")
        if self.expiry_date is not None and self.expiry_date <= self.effective_date:
            raise ValueError("expiry_date must be after effective_date")
        return self

    @property
    def zone(self) -> ZoneInfo:
        """Rule-local timezone."""
        return ZoneInfo(self.timezone)

    def is_effective(self, now: datetime) -> bool:
        """Active and within the effective period."""
        if not self.is_active or now < self.effective_date:
            return False
        return self.expiry_date is None or now < self.expiry_date


class ExemptionType(str, Enum):
    """Grounds for a coding exemption."""

    MEDICAL_EMERGENCY = "medical_emergency"
    GOVERNMENT_OFFICIAL = "government_official"
    DIPLOMATIC = "diplomatic"
    MILITARY = "military"
    PUBLIC_UTILITY = "public_utility"
    DELIVERY_ESSENTIAL = "delivery_essential"


class ExemptionStatus(str, Enum):
    """Exemption request lifecycle."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


@beartype
class ExemptionRequest(VersionedModel):
    """Request to suspend coding enforcement for a vehicle or driver."""

    id: str = Field(..., min_length=1)
    vehicle_id: str = Field(..., min_length=1)
    driver_id: str | None = None
    exemption_type: ExemptionType
    reason: str = Field(..., min_length=1, max_length=1000)
    period_start: AwareDatetime
    period_end: AwareDatetime
    status: ExemptionStatus = Field(default=ExemptionStatus.PENDING)
    usage_count: int = Field(default=0, ge=0)
    last_used_at: AwareDatetime | None = None
    reviewed_by: str | None = None
    review_notes: str | None = Field(default=None, max_length=1000)
    approval_number: str | None = None
    created_at: AwareDatetime

    @model_validator(mode="after")
    def validate_period(self) -> "ExemptionRequest":
        """Period must be non-empty."""
        if self.period_end <= self.period_start:
            raise ValueError("period_end must be after period_start")
        return self

    def covers(self, now: datetime) -> bool:
        """Approved and ``now`` inside the period."""
        return (
            self.status == ExemptionStatus.APPROVED
            and self.period_start <= now <= self.period_end
        )
