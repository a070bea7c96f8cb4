"""Test data builders and collaborator doubles.

Builders return valid frozen models with overridable fields so each test only
spells out what it is about.
"""

import asyncio
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from fleet_compliance.core.errors import ExternalServiceError
from fleet_compliance.core.result_types import Err, Ok, Result
from fleet_compliance.models.coding import (
    CodingHours,
    CodingRule,
    GeoPoint,
    Weekday,
)
from fleet_compliance.models.compliance import (
    ComplianceDomain,
    ComplianceRecord,
    EntityKind,
)
from fleet_compliance.models.monitoring import (
    CheckFrequency,
    DisableVehicle,
    EmailNotification,
    EscalationLevel,
    GovernmentAgency,
    MonitoringRule,
    RecipientRole,
    SmsAlert,
)
from fleet_compliance.models.violation import (
    Violation,
    ViolationDomain,
    ViolationStatus,
)
from fleet_compliance.schemas.compliance import (
    AgencyHealth,
    SubmissionReceipt,
    VerificationRef,
    VerificationResult,
)
from fleet_compliance.services.fleet import InMemoryFleetOperations
from fleet_compliance.services.gateway import GovernmentGateway, agency_for
from fleet_compliance.services.notifications import (
    Notification,
    NotificationDispatcher,
)

MANILA = ZoneInfo("Asia/Manila")

# Monday 10:00 Manila time; banned digits under the NCR rotation are 1 and 2.
MONDAY_MORNING = datetime(2025, 3, 10, 10, 0, tzinfo=MANILA)

MAKATI = GeoPoint(lat=14.5547, lon=121.0244)
CEBU = GeoPoint(lat=10.3157, lon=123.8854)

METRO_SQUARE = (
    GeoPoint(lat=14.35, lon=120.95),
    GeoPoint(lat=14.35, lon=121.13),
    GeoPoint(lat=14.78, lon=121.13),
    GeoPoint(lat=14.78, lon=120.95),
)

ROTATION = {
    Weekday.MONDAY: frozenset({1, 2}),
    Weekday.TUESDAY: frozenset({3, 4}),
    Weekday.WEDNESDAY: frozenset({5, 6}),
    Weekday.THURSDAY: frozenset({7, 8}),
    Weekday.FRIDAY: frozenset({9, 0}),
}


def make_record(
    now: datetime,
    expires_in: timedelta,
    entity_id: str = "VEH-001",
    domain: ComplianceDomain = ComplianceDomain.FRANCHISE,
    **overrides: Any,
) -> ComplianceRecord:
    """Compliance record expiring ``expires_in`` after ``now``."""
    data: dict[str, Any] = {
        "entity_id": entity_id,
        "domain": domain,
        "entity_kind": EntityKind.VEHICLE,
        "document_number": f"DOC-{entity_id}",
        "issued_date": now - timedelta(days=365),
        "expiry_date": now + expires_in,
    }
    data.update(overrides)
    return ComplianceRecord(**data)


def make_franchise_rule(now: datetime, **overrides: Any) -> MonitoringRule:
    """Four-level franchise rule: 60/30/7 days before, 1 day after."""
    owner = RecipientRole.VEHICLE_OWNER
    data: dict[str, Any] = {
        "id": "franchise-rule",
        "name": "Franchise expiry",
        "domain": ComplianceDomain.FRANCHISE,
        "trigger_condition": "expiry_approaching",
        "check_frequency": CheckFrequency.DAILY,
        "next_run_at": now,
        "escalation_levels": (
            EscalationLevel(
                level=1,
                days_from_expiry=60,
                actions=(EmailNotification(template="franchise_60"),),
                recipients=(owner,),
            ),
            EscalationLevel(
                level=2,
                days_from_expiry=30,
                actions=(
                    EmailNotification(template="franchise_30"),
                    SmsAlert(template="franchise_30_sms"),
                ),
                recipients=(owner, RecipientRole.DRIVER),
            ),
            EscalationLevel(
                level=3,
                days_from_expiry=7,
                actions=(EmailNotification(template="franchise_7"),),
                recipients=(owner,),
            ),
            EscalationLevel(
                level=4,
                days_from_expiry=-1,
                actions=(
                    DisableVehicle(reason="franchise_expired"),
                    EmailNotification(template="franchise_expired"),
                ),
                recipients=(owner, RecipientRole.COMPLIANCE_TEAM),
            ),
        ),
    }
    data.update(overrides)
    return MonitoringRule(**data)


def make_coding_rule(now: datetime, **overrides: Any) -> CodingRule:
    """Weekday 07:00-19:00 rule over Metro Manila."""
    data: dict[str, Any] = {
        "id": "ncr-test",
        "region_id": "ncr",
        "scheme_name": "Test UVVRP",
        "coding_hours": CodingHours(start=time(7, 0), end=time(19, 0)),
        "coding_days": frozenset(ROTATION),
        "digit_rotation": ROTATION,
        "coverage_area": METRO_SQUARE,
        "first_offense_fine": Decimal("1000.00"),
        "repeat_offense_fine": Decimal("2000.00"),
        "exempt_plate_patterns": (r"^[0-9]+-GOV$",),
        "effective_date": now - timedelta(days=30),
    }
    data.update(overrides)
    return CodingRule(**data)


def make_violation(
    now: datetime,
    violation_id: str = "VIO-001",
    entity_id: str = "VEH-001",
    **overrides: Any,
) -> Violation:
    """Pending franchise violation due in a week."""
    data: dict[str, Any] = {
        "id": violation_id,
        "entity_id": entity_id,
        "domain": ViolationDomain.FRANCHISE,
        "violation_type": "expired_franchise",
        "fine_amount": Decimal("5000.00"),
        "status": ViolationStatus.PENDING,
        "violation_date": now,
        "due_date": now + timedelta(days=7),
    }
    data.update(overrides)
    return Violation(**data)


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every notification, or fails every send when told to."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[Notification] = []
        self.fail = fail

    async def send(self, notification: Notification) -> None:
        if self.fail:
            raise ExternalServiceError.unavailable("sms", "provider outage")
        self.sent.append(notification)

    def templates(self) -> list[str]:
        return [n.template for n in self.sent]


class FlakyFleetOperations(InMemoryFleetOperations):
    """Fleet operations whose disable command fails a set number of times."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.disable_attempts = 0

    async def disable_vehicle(self, vehicle_id: str, reason: str) -> bool:
        self.disable_attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise ExternalServiceError.timeout("fleet")
        return await super().disable_vehicle(vehicle_id, reason)


class StubGateway(GovernmentGateway):
    """Gateway answering from a table, with scriptable health and failures."""

    def __init__(self, now: datetime) -> None:
        self.now = now
        self.health: dict[GovernmentAgency, AgencyHealth] = {}
        self.failures: dict[ComplianceDomain, ExternalServiceError] = {}
        self.invalid: set[tuple[str, ComplianceDomain]] = set()
        self.delay_seconds = 0.0
        self.verify_calls: list[VerificationRef] = []
        self.submissions: list[tuple[GovernmentAgency, str, dict[str, Any]]] = []

    async def verify(
        self, ref: VerificationRef
    ) -> Result[VerificationResult, ExternalServiceError]:
        self.verify_calls.append(ref)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if ref.domain in self.failures:
            return Err(self.failures[ref.domain])
        return Ok(
            VerificationResult(
                entity_id=ref.entity_id,
                domain=ref.domain,
                agency=agency_for(ref.domain),
                valid=(ref.entity_id, ref.domain) not in self.invalid,
                checked_at=self.now,
            )
        )

    async def submit(
        self, agency: GovernmentAgency, endpoint: str, payload: dict[str, Any]
    ) -> Result[SubmissionReceipt, ExternalServiceError]:
        self.submissions.append((agency, endpoint, payload))
        return Ok(
            SubmissionReceipt(
                agency=agency,
                endpoint=endpoint,
                reference_number=f"REF-{len(self.submissions)}",
                submitted_at=self.now,
            )
        )

    async def health_status(self, agency: GovernmentAgency) -> AgencyHealth:
        return self.health.get(agency, AgencyHealth.OPERATIONAL)
