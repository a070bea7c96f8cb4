"""Unit tests for domain models."""

from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from fleet_compliance.models.coding import CodingHours, GeoPoint, Weekday
from fleet_compliance.models.compliance import DomainThresholds, EntityKind
from fleet_compliance.models.monitoring import (
    Applicability,
    DisableVehicle,
    EmailNotification,
    EscalationLevel,
    RecipientRole,
)
from fleet_compliance.models.violation import (
    CodingViolation,
    ViolationDomain,
    ViolationStatus,
)
from tests.fixtures.builders import (
    MAKATI,
    make_coding_rule,
    make_franchise_rule,
    make_record,
    make_violation,
)


class TestComplianceRecord:
    """Test compliance record validation."""

    def test_expiry_must_follow_issue(self, now: datetime) -> None:
        """Test a record cannot expire before it was issued."""
        with pytest.raises(ValidationError, match="expiry_date must be after"):
            make_record(now, timedelta(days=10), issued_date=now + timedelta(days=20))

    def test_suspension_needs_reason(self, now: datetime) -> None:
        """Test suspended records carry a reason."""
        with pytest.raises(ValidationError, match="suspension_reason is required"):
            make_record(now, timedelta(days=10), suspended=True)

    def test_records_are_frozen(self, now: datetime) -> None:
        """Test records cannot be mutated in place."""
        record = make_record(now, timedelta(days=10))

        with pytest.raises(ValidationError):
            record.document_number = "OTHER"  # type: ignore[misc]

    def test_next_version_bumps_version(self, now: datetime) -> None:
        """Test next_version validates the change and bumps the version."""
        record = make_record(now, timedelta(days=10))

        updated = record.next_version(document_number="NEW-1")

        assert updated.version == record.version + 1
        assert updated.document_number == "NEW-1"
        assert record.document_number == "DOC-VEH-001"

    def test_thresholds_order(self) -> None:
        """Test critical days may not exceed warning days."""
        with pytest.raises(ValidationError):
            DomainThresholds(warning_days=5, critical_days=10)


class TestMonitoringRule:
    """Test monitoring rule validation."""

    def test_levels_sorted_by_days(self, now: datetime) -> None:
        """Test levels are stored earliest warning first."""
        rule = make_franchise_rule(now)
        shuffled = make_franchise_rule(
            now, escalation_levels=tuple(reversed(rule.escalation_levels))
        )

        assert [lvl.days_from_expiry for lvl in shuffled.escalation_levels] == [
            60,
            30,
            7,
            -1,
        ]

    def test_duplicate_days_rejected(self, now: datetime) -> None:
        """Test two levels cannot share a threshold."""
        action = (EmailNotification(template="x"),)
        levels = (
            EscalationLevel(level=1, days_from_expiry=30, actions=action),
            EscalationLevel(level=2, days_from_expiry=30, actions=action),
        )

        with pytest.raises(ValidationError, match="Duplicate days_from_expiry"):
            make_franchise_rule(now, escalation_levels=levels)

    def test_level_numbers_must_increase(self, now: datetime) -> None:
        """Test later thresholds carry higher level numbers."""
        action = (EmailNotification(template="x"),)
        levels = (
            EscalationLevel(level=2, days_from_expiry=30, actions=action),
            EscalationLevel(level=1, days_from_expiry=7, actions=action),
        )

        with pytest.raises(ValidationError, match="must increase"):
            make_franchise_rule(now, escalation_levels=levels)

    def test_action_recipients_override_level(self) -> None:
        """Test action recipients win over level recipients when set."""
        action = DisableVehicle(
            reason="expired", recipients=(RecipientRole.LEGAL_TEAM,)
        )
        level = EscalationLevel(
            level=1,
            days_from_expiry=-1,
            actions=(action, EmailNotification(template="x")),
            recipients=(RecipientRole.VEHICLE_OWNER,),
        )

        assert level.recipients_for(action) == (RecipientRole.LEGAL_TEAM,)
        assert level.recipients_for(level.actions[1]) == (
            RecipientRole.VEHICLE_OWNER,
        )

    def test_applicability_filters(self, now: datetime) -> None:
        """Test empty filters match and non-empty filters restrict."""
        vehicle = make_record(now, timedelta(days=10))
        drivers_only = Applicability(entity_kinds=frozenset({EntityKind.DRIVER}))

        assert Applicability().matches(vehicle)
        assert not drivers_only.matches(vehicle)

    def test_actions_parse_from_tagged_dicts(self) -> None:
        """Test actions are discriminated by kind."""
        level = EscalationLevel.model_validate(
            {
                "level": 1,
                "days_from_expiry": -1,
                "actions": [{"kind": "disable_vehicle", "reason": "expired"}],
            }
        )

        assert isinstance(level.actions[0], DisableVehicle)


class TestCodingRule:
    """Test coding rule validation."""

    def test_digits_must_be_single(self, now: datetime) -> None:
        """Test rotation digits are 0-9."""
        with pytest.raises(ValidationError, match="Invalid plate digits"):
            make_coding_rule(now, digit_rotation={Weekday.MONDAY: frozenset({12})})

    def test_repeat_fine_not_lower(self, now: datetime) -> None:
        """Test the repeat fine is never below the first fine."""
        with pytest.raises(ValidationError, match="repeat_offense_fine"):
            make_coding_rule(now, repeat_offense_fine=Decimal("500.00"))

    def test_invalid_plate_pattern(self, now: datetime) -> None:
        """Test plate patterns must compile."""
        with pytest.raises(ValidationError, match="Invalid plate pattern"):
            make_coding_rule(now, exempt_plate_patterns=("[unclosed",))

    def test_hours_truncated_to_minute(self) -> None:
        """Test coding hours drop seconds."""
        hours = CodingHours(start=time(7, 0, 59), end=time(19, 0, 30))

        assert hours.start == time(7, 0)
        assert hours.end == time(19, 0)

    def test_effective_period(self, now: datetime) -> None:
        """Test effective period and active flag."""
        rule = make_coding_rule(now, expiry_date=now + timedelta(days=1))

        assert rule.is_effective(now)
        assert not rule.is_effective(now + timedelta(days=2))
        assert not rule.is_effective(now - timedelta(days=31))
        assert not make_coding_rule(now, is_active=False).is_effective(now)

    def test_weekday_of(self) -> None:
        """Test weekday lookup."""
        assert Weekday.of(date(2025, 3, 10)) == Weekday.MONDAY
        assert Weekday.of(date(2025, 3, 16)) == Weekday.SUNDAY

    def test_geo_point_bounds(self) -> None:
        """Test coordinates are range checked."""
        with pytest.raises(ValidationError):
            GeoPoint(lat=91.0, lon=0.0)


class TestViolation:
    """Test violation validation."""

    def test_contested_needs_reason(self, now: datetime) -> None:
        """Test a contested violation carries its reason."""
        with pytest.raises(ValidationError, match="contest_reason is required"):
            make_violation(now, status=ViolationStatus.CONTESTED)

    def test_due_date_not_before_violation(self, now: datetime) -> None:
        """Test due date ordering."""
        with pytest.raises(ValidationError, match="due_date"):
            make_violation(now, due_date=now - timedelta(days=1))

    def test_coding_violation_domain(self, now: datetime) -> None:
        """Test coding violations default to and require the coding domain."""
        violation = CodingViolation(
            id="V1",
            entity_id="VEH-001",
            plate_number="ABC 1231",
            last_digit=1,
            location=MAKATI,
            coding_rule_id="ncr-test",
            fine_amount=Decimal("1000.00"),
            violation_date=now,
            due_date=now + timedelta(days=7),
        )

        assert violation.domain == ViolationDomain.CODING
        assert violation.vehicle_id == "VEH-001"
        assert not violation.is_terminal
        with pytest.raises(ValidationError, match="coding"):
            violation.next_version(domain=ViolationDomain.FRANCHISE)
