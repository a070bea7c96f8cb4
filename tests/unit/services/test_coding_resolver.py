"""Unit tests for coding windows, geofencing and rule resolution."""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from fleet_compliance.core.cache import Cache
from fleet_compliance.models.coding import CodingHours, GeoPoint
from fleet_compliance.services.coding_resolver import (
    CodingRuleResolver,
    CodingWindowReason,
    banned_digits_for,
    coding_rule_cache,
    coding_status,
    default_coding_rule,
    within_hours,
)
from fleet_compliance.services.geofence import in_any, point_in_polygon, polygon_area
from fleet_compliance.storage.memory import InMemoryCodingRuleRepository
from tests.fixtures.builders import (
    CEBU,
    MAKATI,
    MANILA,
    METRO_SQUARE,
    make_coding_rule,
)

# Smaller square around Makati, inside METRO_SQUARE.
MAKATI_SQUARE = (
    GeoPoint(lat=14.50, lon=121.00),
    GeoPoint(lat=14.50, lon=121.06),
    GeoPoint(lat=14.60, lon=121.06),
    GeoPoint(lat=14.60, lon=121.00),
)


def at(day: int, hour: int, minute: int = 0) -> datetime:
    """Manila time in the week of Monday 2025-03-10."""
    return datetime(2025, 3, day, hour, minute, tzinfo=MANILA)


class TestGeofence:
    """Test polygon helpers."""

    def test_point_in_polygon(self) -> None:
        """Test inside and outside points."""
        assert point_in_polygon(MAKATI, METRO_SQUARE)
        assert not point_in_polygon(CEBU, METRO_SQUARE)

    def test_degenerate_polygon(self) -> None:
        """Test fewer than three points never contain anything."""
        assert not point_in_polygon(MAKATI, METRO_SQUARE[:2])
        assert polygon_area(METRO_SQUARE[:2]) == 0.0

    def test_polygon_area(self) -> None:
        """Test shoelace area in squared degrees."""
        assert polygon_area(METRO_SQUARE) == pytest.approx(0.43 * 0.18)
        assert polygon_area(tuple(reversed(METRO_SQUARE))) == pytest.approx(
            0.43 * 0.18
        )

    def test_in_any(self) -> None:
        """Test membership across several polygons."""
        assert in_any(MAKATI, [MAKATI_SQUARE, METRO_SQUARE])
        assert not in_any(CEBU, [MAKATI_SQUARE])
        assert not in_any(MAKATI, [])


class TestCodingWindow:
    """Test when coding is in effect."""

    def test_in_effect_monday_morning(self, now: datetime) -> None:
        """Test the fixture instant is inside the window."""
        rule = make_coding_rule(now)
        window = coding_status(rule, now)

        assert window.in_effect
        assert window.reason == CodingWindowReason.IN_EFFECT
        assert banned_digits_for(rule, window.local_date) == frozenset({1, 2})

    @pytest.mark.parametrize(
        ("moment", "in_effect"),
        [
            (at(10, 6, 59), False),
            (at(10, 7, 0), True),
            (at(10, 19, 0), True),
            (at(10, 19, 1), False),
        ],
    )
    def test_hours_inclusive(
        self, now: datetime, moment: datetime, in_effect: bool
    ) -> None:
        """Test both ends of the window are inclusive to the minute."""
        window = coding_status(make_coding_rule(now), moment)

        assert window.in_effect is in_effect

    def test_weekend_not_coding_day(self, now: datetime) -> None:
        """Test Saturdays are outside the scheme."""
        window = coding_status(make_coding_rule(now), at(15, 10))

        assert window.reason == CodingWindowReason.NOT_CODING_DAY
        assert banned_digits_for(make_coding_rule(now), date(2025, 3, 16)) == (
            frozenset()
        )

    def test_holiday(self, now: datetime) -> None:
        """Test listed holidays suspend coding."""
        rule = make_coding_rule(now, holiday_exemptions=frozenset({date(2025, 3, 10)}))

        window = coding_status(rule, now)

        assert not window.in_effect
        assert window.reason == CodingWindowReason.HOLIDAY

    def test_evaluated_in_rule_timezone(self, now: datetime) -> None:
        """Test a UTC instant is converted to Manila time."""
        rule = make_coding_rule(now)

        assert coding_status(
            rule, datetime(2025, 3, 10, 2, 0, tzinfo=timezone.utc)
        ).in_effect
        assert not coding_status(
            rule, datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
        ).in_effect

    def test_overnight_window(self, now: datetime) -> None:
        """Test a window ending after midnight wraps around."""
        rule = make_coding_rule(
            now, coding_hours=CodingHours(start=time(22, 0), end=time(5, 0))
        )

        assert coding_status(rule, at(10, 23, 30)).in_effect
        assert coding_status(rule, at(11, 4, 0)).in_effect
        assert not coding_status(rule, at(10, 12, 0)).in_effect

    def test_within_hours(self) -> None:
        """Test the minute-precision window test directly."""
        hours = CodingHours(start=time(7, 0), end=time(19, 0))

        assert within_hours(hours, time(19, 0, 59))
        assert not within_hours(hours, time(6, 59, 59))


class TestCodingRuleResolver:
    """Test rule lookup by location."""

    @pytest.fixture
    def repository(self) -> InMemoryCodingRuleRepository:
        """Empty coding rule repository."""
        return InMemoryCodingRuleRepository()

    async def test_resolves_covering_rule(
        self, repository: InMemoryCodingRuleRepository, now: datetime
    ) -> None:
        """Test a point in the coverage area resolves to the rule."""
        resolver = CodingRuleResolver(repository)
        await resolver.add_rule(make_coding_rule(now))

        rule = await resolver.resolve("ncr", MAKATI, now)

        assert rule is not None and rule.id == "ncr-test"
        assert await resolver.resolve("ncr", CEBU, now) is None
        assert await resolver.resolve("cebu", MAKATI, now) is None

    async def test_smallest_area_wins(
        self, repository: InMemoryCodingRuleRepository, now: datetime
    ) -> None:
        """Test overlapping rules resolve to the smallest coverage area."""
        resolver = CodingRuleResolver(repository)
        await resolver.add_rule(make_coding_rule(now, id="a-wide"))
        await resolver.add_rule(
            make_coding_rule(now, id="z-local", coverage_area=MAKATI_SQUARE)
        )

        rule = await resolver.resolve("ncr", MAKATI, now)

        assert rule is not None and rule.id == "z-local"

    async def test_equal_area_lowest_id_wins(
        self, repository: InMemoryCodingRuleRepository, now: datetime
    ) -> None:
        """Test ties on area fall back to the rule id."""
        resolver = CodingRuleResolver(repository)
        await resolver.add_rule(make_coding_rule(now, id="ncr-b"))
        await resolver.add_rule(make_coding_rule(now, id="ncr-a"))

        rule = await resolver.resolve("ncr", MAKATI, now)

        assert rule is not None and rule.id == "ncr-a"

    async def test_exempted_area_and_inactive_rules(
        self, repository: InMemoryCodingRuleRepository, now: datetime
    ) -> None:
        """Test exempted areas and ineffective rules do not apply."""
        resolver = CodingRuleResolver(repository)
        await resolver.add_rule(
            make_coding_rule(now, id="carved", exempted_areas=(MAKATI_SQUARE,))
        )
        await resolver.add_rule(make_coding_rule(now, id="off", is_active=False))
        await resolver.add_rule(
            make_coding_rule(
                now,
                id="future",
                effective_date=now + timedelta(days=1),
            )
        )

        assert await resolver.resolve("ncr", MAKATI, now) is None

    async def test_cache_invalidated_on_change(
        self, repository: InMemoryCodingRuleRepository, now: datetime
    ) -> None:
        """Test cached rules are served until the resolver changes them."""
        resolver = CodingRuleResolver(repository, coding_rule_cache(60))
        assert await resolver.rules_for_region("ncr") == []

        await repository.add(make_coding_rule(now, id="behind-cache"))
        assert await resolver.rules_for_region("ncr") == []

        await resolver.add_rule(make_coding_rule(now, id="through-resolver"))
        ids = [r.id for r in await resolver.rules_for_region("ncr")]
        assert ids == ["behind-cache", "through-resolver"]

        current = await repository.get("behind-cache")
        assert current is not None
        updated = await resolver.save_rule(current.next_version(is_active=False))
        cached = {r.id: r for r in await resolver.rules_for_region("ncr")}
        assert cached["behind-cache"] == updated

    async def test_redis_backed_cache(
        self,
        repository: InMemoryCodingRuleRepository,
        redis_cache: Cache,
        now: datetime,
    ) -> None:
        """Test rules survive a JSON round trip through Redis."""
        resolver = CodingRuleResolver(
            repository, coding_rule_cache(60, backend=redis_cache)
        )
        original = await resolver.add_rule(
            make_coding_rule(now, holiday_exemptions=frozenset({date(2025, 4, 9)}))
        )

        await resolver.rules_for_region("ncr")
        (cached,) = await resolver.rules_for_region("ncr")

        assert await redis_cache.exists("coding_rules:ncr")
        assert cached == original


class TestDefaultCodingRule:
    """Test the stock Metro Manila rule."""

    def test_shape(self, now: datetime) -> None:
        """Test rotation, hours, fines and holidays."""
        rule = default_coding_rule(now)

        assert rule.id == "ncr-uvvrp"
        assert rule.coding_hours == CodingHours(start=time(7, 0), end=time(19, 0))
        assert banned_digits_for(rule, date(2025, 3, 14)) == frozenset({9, 0})
        assert date(2025, 4, 9) in rule.holiday_exemptions
        assert date(2026, 12, 25) in rule.holiday_exemptions
        assert rule.repeat_offense_fine > rule.first_offense_fine
        assert rule.is_effective(now)
