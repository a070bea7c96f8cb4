"""Number-coding rule resolution.

Which rule applies to a location, and whether it is in effect at an instant.
Banned digits are always derived from the date being checked.
"""

import logging
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from attrs import field, frozen
from beartype import beartype

from ..core.cache import Cache, ReadThroughCache
from ..models.coding import CodingHours, CodingRule, GeoPoint, Weekday
from ..storage.base import CodingRuleRepository
from .geofence import in_any, point_in_polygon, polygon_area

logger = logging.getLogger(__name__)

# Unified Vehicular Volume Reduction Program rotation
NCR_DIGIT_ROTATION: dict[Weekday, frozenset[int]] = {
    Weekday.MONDAY: frozenset({1, 2}),
    Weekday.TUESDAY: frozenset({3, 4}),
    Weekday.WEDNESDAY: frozenset({5, 6}),
    Weekday.THURSDAY: frozenset({7, 8}),
    Weekday.FRIDAY: frozenset({9, 0}),
}

DEFAULT_EXEMPT_PLATE_PATTERNS = (
    r"^[0-9]+-GOV$",
    r"^[0-9]+-DIP$",
    r"^[0-9]+-MIL$",
    r"^[0-9]+-POL$",
    r"^[0-9]+-EMG$",
)

METRO_MANILA_AREA = (
    GeoPoint(lat=14.7800, lon=120.9500),
    GeoPoint(lat=14.7800, lon=121.1300),
    GeoPoint(lat=14.3500, lon=121.1300),
    GeoPoint(lat=14.3500, lon=120.9500),
)


class CodingWindowReason(str, Enum):
    """Why coding is or is not in effect."""

    IN_EFFECT = "in_effect"
    NOT_CODING_DAY = "not_coding_day"
    OUTSIDE_CODING_HOURS = "outside_coding_hours"
    HOLIDAY = "holiday"


@frozen
class CodingWindow:
    """Whether a rule restricts traffic at an instant."""

    in_effect: bool = field()
    reason: CodingWindowReason = field()
    local_date: date = field()


@beartype
def banned_digits_for(rule: CodingRule, day: date) -> frozenset[int]:
    """Plate digits banned by ``rule`` on ``day``."""
    return rule.digit_rotation.get(Weekday.of(day), frozenset())


@beartype
def within_hours(hours: CodingHours, moment: time) -> bool:
    """Inclusive, minute-precision window test; overnight windows wrap."""
    current = time(moment.hour, moment.minute)
    if hours.start <= hours.end:
        return hours.start <= current <= hours.end
    return current >= hours.start or current <= hours.end


@beartype
def coding_status(rule: CodingRule, now: datetime) -> CodingWindow:
    """Evaluate the coding window of ``rule`` at ``now`` in rule-local time."""
    local = now.astimezone(rule.zone)
    today = local.date()
    if Weekday.of(today) not in rule.coding_days:
        return CodingWindow(
            in_effect=False,
            reason=CodingWindowReason.NOT_CODING_DAY,
            local_date=today,
        )
    if not within_hours(rule.coding_hours, local.time()):
        return CodingWindow(
            in_effect=False,
            reason=CodingWindowReason.OUTSIDE_CODING_HOURS,
            local_date=today,
        )
    if today in rule.holiday_exemptions:
        return CodingWindow(
            in_effect=False, reason=CodingWindowReason.HOLIDAY, local_date=today
        )
    return CodingWindow(
        in_effect=True, reason=CodingWindowReason.IN_EFFECT, local_date=today
    )


@beartype
def rule_covers(rule: CodingRule, location: GeoPoint) -> bool:
    """Inside the coverage area and outside every exempted area."""
    return point_in_polygon(location, rule.coverage_area) and not in_any(
        location, rule.exempted_areas
    )


def _encode_rules(rules: list[CodingRule]) -> list[dict[str, Any]]:
    return [rule.model_dump(mode="json") for rule in rules]


def _decode_rules(raw: list[dict[str, Any]]) -> list[CodingRule]:
    return [CodingRule.model_validate(item) for item in raw]


def coding_rule_cache(
    ttl_seconds: int, backend: Cache | None = None
) -> ReadThroughCache[list[CodingRule]]:
    """Read-through cache of coding rules keyed by region."""
    return ReadThroughCache(
        "coding_rules",
        ttl_seconds,
        backend=backend,
        encode=_encode_rules,
        decode=_decode_rules,
    )


class CodingRuleResolver:
    """Finds the coding rule that governs a location."""

    def __init__(
        self,
        repository: CodingRuleRepository,
        cache: ReadThroughCache[list[CodingRule]] | None = None,
    ) -> None:
        self._repository = repository
        self._cache = cache or coding_rule_cache(ttl_seconds=0)

    @beartype
    async def rules_for_region(self, region_id: str) -> list[CodingRule]:
        """All rules of a region, through the cache."""

        async def load() -> list[CodingRule]:
            return await self._repository.list_for_region(region_id)

        return await self._cache.get_or_load(region_id, load)

    @beartype
    async def add_rule(self, rule: CodingRule) -> CodingRule:
        """Store a new rule and drop the cached rules of its region."""
        stored = await self._repository.add(rule)
        await self._cache.invalidate(rule.region_id)
        return stored

    @beartype
    async def save_rule(self, rule: CodingRule) -> CodingRule:
        """Update a rule and drop the cached rules of its region."""
        stored = await self._repository.save(rule)
        await self._cache.invalidate(rule.region_id)
        return stored

    @beartype
    async def resolve(
        self, region_id: str, location: GeoPoint, now: datetime
    ) -> CodingRule | None:
        """Effective rule covering ``location`` at ``now``.

        Overlapping rules resolve to the smallest coverage area, then to the
        lowest rule id.
        """
        candidates = [
            rule
            for rule in await self.rules_for_region(region_id)
            if rule.is_effective(now) and rule_covers(rule, location)
        ]
        if not candidates:
            return None
        if len(candidates) > 1:
            logger.debug(
                "%d coding rules overlap at %s,%s in %s",
                len(candidates),
                location.lat,
                location.lon,
                region_id,
            )
        return min(
            candidates, key=lambda rule: (polygon_area(rule.coverage_area), rule.id)
        )


@beartype
def default_coding_rule(now: datetime) -> CodingRule:
    """Metro Manila UVVRP rule, weekdays 07:00-19:00 Manila time."""
    holidays = frozenset(
        date(year, month, day)
        for year in (now.year, now.year + 1)
        for month, day in ((1, 1), (4, 9), (5, 1), (6, 12), (12, 25), (12, 30))
    )
    return CodingRule(
        id="ncr-uvvrp",
        region_id="ncr",
        scheme_name="Metro Manila Unified Vehicular Volume Reduction Program",
        coding_hours=CodingHours(start=time(7, 0), end=time(19, 0)),
        coding_days=frozenset(NCR_DIGIT_ROTATION),
        digit_rotation=NCR_DIGIT_ROTATION,
        coverage_area=METRO_MANILA_AREA,
        holiday_exemptions=holidays,
        first_offense_fine=Decimal("1000.00"),
        repeat_offense_fine=Decimal("2000.00"),
        exempt_plate_patterns=DEFAULT_EXEMPT_PLATE_PATTERNS,
        effective_date=now,
    )
