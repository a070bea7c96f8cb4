"""Real-time number-coding violation detection.

A check resolves the governing rule, tests the coding window and the plate's
last digit, walks the exemptions, and only then records a violation. The
violation is committed before anyone is notified so that a channel outage
never loses it.
"""

import logging
import re
import secrets
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from beartype import beartype

from ..core.config import Settings
from ..core.errors import ComplianceError, ConflictError
from ..core.logging_utils import log_context
from ..core.performance_monitor import performance_monitor
from ..core.result_types import Err, Ok, Result
from ..models.coding import CodingRule, GeoPoint
from ..models.monitoring import AlertPriority, RecipientRole
from ..models.violation import CodingViolation, Violation, ViolationDomain
from ..schemas.compliance import (
    CodingCheckRequest,
    CodingCheckResponse,
    RouteCheckResult,
)
from .coding_resolver import (
    CodingRuleResolver,
    CodingWindowReason,
    banned_digits_for,
    coding_status,
)
from .exemptions import ExemptionManager
from .notifications import Notification, NotificationChannel, NotificationDispatcher
from .violation_ledger import ViolationLedger

logger = logging.getLogger(__name__)

# Final digit, allowing a non-digit suffix such as "-GOV" after it.
_LAST_DIGIT = re.compile(r"(\d)(?=\D*$)")

VIOLATION_TEMPLATE = "coding_violation_detected"
VIOLATION_RECIPIENTS = (RecipientRole.DRIVER, RecipientRole.OPERATIONS_MANAGER)
PENALTY_POINTS = 1


@beartype
def last_digit_of(plate_number: str) -> int | None:
    """Last digit of a plate before any trailing non-digit suffix."""
    match = _LAST_DIGIT.search(plate_number)
    return None if match is None else int(match.group(1))


@beartype
def matches_exempt_pattern(rule: CodingRule, plate_number: str) -> bool:
    """Whether the plate matches one of the rule's exempt plate patterns."""
    return any(re.search(p, plate_number) for p in rule.exempt_plate_patterns)


def _normalize_plate(plate_number: str) -> str:
    return plate_number.strip().upper()


def _ticket_number(now: datetime) -> str:
    return f"TCT-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def _pass(
    rule: CodingRule | None = None,
    banned: frozenset[int] = frozenset(),
    exemption_reason: str | None = None,
    warnings: tuple[str, ...] = (),
) -> CodingCheckResponse:
    return CodingCheckResponse(
        has_violation=False,
        can_proceed=True,
        coding_rule_id=None if rule is None else rule.id,
        banned_digits=banned,
        exemption_reason=exemption_reason,
        warnings=warnings,
    )


def _existing(violation: Violation) -> CodingCheckResponse:
    details = violation if isinstance(violation, CodingViolation) else None
    return CodingCheckResponse(
        has_violation=True,
        can_proceed=False,
        violation_details=details,
        coding_rule_id=None if details is None else details.coding_rule_id,
        warnings=(f"Event already recorded as violation {violation.id}",),
    )


class ViolationDetector:
    """Checks vehicle events against number coding."""

    def __init__(
        self,
        resolver: CodingRuleResolver,
        exemptions: ExemptionManager,
        ledger: ViolationLedger,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        id_factory: Callable[[], str] = lambda: uuid4().hex,
    ) -> None:
        self._resolver = resolver
        self._exemptions = exemptions
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._repeat_window = timedelta(days=settings.coding_repeat_offense_window_days)
        self._repeat_threshold = settings.coding_repeat_offense_threshold
        self._payment_period = timedelta(days=settings.violation_payment_days)
        self._clock = clock
        self._new_id = id_factory

    @beartype
    @performance_monitor("coding_check", max_duration_ms=500)
    async def check(
        self,
        vehicle_id: str,
        plate_number: str,
        location: GeoPoint,
        region_id: str,
        driver_id: str | None = None,
        now: datetime | None = None,
        event_id: str | None = None,
    ) -> CodingCheckResponse:
        """Check one vehicle event and record a violation if it breaks coding.

        When ``event_id`` is given, a retried event returns the violation
        recorded the first time instead of fining again.
        """
        now = now or self._clock()
        plate = _normalize_plate(plate_number)
        dedup_key = None if event_id is None else f"coding:{vehicle_id}:{event_id}"

        if dedup_key is not None:
            previous = await self._ledger.find_by_dedup_key(dedup_key)
            if previous is not None:
                return _existing(previous)

        rule = await self._resolver.resolve(region_id, location, now)
        if rule is None:
            return _pass()

        window = coding_status(rule, now)
        if not window.in_effect:
            reason = "holiday" if window.reason == CodingWindowReason.HOLIDAY else None
            return _pass(rule, exemption_reason=reason)

        digit = last_digit_of(plate)
        if digit is None:
            return _pass(
                rule, warnings=(f"Plate {plate} has no digit; coding not checked",)
            )

        banned = banned_digits_for(rule, window.local_date)
        if digit not in banned:
            return _pass(rule, banned)

        exemption = await self._exemptions.find_active(vehicle_id, driver_id, now)
        if exemption is not None:
            return _pass(
                rule, banned, f"exemption:{exemption.exemption_type.value}"
            )
        if matches_exempt_pattern(rule, plate):
            return _pass(rule, banned, "exempt_plate")
        if window.local_date in rule.holiday_exemptions:
            return _pass(rule, banned, "holiday")

        violation = CodingViolation(
            id=self._new_id(),
            entity_id=vehicle_id,
            driver_id=driver_id,
            plate_number=plate,
            last_digit=digit,
            location=location,
            coding_rule_id=rule.id,
            fine_amount=await self._fine_for(rule, vehicle_id, now),
            penalty_points=PENALTY_POINTS,
            violation_date=now,
            due_date=now + self._payment_period,
            dedup_key=dedup_key,
            ticket_number=_ticket_number(now),
        )
        try:
            violation = await self._ledger.record(violation)
        except ConflictError:
            if dedup_key is None:
                raise
            previous = await self._ledger.find_by_dedup_key(dedup_key)
            if previous is None:
                raise
            return _existing(previous)

        warnings: tuple[str, ...] = ()
        if not await self._notify(violation):
            warnings = ("Violation recorded but notification failed",)

        return CodingCheckResponse(
            has_violation=True,
            violation_details=violation,
            warnings=warnings,
            can_proceed=False,
            coding_rule_id=rule.id,
            banned_digits=banned,
        )

    @beartype
    async def check_request(self, request: CodingCheckRequest) -> CodingCheckResponse:
        """:meth:`check` for a request object."""
        return await self.check(
            request.vehicle_id,
            request.plate_number,
            request.location,
            request.region_id,
            driver_id=request.driver_id,
            now=request.timestamp,
            event_id=request.event_id,
        )

    @beartype
    async def bulk_check(
        self, requests: Sequence[CodingCheckRequest]
    ) -> list[Result[CodingCheckResponse, str]]:
        """Check many events in order; a failing item does not stop the rest."""
        results: list[Result[CodingCheckResponse, str]] = []
        for request in requests:
            try:
                results.append(Ok(await self.check_request(request)))
            except ComplianceError as e:
                logger.warning(
                    "Coding check failed %s: %s",
                    log_context(vehicle=request.vehicle_id, event=request.event_id),
                    e,
                )
                results.append(Err(e.message))
        return results

    @beartype
    async def check_route(
        self,
        points: Sequence[tuple[GeoPoint, datetime]],
        plate_number: str,
        region_id: str,
        vehicle_id: str | None = None,
        driver_id: str | None = None,
    ) -> list[RouteCheckResult]:
        """Dry-run a planned route; nothing is recorded."""
        plate = _normalize_plate(plate_number)
        digit = last_digit_of(plate)
        results: list[RouteCheckResult] = []
        for location, at in points:
            rule = await self._resolver.resolve(region_id, location, at)
            restricted, reason = False, None
            if rule is None:
                reason = "no_coding_rule"
            else:
                restricted, reason = await self._route_point(
                    rule, plate, digit, at, vehicle_id, driver_id
                )
            results.append(
                RouteCheckResult(
                    location=location,
                    at=at,
                    restricted=restricted,
                    coding_rule_id=None if rule is None else rule.id,
                    reason=reason,
                )
            )
        return results

    async def _route_point(
        self,
        rule: CodingRule,
        plate: str,
        digit: int | None,
        at: datetime,
        vehicle_id: str | None,
        driver_id: str | None,
    ) -> tuple[bool, str]:
        window = coding_status(rule, at)
        if not window.in_effect:
            return False, window.reason.value
        if digit is None:
            return False, "no_plate_digit"
        if digit not in banned_digits_for(rule, window.local_date):
            return False, "digit_allowed"
        if vehicle_id is not None:
            exemption = await self._exemptions.find_active(
                vehicle_id, driver_id, at, record_use=False
            )
            if exemption is not None:
                return False, f"exemption:{exemption.exemption_type.value}"
        if matches_exempt_pattern(rule, plate):
            return False, "exempt_plate"
        return True, "banned_digit"

    async def _fine_for(
        self, rule: CodingRule, vehicle_id: str, now: datetime
    ) -> Decimal:
        prior = await self._ledger.count_recent(
            vehicle_id, now - self._repeat_window, ViolationDomain.CODING
        )
        if prior >= self._repeat_threshold:
            return rule.repeat_offense_fine
        return rule.first_offense_fine

    async def _notify(self, violation: CodingViolation) -> bool:
        try:
            await self._dispatcher.send(
                Notification(
                    channel=NotificationChannel.SMS,
                    recipients=VIOLATION_RECIPIENTS,
                    template=VIOLATION_TEMPLATE,
                    priority=AlertPriority.HIGH,
                    entity_id=violation.entity_id,
                    domain=ViolationDomain.CODING,
                    context={
                        "violation_id": violation.id,
                        "plate_number": violation.plate_number,
                        "fine_amount": str(violation.fine_amount),
                        "due_date": violation.due_date.isoformat(),
                        "ticket_number": violation.ticket_number or "",
                    },
                )
            )
        except Exception:
            logger.exception(
                "Violation notification failed %s",
                log_context(violation=violation.id, vehicle=violation.entity_id),
            )
            return False
        return True
