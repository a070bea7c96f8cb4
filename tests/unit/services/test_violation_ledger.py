"""Unit tests for the violation ledger."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from fleet_compliance.core.errors import (
    ConflictError,
    NotFoundError,
    StateTransitionError,
    TerminalStateError,
    ValidationError,
)
from fleet_compliance.models.violation import (
    ContestDecision,
    Violation,
    ViolationDomain,
    ViolationStatus,
)
from fleet_compliance.services.violation_ledger import ViolationLedger
from fleet_compliance.storage.memory import InMemoryViolationRepository
from tests.fixtures.builders import make_violation


class ConflictingViolationRepository(InMemoryViolationRepository):
    """Violations whose saves lose a race for the given ids."""

    def __init__(self, conflict_ids: set[str]) -> None:
        super().__init__()
        self.conflict_ids = conflict_ids

    async def save(self, violation: Violation) -> Violation:
        if violation.id in self.conflict_ids:
            raise ConflictError(f"Stale violation {violation.id}")
        return await super().save(violation)


@pytest.fixture
def ledger() -> ViolationLedger:
    """Ledger over an empty repository."""
    return ViolationLedger(InMemoryViolationRepository())


class TestRecording:
    """Test appending violations."""

    async def test_record_and_get(self, ledger: ViolationLedger, now: datetime) -> None:
        """Test a recorded violation can be fetched."""
        violation = await ledger.record(make_violation(now))

        assert await ledger.get(violation.id) == violation

    async def test_must_start_pending(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test new violations start pending."""
        with pytest.raises(ValidationError, match="must be pending"):
            await ledger.record(
                make_violation(now, status=ViolationStatus.PAID, paid_at=now)
            )

    async def test_duplicate_dedup_key(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test a dedup key is recorded once."""
        await ledger.record(make_violation(now, "V1", dedup_key="evt-1"))

        with pytest.raises(ConflictError):
            await ledger.record(make_violation(now, "V2", dedup_key="evt-1"))

        found = await ledger.find_by_dedup_key("evt-1")
        assert found is not None and found.id == "V1"

    async def test_unknown_violation(self, ledger: ViolationLedger) -> None:
        """Test fetching an unknown id."""
        with pytest.raises(NotFoundError):
            await ledger.get("missing")


class TestTransitions:
    """Test the lifecycle graph."""

    async def test_pay(self, ledger: ViolationLedger, now: datetime) -> None:
        """Test paying a pending violation."""
        await ledger.record(make_violation(now))

        paid = await ledger.pay("VIO-001", now)

        assert paid.status == ViolationStatus.PAID
        assert paid.paid_at == now
        assert paid.is_terminal

    async def test_paid_is_terminal(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test nothing leaves the paid state."""
        await ledger.record(make_violation(now))
        await ledger.pay("VIO-001", now)

        with pytest.raises(TerminalStateError):
            await ledger.contest("VIO-001", "not my car", now)
        with pytest.raises(TerminalStateError):
            await ledger.pay("VIO-001", now)

    async def test_contest_requires_reason(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test a blank contest reason is refused."""
        await ledger.record(make_violation(now))

        with pytest.raises(ValidationError, match="reason is required"):
            await ledger.contest("VIO-001", "   ", now)

    async def test_contest_upheld(self, ledger: ViolationLedger, now: datetime) -> None:
        """Test an upheld contest returns the violation to pending."""
        await ledger.record(make_violation(now))
        contested = await ledger.contest("VIO-001", "Emergency trip", now)
        assert contested.status == ViolationStatus.CONTESTED
        assert contested.contest_reason == "Emergency trip"

        upheld = await ledger.review_contest("VIO-001", ContestDecision.UPHELD, now)

        assert upheld.status == ViolationStatus.PENDING
        assert upheld.contest_decision == ContestDecision.UPHELD
        assert upheld.fine_amount == Decimal("5000.00")

    async def test_contest_dismissed(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test a dismissed contest closes the violation."""
        await ledger.record(make_violation(now))
        await ledger.contest("VIO-001", "Wrong plate", now)

        dismissed = await ledger.review_contest(
            "VIO-001", ContestDecision.DISMISSED, now
        )

        assert dismissed.status == ViolationStatus.DISMISSED
        assert dismissed.resolved_at == now
        with pytest.raises(TerminalStateError):
            await ledger.pay("VIO-001", now)

    async def test_contest_reduced(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test a reduced fine must be below the current one."""
        await ledger.record(make_violation(now))
        await ledger.contest("VIO-001", "First offense", now)

        with pytest.raises(ValidationError, match="reduced_fine"):
            await ledger.review_contest(
                "VIO-001", ContestDecision.REDUCED, now, Decimal("6000")
            )
        with pytest.raises(ValidationError):
            await ledger.review_contest("VIO-001", ContestDecision.REDUCED, now)

        reduced = await ledger.review_contest(
            "VIO-001", ContestDecision.REDUCED, now, Decimal("2500")
        )

        assert reduced.status == ViolationStatus.PENDING
        assert reduced.fine_amount == Decimal("2500.00")

    async def test_review_requires_contest(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test only contested violations can be reviewed."""
        await ledger.record(make_violation(now))

        with pytest.raises(StateTransitionError, match="not contested"):
            await ledger.review_contest("VIO-001", ContestDecision.UPHELD, now)

    async def test_overdue_sweep(self, ledger: ViolationLedger, now: datetime) -> None:
        """Test only pending violations past due become overdue."""
        await ledger.record(make_violation(now, "late"))
        await ledger.record(
            make_violation(now, "fresh", due_date=now + timedelta(days=30))
        )
        await ledger.record(make_violation(now, "settled"))
        await ledger.pay("settled", now)

        swept = await ledger.sweep_overdue(now + timedelta(days=8))

        assert [v.id for v in swept] == ["late"]
        assert (await ledger.get("late")).status == ViolationStatus.OVERDUE
        assert (await ledger.get("fresh")).status == ViolationStatus.PENDING

    async def test_overdue_sweep_skips_conflicts(self, now: datetime) -> None:
        """Test one conflicting save does not stop the rest of the sweep."""
        repository = ConflictingViolationRepository({"V-1"})
        ledger = ViolationLedger(repository)
        await ledger.record(make_violation(now, "V-1"))
        await ledger.record(make_violation(now, "V-2"))

        swept = await ledger.sweep_overdue(now + timedelta(days=8))

        assert [v.id for v in swept] == ["V-2"]
        assert (await ledger.get("V-1")).status == ViolationStatus.PENDING
        assert (await ledger.get("V-2")).status == ViolationStatus.OVERDUE

    async def test_overdue_can_be_paid(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test an overdue fine can still be settled."""
        await ledger.record(make_violation(now))
        await ledger.mark_overdue("VIO-001")

        paid = await ledger.pay("VIO-001", now + timedelta(days=9))

        assert paid.status == ViolationStatus.PAID
        assert paid.paid_at == now + timedelta(days=9)

    @pytest.mark.parametrize("source", ["contested", "overdue"])
    async def test_contest_only_from_pending(
        self, ledger: ViolationLedger, now: datetime, source: str
    ) -> None:
        """Test contesting a contested or overdue violation is refused."""
        await ledger.record(make_violation(now))
        if source == "contested":
            await ledger.contest("VIO-001", "Wrong plate", now)
        else:
            await ledger.mark_overdue("VIO-001")

        with pytest.raises(StateTransitionError) as exc_info:
            await ledger.contest("VIO-001", "Second try", now)

        assert not isinstance(exc_info.value, TerminalStateError)
        assert exc_info.value.current == source
        assert exc_info.value.target == "contested"


class TestQueries:
    """Test per-entity queries."""

    async def test_count_recent_excludes_dismissed(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test counting from a date, inclusive, without dismissed ones."""
        await ledger.record(
            make_violation(now - timedelta(days=40), "old", due_date=now)
        )
        await ledger.record(make_violation(now - timedelta(days=30), "edge"))
        await ledger.record(make_violation(now, "recent"))
        await ledger.record(make_violation(now, "waived"))
        await ledger.contest("waived", "Ambulance", now)
        await ledger.review_contest("waived", ContestDecision.DISMISSED, now)
        await ledger.record(make_violation(now, "other", entity_id="VEH-002"))

        assert await ledger.count_recent("VEH-001", now - timedelta(days=30)) == 2

    async def test_count_recent_by_domain(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test a domain narrows the count to that domain's violations."""
        await ledger.record(make_violation(now, "franchise"))
        await ledger.record(
            make_violation(now, "coding", domain=ViolationDomain.CODING)
        )
        since = now - timedelta(days=30)

        assert await ledger.count_recent("VEH-001", since) == 2
        assert await ledger.count_recent("VEH-001", since, ViolationDomain.CODING) == 1

    async def test_list_for_entity_oldest_first(
        self, ledger: ViolationLedger, now: datetime
    ) -> None:
        """Test entity history is ordered by violation date."""
        await ledger.record(make_violation(now, "newer"))
        await ledger.record(make_violation(now - timedelta(days=3), "older"))

        assert [v.id for v in await ledger.list_for_entity("VEH-001")] == [
            "older",
            "newer",
        ]
