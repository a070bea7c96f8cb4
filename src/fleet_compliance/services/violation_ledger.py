"""Violation ledger.

Violations are append-only; only their lifecycle status moves, along this
graph::

    pending   -> paid | contested | overdue
    contested -> pending (upheld, reduced) | dismissed
    overdue   -> paid

Paid and dismissed are terminal.
"""

import logging
from datetime import datetime
from decimal import Decimal

from beartype import beartype

from ..core.errors import (
    ConflictError,
    NotFoundError,
    StateTransitionError,
    TerminalStateError,
    ValidationError,
)
from ..core.logging_utils import log_context
from ..models.violation import (
    ContestDecision,
    Violation,
    ViolationDomain,
    ViolationStatus,
)
from ..storage.base import ViolationRepository

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ViolationStatus, frozenset[ViolationStatus]] = {
    ViolationStatus.PENDING: frozenset(
        {ViolationStatus.PAID, ViolationStatus.CONTESTED, ViolationStatus.OVERDUE}
    ),
    ViolationStatus.CONTESTED: frozenset(
        {ViolationStatus.PENDING, ViolationStatus.DISMISSED}
    ),
    ViolationStatus.PAID: frozenset(),
    ViolationStatus.DISMISSED: frozenset(),
    ViolationStatus.OVERDUE: frozenset({ViolationStatus.PAID}),
}


@beartype
def check_transition(violation: Violation, target: ViolationStatus) -> None:
    """Raise unless ``violation`` may move to ``target``."""
    if target in ALLOWED_TRANSITIONS[violation.status]:
        return
    message = (
        f"Violation {violation.id} cannot move from "
        f"{violation.status.value} to {target.value}"
    )
    if violation.is_terminal:
        raise TerminalStateError(
            message, current=violation.status.value, target=target.value
        )
    raise StateTransitionError(
        message, current=violation.status.value, target=target.value
    )


class ViolationLedger:
    """Records violations and applies lifecycle transitions."""

    def __init__(self, repository: ViolationRepository) -> None:
        self._repository = repository

    @beartype
    async def record(self, violation: Violation) -> Violation:
        """Append a new violation.

        Raises:
            ConflictError: the id or dedup key is already recorded.
        """
        if violation.status != ViolationStatus.PENDING:
            raise ValidationError(
                "New violations must be pending", status=violation.status.value
            )
        stored = await self._repository.add(violation)
        logger.info(
            "Recorded %s violation %s for %s, fine %s",
            violation.domain.value,
            violation.id,
            violation.entity_id,
            violation.fine_amount,
        )
        return stored

    @beartype
    async def get(self, violation_id: str) -> Violation:
        """Fetch a violation by id."""
        violation = await self._repository.get(violation_id)
        if violation is None:
            raise NotFoundError(
                f"Violation {violation_id} not found", violation_id=violation_id
            )
        return violation

    @beartype
    async def find_by_dedup_key(self, dedup_key: str) -> Violation | None:
        """Violation previously recorded under ``dedup_key``, if any."""
        return await self._repository.find_by_dedup_key(dedup_key)

    @beartype
    async def pay(self, violation_id: str, now: datetime) -> Violation:
        """Mark a pending or overdue violation as paid."""
        violation = await self.get(violation_id)
        check_transition(violation, ViolationStatus.PAID)
        return await self._repository.save(
            violation.next_version(
                status=ViolationStatus.PAID, paid_at=now, resolved_at=now
            )
        )

    @beartype
    async def contest(
        self, violation_id: str, reason: str, now: datetime
    ) -> Violation:
        """Contest a pending violation.

        Raises:
            ValidationError: ``reason`` is blank.
            TerminalStateError: the violation is paid or dismissed.
            StateTransitionError: the violation is not pending.
        """
        if not reason.strip():
            raise ValidationError(
                "A reason is required to contest", violation_id=violation_id
            )
        violation = await self.get(violation_id)
        check_transition(violation, ViolationStatus.CONTESTED)
        contested = await self._repository.save(
            violation.next_version(
                status=ViolationStatus.CONTESTED,
                contest_reason=reason.strip(),
                contested_at=now,
                contest_decision=None,
            )
        )
        logger.info("Violation %s contested", violation_id)
        return contested

    @beartype
    async def review_contest(
        self,
        violation_id: str,
        decision: ContestDecision,
        now: datetime,
        reduced_fine: Decimal | None = None,
    ) -> Violation:
        """Apply a reviewer decision to a contested violation.

        ``upheld`` returns the violation to pending, ``dismissed`` closes it,
        ``reduced`` returns it to pending with ``reduced_fine``.
        """
        violation = await self.get(violation_id)
        if violation.status != ViolationStatus.CONTESTED:
            raise StateTransitionError(
                f"Violation {violation_id} is not contested",
                current=violation.status.value,
                target="reviewed",
            )

        match decision:
            case ContestDecision.UPHELD:
                updated = violation.next_version(
                    status=ViolationStatus.PENDING, contest_decision=decision
                )
            case ContestDecision.DISMISSED:
                updated = violation.next_version(
                    status=ViolationStatus.DISMISSED,
                    contest_decision=decision,
                    resolved_at=now,
                )
            case ContestDecision.REDUCED:
                if reduced_fine is None or not (
                    Decimal("0") <= reduced_fine < violation.fine_amount
                ):
                    raise ValidationError(
                        "reduced_fine must be below the current fine",
                        violation_id=violation_id,
                        reduced_fine=reduced_fine,
                    )
                updated = violation.next_version(
                    status=ViolationStatus.PENDING,
                    contest_decision=decision,
                    fine_amount=reduced_fine.quantize(Decimal("0.01")),
                )
            case _:
                raise ValidationError(f"Unknown decision: {decision}")

        logger.info("Contest of %s reviewed: %s", violation_id, decision.value)
        return await self._repository.save(updated)

    @beartype
    async def mark_overdue(self, violation_id: str) -> Violation:
        """Move a pending violation past its due date to overdue."""
        violation = await self.get(violation_id)
        check_transition(violation, ViolationStatus.OVERDUE)
        return await self._repository.save(
            violation.next_version(status=ViolationStatus.OVERDUE)
        )

    @beartype
    async def sweep_overdue(self, now: datetime) -> list[Violation]:
        """Mark every pending violation whose due date has passed."""
        due = await self._repository.list_by_status_due_before(
            ViolationStatus.PENDING, now
        )
        swept: list[Violation] = []
        for violation in due:
            try:
                swept.append(
                    await self._repository.save(
                        violation.next_version(status=ViolationStatus.OVERDUE)
                    )
                )
            except ConflictError as e:
                logger.warning(
                    "Violation not marked overdue %s: %s",
                    log_context(violation=violation.id, entity=violation.entity_id),
                    e,
                )
        if swept:
            logger.info("Marked %d violation(s) overdue", len(swept))
        return swept

    @beartype
    async def list_for_entity(self, entity_id: str) -> list[Violation]:
        """All violations of an entity, oldest first."""
        return await self._repository.list_for_entity(entity_id)

    @beartype
    async def count_recent(
        self,
        entity_id: str,
        since: datetime,
        domain: ViolationDomain | None = None,
    ) -> int:
        """Violations dated at or after ``since``, dismissed ones excluded."""
        return await self._repository.count_for_entity_since(
            entity_id,
            since,
            exclude_statuses=frozenset({ViolationStatus.DISMISSED}),
            domain=domain,
        )
