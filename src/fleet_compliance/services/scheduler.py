"""Monitoring scheduler.

Each rule carries its own ``next_run_at``. :meth:`MonitoringScheduler.tick`
runs every due rule once, concurrently up to a bound, and never runs the same
rule twice at the same time. Cadence is driven by whoever calls ``tick``:
tests pass explicit instants, :meth:`MonitoringScheduler.start` runs a
background loop.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum

from attrs import field, frozen
from beartype import beartype

from ..core.result_types import Err
from ..models.monitoring import FiredEscalation, MonitoringRule
from .escalation import EscalationOrchestrator
from .rule_registry import RuleRegistry, next_run_after

__all__ = [
    "MonitoringScheduler",
    "RuleRunOutcome",
    "RuleRunReport",
    "next_run_after",
]

logger = logging.getLogger(__name__)


class RuleRunOutcome(str, Enum):
    """How a rule run ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@frozen
class RuleRunReport:
    """Result of one rule within a tick."""

    rule_id: str = field()
    outcome: RuleRunOutcome = field()
    ran_at: datetime = field()
    fired: tuple[FiredEscalation, ...] = field(default=())
    error: str | None = field(default=None)
    next_run_at: datetime | None = field(default=None)


class MonitoringScheduler:
    """Drives rule evaluation cadence, fail-soft across rules."""

    def __init__(
        self,
        registry: RuleRegistry,
        orchestrator: EscalationOrchestrator,
        max_concurrency: int = 4,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._registry = registry
        self._orchestrator = orchestrator
        self._max_concurrency = max_concurrency
        self._clock = clock
        self._in_flight: set[str] = set()
        self._task: asyncio.Task[None] | None = None

    @property
    def in_flight(self) -> frozenset[str]:
        """Ids of rules currently running."""
        return frozenset(self._in_flight)

    @property
    def is_running(self) -> bool:
        """Whether the background loop is active."""
        return self._task is not None and not self._task.done()

    @beartype
    async def tick(self, now: datetime | None = None) -> list[RuleRunReport]:
        """Run every rule due at ``now``."""
        now = now or self._clock()
        due = await self._registry.due_rules(now)
        if not due:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency)
        reports = await asyncio.gather(
            *(self._run_rule(rule, now, semaphore) for rule in due)
        )
        logger.info(
            "Scheduler tick at %s ran %d rule(s)", now.isoformat(), len(reports)
        )
        return list(reports)

    async def _run_rule(
        self, rule: MonitoringRule, now: datetime, semaphore: asyncio.Semaphore
    ) -> RuleRunReport:
        if rule.id in self._in_flight:
            logger.info("Rule %s already running, skipped", rule.id)
            return RuleRunReport(
                rule_id=rule.id, outcome=RuleRunOutcome.SKIPPED, ran_at=now
            )

        self._in_flight.add(rule.id)
        try:
            async with semaphore:
                try:
                    result = await self._orchestrator.run_rule(rule, now)
                except Exception as e:
                    logger.exception("Rule %s raised during evaluation", rule.id)
                    result = Err(f"{type(e).__name__}: {e}")

                next_run_at = None
                try:
                    advanced = await self._registry.advance(rule.id, now)
                    next_run_at = advanced.next_run_at
                except Exception:
                    logger.exception("Could not advance schedule of rule %s", rule.id)
        finally:
            self._in_flight.discard(rule.id)

        if isinstance(result, Err):
            return RuleRunReport(
                rule_id=rule.id,
                outcome=RuleRunOutcome.FAILED,
                ran_at=now,
                error=result.error,
                next_run_at=next_run_at,
            )
        return RuleRunReport(
            rule_id=rule.id,
            outcome=RuleRunOutcome.COMPLETED,
            ran_at=now,
            fired=tuple(result.value),
            next_run_at=next_run_at,
        )

    async def start(
        self,
        interval_seconds: float,
        runner: Callable[[], Awaitable[object]] | None = None,
    ) -> None:
        """Start the background loop.

        ``runner`` replaces the plain :meth:`tick` when callers need extra work
        on every cycle.
        """
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(
                self._loop(interval_seconds, runner or self.tick)
            )

    @beartype
    async def stop(self) -> None:
        """Stop the background loop."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _loop(
        self, interval_seconds: float, runner: Callable[[], Awaitable[object]]
    ) -> None:
        while True:
            try:
                await runner()
                await asyncio.sleep(interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Scheduler tick failed")
                await asyncio.sleep(interval_seconds)
