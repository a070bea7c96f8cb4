# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Sliding-window rate limiting for outbound agency calls."""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable

from attrs import define, field, frozen
from beartype import beartype


@frozen
class RateLimitRule:
    """Immutable rate limiting rule configuration."""

    max_requests: int = field()
    window_seconds: float = field(default=60.0)


@frozen
class RateLimitDecision:
    """Outcome of an acquire attempt."""

    allowed: bool = field()
    waited_seconds: float = field(default=0.0)
    retry_after_seconds: float = field(default=0.0)


@define
class KeyRateTracker:
    """Track request timestamps for a single key."""

    key: str = field()
    requests: deque[float] = field(factory=deque)

    @beartype
    def cleanup_old_requests(self, current_time: float, window_seconds: float) -> None:
        """Remove requests older than the tracking window."""
        cutoff = current_time - window_seconds
        while self.requests and self.requests[0] <= cutoff:
            self.requests.popleft()

    @beartype
    def seconds_until_slot(self, rule: RateLimitRule, current_time: float) -> float:
        """Seconds until a request fits in the window (0 when it fits now)."""
        self.cleanup_old_requests(current_time, rule.window_seconds)
        if len(self.requests) < rule.max_requests:
            return 0.0
        return max(0.0, self.requests[0] + rule.window_seconds - current_time)


class SlidingWindowRateLimiter:
    """Per-key sliding window limiter that waits for a free slot.

    ``acquire`` waits up to ``max_wait_seconds`` for a slot. Callers for the
    same key are serialized through one ``asyncio.Lock`` so concurrent rule
    evaluations never overrun the window.
    """

    def __init__(
        self,
        rules: dict[str, RateLimitRule],
        max_wait_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._rules = dict(rules)
        self._max_wait = max_wait_seconds
        self._clock = clock
        self._sleep = sleep
        self._trackers: dict[str, KeyRateTracker] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def rule_for(self, key: str) -> RateLimitRule:
        """Get the rule for a key."""
        try:
            return self._rules[key]
        except KeyError as e:
            raise KeyError(f"No rate limit rule configured for {key!r}") from e

    def _tracker(self, key: str) -> KeyRateTracker:
        if key not in self._trackers:
            self._trackers[key] = KeyRateTracker(key=key)
        return self._trackers[key]

    @beartype
    async def acquire(self, key: str) -> RateLimitDecision:
        """Reserve a slot for ``key``, waiting up to the configured maximum."""
        rule = self.rule_for(key)
        tracker = self._tracker(key)
        lock = self._locks.setdefault(key, asyncio.Lock())

        async with lock:
            waited = 0.0
            while True:
                now = self._clock()
                wait = tracker.seconds_until_slot(rule, now)
                if wait <= 0:
                    tracker.requests.append(now)
                    return RateLimitDecision(allowed=True, waited_seconds=waited)
                if waited + wait > self._max_wait:
                    return RateLimitDecision(
                        allowed=False,
                        waited_seconds=waited,
                        retry_after_seconds=wait,
                    )
                await self._sleep(wait)
                waited += wait

    @beartype
    def current_usage(self, key: str) -> int:
        """Requests counted in the current window for ``key``."""
        rule = self.rule_for(key)
        tracker = self._tracker(key)
        tracker.cleanup_old_requests(self._clock(), rule.window_seconds)
        return len(tracker.requests)
