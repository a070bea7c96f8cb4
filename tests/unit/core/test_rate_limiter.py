"""Unit tests for the sliding-window rate limiter."""

import pytest

from fleet_compliance.core.rate_limiter import RateLimitRule, SlidingWindowRateLimiter


class FakeTime:
    """Clock and sleep sharing one hand-moved timeline."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_time() -> FakeTime:
    """Shared fake timeline."""
    return FakeTime()


def make_limiter(
    fake_time: FakeTime, max_requests: int = 2, max_wait: float = 5.0
) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        {"ltfrb": RateLimitRule(max_requests=max_requests, window_seconds=10.0)},
        max_wait_seconds=max_wait,
        clock=fake_time.clock,
        sleep=fake_time.sleep,
    )


class TestSlidingWindowRateLimiter:
    """Test slot reservation and waiting."""

    async def test_allows_within_limit(self, fake_time: FakeTime) -> None:
        """Test requests under the limit pass without waiting."""
        limiter = make_limiter(fake_time)

        first = await limiter.acquire("ltfrb")
        second = await limiter.acquire("ltfrb")

        assert first.allowed and second.allowed
        assert fake_time.sleeps == []
        assert limiter.current_usage("ltfrb") == 2

    async def test_waits_for_free_slot(self, fake_time: FakeTime) -> None:
        """Test a full window waits until the oldest request leaves."""
        limiter = make_limiter(fake_time, max_wait=15.0)
        await limiter.acquire("ltfrb")
        fake_time.now = 4.0
        await limiter.acquire("ltfrb")

        decision = await limiter.acquire("ltfrb")

        assert decision.allowed
        assert decision.waited_seconds == pytest.approx(6.0)
        assert fake_time.sleeps == [pytest.approx(6.0)]

    async def test_refuses_beyond_max_wait(self, fake_time: FakeTime) -> None:
        """Test a wait longer than allowed is refused with a retry hint."""
        limiter = make_limiter(fake_time, max_requests=1, max_wait=2.0)
        await limiter.acquire("ltfrb")

        decision = await limiter.acquire("ltfrb")

        assert not decision.allowed
        assert decision.retry_after_seconds == pytest.approx(10.0)
        assert fake_time.sleeps == []

    async def test_window_slides(self, fake_time: FakeTime) -> None:
        """Test old requests stop counting once the window passes."""
        limiter = make_limiter(fake_time, max_requests=1, max_wait=0.0)
        await limiter.acquire("ltfrb")
        fake_time.now = 10.0

        decision = await limiter.acquire("ltfrb")

        assert decision.allowed

    async def test_unknown_key(self, fake_time: FakeTime) -> None:
        """Test keys without a rule are rejected."""
        limiter = make_limiter(fake_time)

        with pytest.raises(KeyError, match="No rate limit rule"):
            await limiter.acquire("mmda")
