"""Tests for the request-rate gate."""

from __future__ import annotations

import asyncio

import pytest

from yuque_backup.limiter import RateLimiter


class FakeClock:
    """Monotonic clock that only moves when a caller sleeps."""

    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        await asyncio.sleep(0)


def make_limiter(limit: int) -> tuple[RateLimiter, FakeClock]:
    clock = FakeClock()
    return RateLimiter(limit, clock=clock, sleep=clock.sleep), clock


class TestRateLimiter:
    async def test_under_limit_does_not_wait(self) -> None:
        limiter, clock = make_limiter(3)
        for _ in range(3):
            await limiter.acquire()
        assert clock.sleeps == []
        assert limiter.state == (3, 100.0)

    async def test_over_limit_waits_for_window_end_and_resets(self) -> None:
        limiter, clock = make_limiter(2)
        await limiter.acquire()
        await limiter.acquire()
        await limiter.acquire()
        assert clock.sleeps == [pytest.approx(1.0)]
        assert limiter.state == (1, pytest.approx(101.0))

    async def test_limit_zero_waits_a_full_second_every_time(self) -> None:
        limiter, clock = make_limiter(0)
        for _ in range(3):
            await limiter.acquire()
        assert clock.sleeps == [pytest.approx(1.0)] * 3
        assert clock.now == pytest.approx(103.0)

    async def test_expired_window_is_not_borrowed(self) -> None:
        limiter, clock = make_limiter(2)
        await limiter.acquire()
        clock.now += 5
        await limiter.acquire()
        await limiter.acquire()
        # window opened at 105; third call overflows it
        assert limiter.state == (2, 105.0)
        await limiter.acquire()
        assert clock.sleeps == [pytest.approx(1.0)]

    @pytest.mark.parametrize("limit", [1, 3, 5])
    async def test_burst_never_exceeds_ceiling(self, limit: int) -> None:
        limiter, clock = make_limiter(limit)
        granted: list[float] = []

        async def request() -> None:
            await limiter.acquire()
            granted.append(clock.now)

        await asyncio.gather(*(request() for _ in range(limit * 4 + 1)))

        assert len(granted) == limit * 4 + 1
        for start in granted:
            in_window = [t for t in granted if start <= t < start + 1.0]
            assert len(in_window) <= limit
