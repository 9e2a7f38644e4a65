"""Request-rate gate shared by every outbound request."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

WINDOW_SEC = 1.0


class RateLimiter:
    """Grant at most `limit` requests per 1-second window.

    A caller over the ceiling sleeps until the current window ends, then
    opens a new window counting itself as its first request. `limit = 0`
    makes every call wait a full window.
    """

    def __init__(
        self,
        limit: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.limit = max(0, limit)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._count = 0
        self._window_start = clock()

    @property
    def state(self) -> tuple[int, float]:
        return self._count, self._window_start

    async def acquire(self) -> None:
        """Return once the caller may issue one request."""
        async with self._lock:
            now = self._clock()
            if now - self._window_start >= WINDOW_SEC:
                self._count, self._window_start = 0, now
            if self._count < self.limit:
                self._count += 1
                return
            wait_for = self._window_start + WINDOW_SEC - now
            logging.debug("Rate limit reached (%s/s); waiting %.3fs", self.limit, wait_for)
            await self._sleep(wait_for)
            self._count, self._window_start = 1, self._clock()
