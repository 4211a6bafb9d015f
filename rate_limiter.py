"""Fixed-window throttle for async callables."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most ``limit`` invocations to start per ``interval`` seconds.

    Callers beyond the limit wait for the next window and are released in
    arrival order. Only start times are delayed; completions are untouched.
    """

    def __init__(
        self,
        limit: int,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.limit = limit
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._window_start: float | None = None
        self._started_in_window = 0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a start slot is available in the current window."""
        # asyncio.Lock wakes waiters FIFO, which keeps release order fair.
        async with self._lock:
            while True:
                now = self._clock()
                if self._window_start is None or now - self._window_start >= self.interval:
                    self._window_start = now
                    self._started_in_window = 0

                if self._started_in_window < self.limit:
                    self._started_in_window += 1
                    return

                delay = self.interval - (now - self._window_start)
                LOGGER.debug("Rate limit reached (%s/%ss), waiting %.2fs", self.limit, self.interval, delay)
                await self._sleep(delay)

    def wrap(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Return ``func`` throttled by this limiter."""

        @functools.wraps(func)
        async def throttled(*args: Any, **kwargs: Any) -> T:
            await self.acquire()
            return await func(*args, **kwargs)

        return throttled
