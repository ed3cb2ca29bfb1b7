"""Sliding-window rate limiting for outbound API calls."""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from trackdash.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Lower bound for a single back-off sleep.
MIN_SLEEP_SECONDS = 0.01


class SlidingWindowRateLimiter:
    """Admits at most ``max_requests`` calls in any trailing ``window_seconds``.

    Expired timestamps are purged lazily whenever the limiter is inspected.
    Production code should only use :meth:`run_gated`; ``can_proceed`` and
    ``record_call`` exist for introspection and tests.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _purge(self) -> float:
        now = self._clock()
        cutoff = now - self.window_seconds
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()
        return now

    def can_proceed(self) -> bool:
        self._purge()
        return len(self._calls) < self.max_requests

    def record_call(self) -> None:
        now = self._purge()
        self._calls.append(now)

        remaining = self.max_requests - len(self._calls)
        if remaining < max(1, self.max_requests // 10):
            logger.debug("Rate limiter %s: %d requests left in window", self.name, remaining)

    def wait_time(self) -> float:
        """Seconds until the oldest call leaves the window, 0 if admission is possible."""
        now = self._purge()
        if len(self._calls) < self.max_requests:
            return 0.0
        return max(0.0, self._calls[0] + self.window_seconds - now)

    async def acquire(self) -> None:
        """Suspend until a slot is free, then record the call."""
        while True:
            async with self._lock:
                if self.can_proceed():
                    self.record_call()
                    return
                delay = self.wait_time()
            logger.info("Rate limit reached for %s, waiting %.1fs", self.name, delay)
            await asyncio.sleep(max(delay, MIN_SLEEP_SECONDS))

    async def run_gated(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Wait for admission, record the call and run ``fn``."""
        await self.acquire()
        return await fn(*args, **kwargs)

    def stats(self) -> dict[str, Any]:
        self._purge()
        in_window = len(self._calls)
        return {
            "name": self.name,
            "requests_in_window": in_window,
            "remaining": max(0, self.max_requests - in_window),
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "utilization_percent": round(in_window / self.max_requests * 100, 1),
        }

    def reset(self) -> None:
        self._calls.clear()
        logger.info("Rate limiter %s reset", self.name)


tracking_rate_limiter = SlidingWindowRateLimiter(
    settings.tracking_rate_limit,
    settings.tracking_rate_window_seconds,
    name="tracking",
)
storefront_rate_limiter = SlidingWindowRateLimiter(
    settings.storefront_rate_limit,
    settings.storefront_rate_window_seconds,
    name="storefront",
)
