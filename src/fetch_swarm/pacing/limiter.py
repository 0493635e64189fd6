"""Dispatch spacing for a single connection.

The limiter enforces a minimum interval between successive dispatch
starts (start to start). It delays dispatch, never rejects it:

    delay = last_dispatch_at + min_interval - now

Delay computation and the sleep both happen under one lock, so bundles
admitted together queue up behind each other instead of reading the
same stale timestamp.
"""

from __future__ import annotations

import asyncio
import time

from fetch_swarm.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Enforces a minimum spacing between dispatch starts.

    Usage:
        limiter = RateLimiter(min_interval=0.15)

        # Before each transport call
        await limiter.acquire()
        response = await transport(descriptor)
    """

    def __init__(self, min_interval: float = 0.0) -> None:
        """Initialize the rate limiter.

        Args:
            min_interval: Minimum seconds between dispatch starts (0 disables spacing)
        """
        self._min_interval = max(0.0, min_interval)
        self._last_dispatch_at: float | None = None
        self._dispatch_count = 0
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        """Minimum seconds between dispatch starts."""
        return self._min_interval

    def get_delay(self, now: float | None = None) -> float:
        """Seconds the next dispatch would have to wait (0 = proceed)."""
        if self._last_dispatch_at is None:
            return 0.0
        if now is None:
            now = time.monotonic()
        return max(0.0, self._last_dispatch_at + self._min_interval - now)

    async def acquire(self) -> float:
        """Wait for the next dispatch slot and record it.

        Returns:
            The monotonic timestamp recorded as this dispatch's start
        """
        async with self._lock:
            delay = self.get_delay()
            if delay > 0:
                logger.trace("Delaying dispatch by {:.3f}s", delay)
                await asyncio.sleep(delay)
            dispatched_at = time.monotonic()
            self._last_dispatch_at = dispatched_at
            self._dispatch_count += 1
            return dispatched_at

    @property
    def last_dispatch_at(self) -> float | None:
        """Monotonic timestamp of the last dispatch start."""
        return self._last_dispatch_at

    @property
    def dispatch_count(self) -> int:
        """Number of dispatches recorded so far."""
        return self._dispatch_count

    def get_stats(self) -> dict[str, float | int | None]:
        """Get limiter statistics for monitoring."""
        return {
            "min_interval_ms": round(self._min_interval * 1000, 2),
            "dispatches": self._dispatch_count,
            "next_delay_ms": round(self.get_delay() * 1000, 2),
        }
