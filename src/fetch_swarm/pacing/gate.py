"""Admission gate bounding the in-flight set of a connection.

Every bundle holds one slot from admission until eviction. Callers that
want slots register a SlotClaim carrying a priority and keep its demand
current; a freed slot is handed straight to the claim with the highest
priority that still wants one, newest first among equals. The Connection
uses each swarm's issue number as its priority, so swarms started later
are served before swarms started earlier, even while both have bundles
in flight.
"""

from __future__ import annotations

import asyncio
import itertools

from fetch_swarm.logging import get_logger

logger = get_logger(__name__)


class SlotClaim:
    """A caller's standing demand for slots at a fixed priority.

    Slots handed to the claim are held (they count as active) until the
    caller takes them with take() or gives them back with withdraw().

    Usage:
        claim = gate.claim(priority=3)
        try:
            claim.want(2)
            await claim.wait()
            while claim.take():
                ...  # one slot now belongs to a bundle
        finally:
            claim.withdraw()
    """

    def __init__(self, gate: AdmissionGate, priority: int, arrival: int) -> None:
        self._gate = gate
        self.priority = priority
        self.arrival = arrival
        self.wanted = 0
        self.granted = 0
        self._waiter: asyncio.Future[None] | None = None

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.priority, self.arrival)

    def want(self, count: int) -> None:
        """Set how many more slots the caller could use right now.

        Free slots are granted immediately; the rest of the demand is
        served by release() in priority order.
        """
        self.wanted = max(0, count)
        self._gate._grant_free(self)

    def take(self) -> bool:
        """Consume one granted slot, if any."""
        if self.granted == 0:
            return False
        self.granted -= 1
        return True

    def ready(self) -> asyncio.Future[None]:
        """Future that completes once a slot is granted or the gate closes."""
        if self._waiter is None or self._waiter.done():
            self._waiter = asyncio.get_running_loop().create_future()
            if self.granted or self._gate.is_closed:
                self._waiter.set_result(None)
        return self._waiter

    async def wait(self) -> None:
        """Wait until a slot is granted or the gate closes."""
        await self.ready()

    def withdraw(self) -> None:
        """Drop the claim and hand back any slots granted but not taken."""
        self.wanted = 0
        self._gate._claims.discard(self)
        while self.granted:
            self.granted -= 1
            self._gate.release()
        if self._waiter is not None and not self._waiter.done():
            self._waiter.cancel()

    def _grant(self) -> None:
        self.wanted -= 1
        self.granted += 1
        self._gate._active += 1
        self._wake()

    def _wake(self) -> None:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)


class AdmissionGate:
    """Counting gate with prioritized hand-off and a terminal closed state.

    Usage:
        gate = AdmissionGate(capacity=2)

        if await gate.acquire(priority=issue_number):
            try:
                ...  # bundle is in flight
            finally:
                gate.release()
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._active = 0
        self._claims: set[SlotClaim] = set()
        self._arrivals = itertools.count()
        self._closed = False

    @property
    def capacity(self) -> int:
        """Maximum number of slots."""
        return self._capacity

    @property
    def active(self) -> int:
        """Number of slots currently held, granted or in use."""
        return self._active

    @property
    def waiting(self) -> int:
        """Number of claims still waiting for a slot."""
        return sum(1 for claim in self._claims if claim.wanted > 0)

    @property
    def is_closed(self) -> bool:
        """Whether the gate has been closed."""
        return self._closed

    def claim(self, priority: int = 0) -> SlotClaim:
        """Register a new claim; it wants nothing until want() is called."""
        claim = SlotClaim(self, priority, next(self._arrivals))
        self._claims.add(claim)
        return claim

    def try_acquire(self) -> bool:
        """Take a slot without waiting.

        Fails while any claim is waiting, so a caller that polls never jumps
        ahead of a blocked one.
        """
        if self._closed or self.waiting or self._active >= self._capacity:
            return False
        self._active += 1
        return True

    async def acquire(self, priority: int = 0) -> bool:
        """Wait for a single slot.

        Args:
            priority: Higher values are served first when slots free up

        Returns:
            True once a slot is held, False if the gate was closed
        """
        claim = self.claim(priority)
        try:
            claim.want(1)
            await claim.wait()
            return claim.take()
        finally:
            claim.withdraw()

    def release(self) -> None:
        """Return a slot, handing it to the best waiting claim if there is one."""
        best = self._best_waiting()
        if best is not None:
            # The slot changes hands without ever becoming free
            self._active -= 1
            best._grant()
            return
        if self._active > 0:
            self._active -= 1
        else:
            logger.warning("Admission gate released more often than acquired")

    def close(self) -> None:
        """Refuse further grants and wake every claim."""
        self._closed = True
        for claim in list(self._claims):
            claim.wanted = 0
            claim._wake()

    def _best_waiting(self) -> SlotClaim | None:
        if self._closed:
            return None
        waiting = [claim for claim in self._claims if claim.wanted > 0]
        if not waiting:
            return None
        return max(waiting, key=lambda claim: claim.sort_key)

    def _grant_free(self, claim: SlotClaim) -> None:
        # Demand and free capacity never coexist: release() serves waiting
        # claims before a slot becomes free
        while not self._closed and claim.wanted > 0 and self._active < self._capacity:
            claim._grant()
