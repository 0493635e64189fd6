"""Task bundles and the outcomes they settle into.

A bundle is one admitted request plus its bookkeeping: a connection
unique id, its position in the swarm's input, dispatch time and attempt
count. Bundles are created and evicted only by the owning Connection.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Generic, TypeVar

D = TypeVar("D")

# Id 0 is never handed out; ids wrap back to 1 after this bound.
NO_BUNDLE_ID = 0
MAX_BUNDLE_ID = 2**53 - 1


class BundleState(IntEnum):
    """Lifecycle state of a bundle."""

    PENDING = 1  # Admitted, waiting on the rate limiter
    IN_FLIGHT = 2
    COMPLETED = 3
    FAILED = 4
    CANCELLED = 5


@dataclass(frozen=True)
class Result(Generic[D]):
    """A delivered response, whatever its status code."""

    descriptor: D
    response: Any
    index: int = 0
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure(Generic[D]):
    """A transport failure that outlived its retry budget."""

    descriptor: D
    cause: BaseException
    index: int = 0
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return False


Outcome = Result[Any] | Failure[Any]


@dataclass(eq=False)
class TaskBundle(Generic[D]):
    """One admitted request and the task computing its outcome."""

    id: int
    descriptor: D
    index: int
    state: BundleState = BundleState.PENDING
    attempts: int = 0
    dispatched_at: float | None = None
    task: asyncio.Task[Outcome] | None = field(default=None, repr=False)

    @property
    def is_settled(self) -> bool:
        return self.task is not None and self.task.done()


def next_bundle_id(current: int, live: set[int] | dict[int, Any]) -> int:
    """Return the id following ``current``, wrapping and skipping live ids.

    Args:
        current: Last id handed out (or NO_BUNDLE_ID)
        live: Ids that are still outstanding

    Returns:
        An id that is neither the sentinel nor outstanding
    """
    candidate = current
    while True:
        candidate = candidate + 1 if candidate < MAX_BUNDLE_ID else 1
        if candidate not in live:
            return candidate
