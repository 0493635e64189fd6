"""Simulated transports and timing helpers for scheduling tests.

Descriptors take the form ``req:<status>/<body>/<latency ms>``; the fake
transport sleeps for the latency, then returns a FakeResponse, or raises
TransportError when the status is 999.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass

from fetch_swarm.bundle import Result
from fetch_swarm.exceptions import TransportError

REQUEST_RE = re.compile(r"^req:(\d{3})/([^/]+)/(\d+)$")


@dataclass(frozen=True)
class FakeResponse:
    """Minimal stand-in for an HTTP response."""

    status: int
    body: str
    url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299


class FakeTransport:
    """Simulated single-attempt fetch driven by the descriptor.

    Records every dispatch and tracks how many calls overlap.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.dispatch_times: list[float] = []
        self.active = 0
        self.max_active = 0
        # descriptor -> number of attempts that fail before one succeeds
        self.fail_first: dict[str, int] = {}

    async def __call__(self, descriptor: str) -> FakeResponse:
        match = REQUEST_RE.match(descriptor)
        if match is None:
            raise ValueError(f"Unrecognised test descriptor: {descriptor}")
        status, body, latency_ms = int(match[1]), match[2], int(match[3])

        self.calls.append(descriptor)
        self.dispatch_times.append(time.monotonic())
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(latency_ms / 1000)
        finally:
            self.active -= 1

        if self.fail_first.get(descriptor, 0) > 0:
            self.fail_first[descriptor] -= 1
            raise TransportError(f"{body} (flaky)")
        if status == 999:
            raise TransportError(body)
        return FakeResponse(status=status, body=body, url=descriptor)

    def attempts(self, descriptor: str) -> int:
        """Number of times a descriptor was dispatched."""
        return self.calls.count(descriptor)


class Timer:
    """Summarizes results as ``res:<status>/<body>/<elapsed ms>``.

    Elapsed time is rounded to the nearest 100 ms; very slow machines
    may still cause occasional failures.
    """

    def __init__(self) -> None:
        self.start = time.monotonic()
        self.summaries: list[str] = []

    def add(self, result: Result[str]) -> None:
        elapsed_ms = (time.monotonic() - self.start) * 1000
        rounded = int(round(elapsed_ms / 100) * 100)
        response = result.response
        self.summaries.append(f"res:{response.status}/{response.body}/{rounded}")
