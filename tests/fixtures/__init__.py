"""Test fixtures for fetch-swarm."""

from .transport import FakeResponse, FakeTransport, Timer

__all__ = [
    "FakeResponse",
    "FakeTransport",
    "Timer",
]
