"""Pytest configuration and shared fixtures.

Usage Guide:
- For scheduling tests: use the ``transport`` fixture (FakeTransport) with
  descriptors of the form ``req:<status>/<body>/<latency ms>``
- For timing assertions: use the ``timer`` fixture (rounds to 100 ms)
- For httpx tests: build clients on ``httpx.MockTransport``
"""

from collections.abc import Generator

import pytest

from fetch_swarm.config import get_settings
from tests.fixtures import FakeTransport, Timer


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    """Make every test read settings fresh from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def transport() -> FakeTransport:
    """Fresh fake transport."""
    return FakeTransport()


@pytest.fixture
def timer() -> Timer:
    """Timer started when the fixture is created."""
    return Timer()
