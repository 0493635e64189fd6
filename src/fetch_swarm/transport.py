"""Transports: the single-attempt fetch a Connection schedules.

A transport takes a request descriptor and returns a response, or raises
on transport-level failure. It performs exactly one attempt; retries and
timeouts are added by the Connection.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import httpx

from fetch_swarm.config import get_settings
from fetch_swarm.exceptions import TransportError, TransportTimeoutError
from fetch_swarm.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Transport(Protocol):
    """Anything awaitable as ``await transport(descriptor) -> response``."""

    async def __call__(self, descriptor: Any) -> Any: ...


class HttpxTransport:
    """Default transport backed by a shared httpx.AsyncClient.

    Descriptors are URL strings (GET) or prebuilt ``httpx.Request``
    objects. Error statuses are returned as normal responses; only
    failures to obtain a response raise.

    Usage:
        async with HttpxTransport() as transport:
            response = await transport("https://example.org/")
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        follow_redirects: bool = True,
    ) -> None:
        """Initialize the transport.

        Args:
            client: Optional preconfigured client. When omitted the transport
                    creates (and owns) one with the configured User-Agent.
            follow_redirects: Passed to the client created by the transport
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": get_settings().user_agent},
            follow_redirects=follow_redirects,
            timeout=None,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        """The underlying httpx client."""
        return self._client

    async def __call__(self, descriptor: str | httpx.URL | httpx.Request) -> httpx.Response:
        """Perform one request attempt.

        Raises:
            TransportTimeoutError: If httpx reports a timeout
            TransportError: On any other transport-level failure
        """
        try:
            if isinstance(descriptor, httpx.Request):
                return await self._client.send(descriptor)
            return await self._client.get(descriptor)
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"Timed out fetching {_describe(descriptor)}: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(f"Failed to fetch {_describe(descriptor)}: {e}") from e

    async def aclose(self) -> None:
        """Close the client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()
            logger.debug("Closed httpx client")

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


def _describe(descriptor: Any) -> str:
    if isinstance(descriptor, httpx.Request):
        return f"{descriptor.method} {descriptor.url}"
    return str(descriptor)
