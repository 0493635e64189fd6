"""fetch-swarm exceptions."""

from typing import Any


class SwarmError(Exception):
    """Base exception for fetch-swarm errors."""

    pass


class ConfigurationError(SwarmError, ValueError):
    """Raised when a connection is created with invalid options."""

    pass


class ConstructionMisuseError(SwarmError, TypeError):
    """Raised when Connection is instantiated directly instead of via create()."""

    pass


class MutationError(SwarmError, AttributeError):
    """Raised when connection configuration is assigned after creation."""

    pass


class ConnectionStoppedError(SwarmError):
    """Raised when a fetch is requested from a stopped connection."""

    pass


class TransportError(SwarmError):
    """Base class for transport-level failures (reset, DNS, refused...).

    A delivered response is never a TransportError, whatever its status.
    """

    pass


class TransportTimeoutError(TransportError):
    """Raised when a transport attempt exceeds the configured timeout."""

    pass


class FetchFailedError(SwarmError):
    """Raised by Connection.one when a fetch fails after all retries."""

    def __init__(self, descriptor: Any, cause: BaseException, attempts: int) -> None:
        super().__init__(str(cause))
        self.descriptor = descriptor
        self.cause = cause
        self.attempts = attempts
