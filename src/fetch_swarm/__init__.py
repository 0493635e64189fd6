"""fetch-swarm: bounded-concurrency, rate-limited fetch scheduling.

This package provides:
- Connection: swarm()/one() over a transport with a concurrency window,
  dispatch spacing, per-attempt timeout, retry and stop()
- Outcomes: Result, Failure
- Transports: Transport protocol, HttpxTransport
- Exceptions: SwarmError and subclasses
"""

__version__ = "0.1.0"

from .bundle import BundleState, Failure, Outcome, Result
from .config import ConnectionConfig, Settings, get_settings
from .connection import Connection
from .exceptions import (
    ConfigurationError,
    ConnectionStoppedError,
    ConstructionMisuseError,
    FetchFailedError,
    MutationError,
    SwarmError,
    TransportError,
    TransportTimeoutError,
)
from .transport import HttpxTransport, Transport

__all__ = [
    "__version__",
    # Connection
    "Connection",
    "ConnectionConfig",
    # Outcomes
    "BundleState",
    "Failure",
    "Outcome",
    "Result",
    # Transports
    "HttpxTransport",
    "Transport",
    # Settings
    "Settings",
    "get_settings",
    # Exceptions
    "ConfigurationError",
    "ConnectionStoppedError",
    "ConstructionMisuseError",
    "FetchFailedError",
    "MutationError",
    "SwarmError",
    "TransportError",
    "TransportTimeoutError",
]
