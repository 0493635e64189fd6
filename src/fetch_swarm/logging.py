"""Logging for fetch-swarm, built on loguru.

Modules get a logger through ``get_logger(__name__)``, which binds the
module name. Scheduler code binds per-bundle context with ``bind_bundle``.
``setup_logging`` installs the console (and optional rotating file) sinks
and routes stdlib logging, chiefly httpx and httpcore, into loguru.
"""

from __future__ import annotations

import inspect
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger, Record

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Libraries that log every request; silenced below DEBUG
_CHATTY_LIBRARIES = ("httpx", "httpcore")

_configured = False


class InterceptHandler(logging.Handler):
    """Forwards stdlib log records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real call site
        frame, depth = inspect.currentframe(), 0
        while frame is not None and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _resolve_level(level: LogLevel, verbose: bool, quiet: bool) -> LogLevel:
    # --verbose wins over --quiet
    if verbose:
        return "DEBUG"
    if quiet:
        return "WARNING"
    return level


def _console_format(record: Record) -> str:
    # Intercepted stdlib records carry no bound name; fall back to the module
    source = "{extra[name]}" if "name" in record["extra"] else "{name}"
    bundle = " <magenta>#{extra[bundle]}</magenta>" if "bundle" in record["extra"] else ""
    return (
        "<dim>{time:HH:mm:ss.SSS}</dim> | <level>{level: <8}</level> | "
        f"<cyan>{source}</cyan>{bundle} - <level>{{message}}</level>\n{{exception}}"
    )


def setup_logging(
    level: LogLevel = "INFO",
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> Logger:
    """Install the fetch-swarm log sinks, replacing any existing ones.

    Args:
        level: Base console level, usually ``Settings.log_level``
        verbose: Force DEBUG (takes precedence over quiet)
        quiet: Force WARNING
        log_file: If given, also log everything from DEBUG up to this file
        rotation: Rotation policy for the file sink (e.g. "10 MB", "1 day")
        retention: How long rotated files are kept
        serialize: Write the file sink as JSON lines

    Returns:
        The configured loguru logger
    """
    global _configured

    effective_level = _resolve_level(level, verbose, quiet)

    logger.remove()
    logger.add(
        sys.stderr,
        level=effective_level,
        format=_console_format,
        colorize=True,
        backtrace=True,
        diagnose=True,
    )

    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
                "{extra[name]}:{function}:{line} | {extra} | {message}"
            ),
            rotation=rotation,
            retention=retention,
            compression="gz",
            serialize=serialize,
            filter=lambda record: "name" in record["extra"],
        )

    _intercept_stdlib_logging(effective_level)

    _configured = True
    return logger


def _intercept_stdlib_logging(level: LogLevel) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    library_level = logging.DEBUG if level in ("TRACE", "DEBUG") else logging.WARNING
    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> Logger:
    """Return the shared logger with ``name`` bound as context.

    Usage:
        logger = get_logger(__name__)
        logger.debug("Admitted bundle {}", bundle_id)
    """
    return logger.bind(name=name)


def bind_bundle(bundle_id: int, descriptor: Any) -> Logger:
    """Return a logger carrying a bundle's id and request descriptor."""
    return logger.bind(name="swarm", bundle=bundle_id, request=str(descriptor))


class LogContext:
    """Adds context to every record logged inside a ``with`` block.

    Usage:
        with LogContext(swarm="crawl-1"):
            logger.info("Processing")  # carries swarm="crawl-1"
    """

    def __init__(self, **context: Any) -> None:
        self._context = context
        self._manager: Any = None

    def __enter__(self) -> Logger:
        self._manager = logger.contextualize(**self._context)
        self._manager.__enter__()
        return logger

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if self._manager is not None:
            self._manager.__exit__(exc_type, exc_val, exc_tb)
            self._manager = None


def is_configured() -> bool:
    """Whether setup_logging() has run since the last reset."""
    return _configured


def reset_logging() -> None:
    """Remove every sink and clear the configured flag (used by tests)."""
    global _configured
    logger.remove()
    _configured = False
