"""Shared pieces of the fetch-swarm CLI.

- console: the rich console every command prints through
- run_async_command: runs a coroutine from a sync typer command and turns
  unexpected errors into a red message and exit code 1
- Annotated option aliases for the connection options
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from rich.console import Console
from rich.markup import escape

console = Console()

T = TypeVar("T")


def run_async_command(
    coro: Coroutine[object, object, T],
    *,
    error_prefix: str = "Error",
) -> T:
    """Run ``coro`` to completion on a fresh event loop.

    Any exception other than typer.Exit is printed as
    ``<error_prefix>: <message>`` and converted to exit code 1.

    Args:
        coro: Coroutine built by the command
        error_prefix: Label printed before the error message

    Returns:
        Whatever the coroutine returns

    Raises:
        typer.Exit: Passed through from the command, or code 1 on error
    """
    try:
        return asyncio.run(coro)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]{error_prefix}:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


# Connection options default to None so unset flags fall back to Settings.connection

ConcurrencyOption = Annotated[
    int | None,
    typer.Option(
        "--concurrency",
        "-c",
        help="Maximum fetches in flight at once",
    ),
]
"""Connection concurrency override.

Usage:
    def command(concurrency: ConcurrencyOption = None):
"""

MinIntervalOption = Annotated[
    int | None,
    typer.Option(
        "--min-ms",
        help="Minimum milliseconds between dispatch starts",
    ),
]
"""Dispatch spacing override, in milliseconds.

Usage:
    def command(min_ms: MinIntervalOption = None):
"""

TimeoutOption = Annotated[
    int | None,
    typer.Option(
        "--timeout-ms",
        help="Fail an attempt after this many milliseconds (0 = no timeout)",
    ),
]
"""Per-attempt timeout override, in milliseconds.

Usage:
    def command(timeout_ms: TimeoutOption = None):
"""

RetryOption = Annotated[
    int | None,
    typer.Option(
        "--retry",
        help="Retries after a transport failure",
    ),
]
"""Retry budget override.

Usage:
    def command(retry: RetryOption = None):
"""

OrderedOption = Annotated[
    bool,
    typer.Option(
        "--ordered",
        help="Print results in input order instead of completion order",
    ),
]
"""Input-order output flag.

Usage:
    def command(ordered: OrderedOption = False):
"""

InputFileOption = Annotated[
    Path | None,
    typer.Option(
        "--input",
        "-i",
        exists=True,
        dir_okay=False,
        readable=True,
        help="File with one URL per line ('#' starts a comment)",
    ),
]
"""File of URLs to fetch after any positional URLs.

Usage:
    def command(input_file: InputFileOption = None):
"""
