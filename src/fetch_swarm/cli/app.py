"""Main CLI application for fetch-swarm."""

from __future__ import annotations

import time
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.markup import escape

from fetch_swarm import __version__
from fetch_swarm.bundle import Outcome, Result
from fetch_swarm.cli.common import (
    ConcurrencyOption,
    InputFileOption,
    MinIntervalOption,
    OrderedOption,
    RetryOption,
    TimeoutOption,
    console,
    run_async_command,
)
from fetch_swarm.config import get_settings
from fetch_swarm.connection import Connection
from fetch_swarm.logging import setup_logging
from fetch_swarm.transport import HttpxTransport

app = typer.Typer(
    name="fetch-swarm",
    help="Fetch many URLs with bounded concurrency and dispatch spacing.",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"fetch-swarm version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-error output (WARNING level).",
        ),
    ] = False,
) -> None:
    """fetch-swarm - concurrent, rate-limited fetching."""
    settings = get_settings()
    log_config = settings.logging

    setup_logging(
        level=settings.log_level,
        verbose=verbose,
        quiet=quiet,
        log_file=Path(log_config.log_file) if log_config.log_file else None,
        rotation=log_config.rotation,
        retention=log_config.retention,
        serialize=log_config.serialize,
    )


@app.command()
def fetch(
    urls: Annotated[
        list[str] | None,
        typer.Argument(help="URLs to fetch"),
    ] = None,
    input_file: InputFileOption = None,
    concurrency: ConcurrencyOption = None,
    min_ms: MinIntervalOption = None,
    timeout_ms: TimeoutOption = None,
    retry: RetryOption = None,
    ordered: OrderedOption = False,
) -> None:
    """Fetch URLs and print each result as it arrives.

    Exits with code 1 if any fetch failed at the transport level. HTTP
    error statuses are printed but do not count as failures.

    Examples:
        fetch-swarm fetch https://example.org/a https://example.org/b
        fetch-swarm fetch --input urls.txt --concurrency 4 --ordered
    """
    if not urls and input_file is None:
        console.print("[red]Error:[/red] Give at least one URL or --input FILE")
        raise typer.Exit(1)

    options = {
        "concurrency": concurrency,
        "min_ms_between_requests": min_ms,
        "timeout_ms": timeout_ms,
        "retry": retry,
    }
    overrides = {key: value for key, value in options.items() if value is not None}

    failed = run_async_command(
        _fetch_all(_iter_urls(urls or [], input_file), overrides, ordered=ordered),
        error_prefix="Fetch failed",
    )
    if failed:
        raise typer.Exit(1)


def _iter_urls(urls: list[str], input_file: Path | None) -> Iterator[str]:
    """Yield URLs from arguments, then lazily from the input file."""
    yield from urls
    if input_file is None:
        return
    with input_file.open(encoding="utf-8") as handle:
        for line in handle:
            url = line.split("#", 1)[0].strip()
            if url:
                yield url


async def _fetch_all(requests: Iterator[str], overrides: dict[str, Any], *, ordered: bool) -> int:
    """Swarm over the URLs, printing outcomes; returns the failure count."""
    transport = HttpxTransport()
    succeeded = 0
    failed = 0
    started = time.monotonic()
    try:
        async with await Connection.create(transport=transport, **overrides) as conn:
            async for outcome in conn.swarm(requests, ordered=ordered):
                elapsed_ms = (time.monotonic() - started) * 1000
                console.print(_format_outcome(outcome, elapsed_ms))
                if outcome.ok:
                    succeeded += 1
                else:
                    failed += 1
    finally:
        await transport.aclose()

    console.print(f"\n[bold]Done:[/bold] {succeeded} succeeded, {failed} failed")
    return failed


def _format_outcome(outcome: Outcome, elapsed_ms: float) -> str:
    timing = f"[dim]{elapsed_ms:>7.0f} ms[/dim]"
    if isinstance(outcome, Result):
        status = getattr(outcome.response, "status_code", None)
        if status is None:
            label = "[green]ok[/green]"
        elif 200 <= status < 300:
            label = f"[green]{status}[/green]"
        else:
            label = f"[yellow]{status}[/yellow]"
        return f"{label}  {escape(str(outcome.descriptor))}  {timing}"
    return f"[red]ERR[/red]  {escape(str(outcome.descriptor))}  {timing}  {escape(str(outcome.cause))}"


if __name__ == "__main__":
    app()
