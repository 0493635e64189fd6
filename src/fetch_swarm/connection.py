"""Connection: bounded-concurrency, rate-limited fetch scheduling.

Typically you create one connection per server you are hitting. The
connection owns the in-flight set, the admission gate, the dispatch
clock and the transport, and exposes two ways to fetch:

- swarm(): lazily pull requests from an iterable, keep up to
  ``concurrency`` of them in flight, and yield each outcome as soon as
  it settles (or in input order with ``ordered=True``)
- one(): fetch a single request, raising on transport failure

Calls to swarm()/one() made later on the same connection are served
before earlier ones when they compete for a slot: one response is
inspected, which leads to more fetches whose responses are inspected.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator, Mapping
from typing import Any

import httpx
from pydantic import ValidationError

from fetch_swarm.bundle import (
    NO_BUNDLE_ID,
    BundleState,
    Failure,
    Outcome,
    Result,
    TaskBundle,
    next_bundle_id,
)
from fetch_swarm.config import ConnectionConfig, get_settings
from fetch_swarm.exceptions import (
    ConfigurationError,
    ConnectionStoppedError,
    ConstructionMisuseError,
    FetchFailedError,
    MutationError,
    SwarmError,
    TransportTimeoutError,
)
from fetch_swarm.logging import bind_bundle, get_logger
from fetch_swarm.pacing import AdmissionGate, RateLimiter, SlotClaim
from fetch_swarm.transport import HttpxTransport, Transport

logger = get_logger(__name__)

_PRIVATE = object()

_READ_ONLY = frozenset(
    {"config", "concurrency", "min_ms_between_requests", "timeout_ms", "retry"}
)


class _SyncSource:
    """Adapts a plain iterable to the async iterator protocol, lazily."""

    def __init__(self, iterable: Iterable[Any]) -> None:
        self._it: Iterator[Any] = iter(iterable)

    def __aiter__(self) -> _SyncSource:
        return self

    async def __anext__(self) -> Any:
        try:
            return next(self._it)
        except StopIteration:
            raise StopAsyncIteration from None


class Connection:
    """Schedules fetches against one server.

    Usage:
        async with await Connection.create(concurrency=4) as conn:
            async for outcome in conn.swarm(urls):
                if outcome.ok:
                    print(outcome.descriptor, outcome.response.status_code)

            result = await conn.one("https://example.org/next")
    """

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        transport: Transport | None = None,
        *,
        _token: object = None,
    ) -> None:
        if _token is not _PRIVATE or config is None or transport is None:
            raise ConstructionMisuseError(
                "The constructor is not intended to be used; use Connection.create instead"
            )

        self._config = config
        self._transport = transport
        self._owns_transport = False
        self._transport_closed = False

        self._limiter = RateLimiter(config.min_interval)
        self._gate = AdmissionGate(config.concurrency)

        # In-flight set: every admitted, not yet evicted bundle
        self._inflight: dict[int, TaskBundle[Any]] = {}
        self._last_id = NO_BUNDLE_ID
        self._tasks: set[asyncio.Task[Outcome]] = set()  # Prevent task GC
        self._stopped = False
        self._killed = False  # stop(kill_executing=True): nothing more is yielded
        self._swarms_issued = 0  # Gate priority: later swarms win free slots

        # Statistics
        self._total_admitted = 0
        self._total_succeeded = 0
        self._total_failed = 0
        self._total_retries = 0
        self._total_cancelled = 0

    @classmethod
    async def create(
        cls,
        config: ConnectionConfig | Mapping[str, Any] | None = None,
        *,
        transport: Transport | None = None,
        **options: Any,
    ) -> Connection:
        """Create a new connection.

        Args:
            config: Base configuration; defaults to ``get_settings().connection``.
                    A mapping is treated as option overrides.
            transport: Single-attempt fetch callable. When omitted the
                       connection creates and owns an HttpxTransport.
            **options: Overrides for ``concurrency``, ``min_ms_between_requests``,
                       ``timeout_ms`` and ``retry``

        Returns:
            A ready-to-use connection

        Raises:
            ConfigurationError: If any option is unknown or out of range
        """
        if isinstance(config, Mapping):
            options = {**config, **options}
            config = None
        base = config or get_settings().connection

        try:
            resolved = (
                ConnectionConfig.model_validate({**base.model_dump(), **options})
                if options
                else base
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid connection options: {e}") from e

        owns_transport = transport is None
        conn = cls(resolved, transport or HttpxTransport(), _token=_PRIVATE)
        conn._owns_transport = owns_transport

        logger.debug(
            "Created connection (concurrency={}, min_ms_between_requests={}, "
            "timeout_ms={}, retry={})",
            resolved.concurrency,
            resolved.min_ms_between_requests,
            resolved.timeout_ms,
            resolved.retry,
        )
        return conn

    # -------------------------------------------------------------------------
    # Configuration (read-only)
    # -------------------------------------------------------------------------
    def __setattr__(self, name: str, value: Any) -> None:
        if name in _READ_ONLY:
            raise MutationError(f"'{name}' cannot be changed after the connection is created")
        super().__setattr__(name, value)

    def __delattr__(self, name: str) -> None:
        if name in _READ_ONLY:
            raise MutationError(f"'{name}' cannot be removed from a connection")
        super().__delattr__(name)

    @property
    def config(self) -> ConnectionConfig:
        """The frozen configuration of this connection."""
        return self._config

    @property
    def concurrency(self) -> int:
        """Maximum number of bundles in flight at once."""
        return self._config.concurrency

    @property
    def min_ms_between_requests(self) -> int:
        """Minimum milliseconds between dispatch starts."""
        return self._config.min_ms_between_requests

    @property
    def timeout_ms(self) -> int:
        """Per-attempt timeout in milliseconds (0 = none)."""
        return self._config.timeout_ms

    @property
    def retry(self) -> int:
        """Re-dispatch attempts after a transport failure."""
        return self._config.retry

    @property
    def in_flight(self) -> int:
        """Number of bundles currently in the in-flight set."""
        return len(self._inflight)

    @property
    def is_stopped(self) -> bool:
        """Whether stop() has been called."""
        return self._stopped

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------
    async def swarm(
        self,
        requests: Iterable[Any] | AsyncIterable[Any],
        *,
        ordered: bool = False,
    ) -> AsyncIterator[Outcome]:
        """Fetch every request, yielding each outcome as it settles.

        The input is pulled lazily, one request per admission, and never
        more than ``concurrency`` bundles are in flight. Transport failures
        are retried up to ``retry`` times and then yielded as Failure; they
        do not end the swarm. Closing the generator early cancels this
        swarm's outstanding bundles.

        Args:
            requests: Iterable or async iterable of request descriptors,
                      consumed at most once
            ordered: If True, outcomes are released strictly in input order

        Yields:
            One Result or Failure per admitted request
        """
        if isinstance(requests, (str, bytes, httpx.Request)):
            raise TypeError("swarm() expects an iterable of requests; use one() for a single request")
        if self._stopped:
            logger.debug("Swarm requested on a stopped connection")
            return

        self._swarms_issued += 1
        claim = self._gate.claim(priority=self._swarms_issued)
        source: AsyncIterator[Any] = (
            requests.__aiter__() if isinstance(requests, AsyncIterable) else _SyncSource(requests)
        )
        window: dict[int, TaskBundle[Any]] = {}
        held: dict[int, Outcome] = {}  # ordered mode: settled, waiting for earlier input
        ready: deque[Outcome] = deque()
        next_index = 0
        next_release = 0
        exhausted = False

        def demand() -> int:
            # Slots this swarm could fill right now; held outcomes use window space
            if exhausted or self._stopped:
                return 0
            return self._config.concurrency - len(window) - len(held) - claim.granted

        try:
            while True:
                if self._killed:
                    return

                claim.want(demand())
                if not window and not ready and claim.wanted:
                    await claim.wait()

                while not exhausted and not self._stopped and claim.take():
                    try:
                        descriptor = await anext(source)
                    except StopAsyncIteration:
                        exhausted = True
                        self._gate.release()
                        claim.withdraw()
                    except BaseException:
                        self._gate.release()
                        raise
                    else:
                        if self._stopped:
                            self._gate.release()
                        else:
                            self._admit(window, descriptor, next_index)
                            next_index += 1

                while ready:
                    yield ready.popleft()
                    if self._killed:
                        return

                if not window:
                    if exhausted or self._stopped:
                        return
                    continue

                bundle = await self._next_settled(window, claim)
                if self._killed:
                    return
                if bundle is None:
                    continue

                window.pop(bundle.id)
                task = bundle.task
                if task is not None and not task.cancelled():
                    outcome = task.result()
                    if ordered:
                        held[outcome.index] = outcome
                        while next_release in held:
                            ready.append(held.pop(next_release))
                            next_release += 1
                    else:
                        ready.append(outcome)
                # Refresh demand first so the freed slot can come straight back
                claim.want(demand())
                self._release(bundle)
        finally:
            claim.withdraw()
            pending = [
                b.task for b in window.values() if b.task is not None and not b.task.done()
            ]
            for pending_task in pending:
                pending_task.cancel()
            # Slots are freed only once the cancelled transport calls have ended
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            for bundle in list(window.values()):
                window.pop(bundle.id)
                self._release(bundle)

    async def one(self, request: Any) -> Result[Any]:
        """Fetch a single request.

        Args:
            request: Request descriptor

        Returns:
            The Result (any HTTP status counts as a result)

        Raises:
            FetchFailedError: If the transport failed on every attempt
            ConnectionStoppedError: If the connection is (or gets) stopped
        """
        if self._stopped:
            raise ConnectionStoppedError("Connection has been stopped")

        outcomes = self.swarm([request])
        try:
            try:
                outcome = await anext(outcomes)
            except StopAsyncIteration:
                raise ConnectionStoppedError(
                    "Connection was stopped before the request completed"
                ) from None
            try:
                extra = await anext(outcomes)
            except StopAsyncIteration:
                pass
            else:
                raise SwarmError(f"Expected a single outcome, also received {extra!r}")
        finally:
            await outcomes.aclose()

        if isinstance(outcome, Failure):
            raise FetchFailedError(outcome.descriptor, outcome.cause, outcome.attempts) from outcome.cause
        return outcome

    # -------------------------------------------------------------------------
    # Bundles
    # -------------------------------------------------------------------------
    def _admit(self, window: dict[int, TaskBundle[Any]], descriptor: Any, index: int) -> None:
        """Wrap a descriptor in a bundle and add it to the in-flight set.

        The caller must already hold a gate slot for it.
        """
        bundle_id = next_bundle_id(self._last_id, self._inflight)
        self._last_id = bundle_id

        bundle: TaskBundle[Any] = TaskBundle(id=bundle_id, descriptor=descriptor, index=index)
        task = asyncio.create_task(self._run_bundle(bundle), name=f"fetch-swarm-bundle-{bundle_id}")
        bundle.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self._inflight[bundle_id] = bundle
        window[bundle_id] = bundle
        self._total_admitted += 1

        logger.debug(
            "Admitted bundle {} ({}/{} in flight)",
            bundle_id,
            len(self._inflight),
            self._config.concurrency,
        )

    def _release(self, bundle: TaskBundle[Any]) -> None:
        """Remove a bundle from the in-flight set and free its slot."""
        if self._inflight.pop(bundle.id, None) is not None:
            self._gate.release()
            logger.debug("Evicted bundle {} ({} in flight)", bundle.id, len(self._inflight))

    async def _next_settled(
        self, window: dict[int, TaskBundle[Any]], claim: SlotClaim
    ) -> TaskBundle[Any] | None:
        """Wait for the earliest-settling bundle of a swarm.

        Returns:
            The settled bundle (possibly cancelled), or None once the swarm's
            claim has been granted a slot to fill
        """
        while window:
            settled = next((b for b in window.values() if b.is_settled), None)
            if settled is not None:
                return settled
            if claim.granted:
                return None

            waiters: list[asyncio.Future[Any]] = [
                b.task for b in window.values() if b.task is not None
            ]
            if claim.wanted:
                waiters.append(claim.ready())
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        return None

    async def _run_bundle(self, bundle: TaskBundle[Any]) -> Outcome:
        """Dispatch a bundle, retrying transport failures."""
        log = bind_bundle(bundle.id, bundle.descriptor)
        max_attempts = self._config.retry + 1

        try:
            while True:
                bundle.state = BundleState.PENDING
                bundle.dispatched_at = await self._limiter.acquire()
                bundle.state = BundleState.IN_FLIGHT
                bundle.attempts += 1

                try:
                    response = await self._dispatch(bundle.descriptor)
                except Exception as e:
                    if bundle.attempts < max_attempts:
                        self._total_retries += 1
                        log.warning(
                            "Attempt {}/{} failed, retrying: {}",
                            bundle.attempts,
                            max_attempts,
                            e,
                        )
                        continue

                    bundle.state = BundleState.FAILED
                    self._total_failed += 1
                    log.warning("Failed after {} attempt(s): {}", bundle.attempts, e)
                    return Failure(
                        descriptor=bundle.descriptor,
                        cause=e,
                        index=bundle.index,
                        attempts=bundle.attempts,
                    )

                bundle.state = BundleState.COMPLETED
                self._total_succeeded += 1
                log.debug(
                    "Completed in {:.0f} ms (attempt {})",
                    (time.monotonic() - bundle.dispatched_at) * 1000,
                    bundle.attempts,
                )
                return Result(
                    descriptor=bundle.descriptor,
                    response=response,
                    index=bundle.index,
                    attempts=bundle.attempts,
                )
        except asyncio.CancelledError:
            bundle.state = BundleState.CANCELLED
            self._total_cancelled += 1
            log.debug("Cancelled")
            raise

    async def _dispatch(self, descriptor: Any) -> Any:
        """Run one transport attempt under the configured timeout."""
        timeout = self._config.timeout
        if timeout is None:
            return await self._transport(descriptor)
        try:
            return await asyncio.wait_for(self._transport(descriptor), timeout)
        except TimeoutError as e:
            raise TransportTimeoutError(
                f"No response within {self._config.timeout_ms} ms"
            ) from e

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def stop(self, *, kill_executing: bool = True) -> None:
        """Stop the connection.

        Once this returns no further requests are admitted on any swarm
        and new swarm() calls yield nothing.

        Args:
            kill_executing: If True, cancel bundles already admitted so their
                            outcome is never observed. If False, let them
                            finish; running swarms may still yield them.
        """
        if kill_executing:
            self._killed = True
        if not self._stopped:
            self._stopped = True
            self._gate.close()
            logger.info(
                "Stopping connection ({} in flight, kill_executing={})",
                len(self._inflight),
                kill_executing,
            )

        tasks = [b.task for b in self._inflight.values() if b.task is not None]
        if kill_executing:
            for task in tasks:
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if kill_executing:
            for bundle in list(self._inflight.values()):
                if self._inflight.pop(bundle.id, None) is not None:
                    self._gate.release()

        if self._owns_transport and not self._transport_closed:
            self._transport_closed = True
            await self._transport.aclose()  # type: ignore[attr-defined]

        logger.info(
            "Connection stopped (succeeded={}, failed={}, cancelled={})",
            self._total_succeeded,
            self._total_failed,
            self._total_cancelled,
        )

    async def aclose(self) -> None:
        """Stop the connection, killing anything still executing."""
        await self.stop(kill_executing=True)

    async def __aenter__(self) -> Connection:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------
    def get_stats(self) -> dict[str, int | bool]:
        """Get connection statistics.

        Returns:
            Dict with in_flight, total_admitted, total_succeeded, etc.
        """
        return {
            "in_flight": len(self._inflight),
            "concurrency": self._config.concurrency,
            "is_stopped": self._stopped,
            "total_admitted": self._total_admitted,
            "total_succeeded": self._total_succeeded,
            "total_failed": self._total_failed,
            "total_retries": self._total_retries,
            "total_cancelled": self._total_cancelled,
            "dispatches": self._limiter.dispatch_count,
        }
