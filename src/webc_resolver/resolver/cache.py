"""In-memory memoizing decorator for package resolvers."""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextvars
import logging
import threading
from typing import Any, Dict, List, Optional, Set

from ..common.http_client import HttpClient
from ..common.logging_utils import extra_context, is_debug_enabled
from .base import PackageResolver
from .errors import DependencyCycleError, ResolverFailure
from .models import PackageIdentifier, ResolvedPackage

logger = logging.getLogger(__name__)


class _Flight:
    """One in-progress resolution shared by every caller of the same key."""

    def __init__(self, key: PackageIdentifier, loop: asyncio.AbstractEventLoop):
        self.key = key
        self.loop = loop
        self.future: concurrent.futures.Future = concurrent.futures.Future()
        self.task: Optional[asyncio.Task] = None
        self.waiters = 0
        # Flights this flight's task is currently awaiting.
        self.blocked_on: Set["_Flight"] = set()


# The flight whose task is running in the current context, if any.
_current_flight: contextvars.ContextVar[Optional[_Flight]] = contextvars.ContextVar(
    "webc_resolver_current_flight", default=None
)


def _consume(future: "asyncio.Future[Any]") -> None:
    """Mark an abandoned waiter's outcome as retrieved."""
    if not future.cancelled():
        future.exception()


class _FlightInterrupted(ResolverFailure):
    """The shared task was cancelled by its event loop while others still waited."""


class InMemoryCache(PackageResolver):
    """Memoize another resolver, collapsing concurrent requests per key.

    - Hits return a clone of the stored package without calling the inner
      resolver.
    - Concurrent misses for the same identifier share one inner call; every
      waiter gets the same result or the same exception.
    - Failures are never stored; the key is cleared so the next call retries.
    - Entries live until ``invalidate``/``clear``; there is no eviction.

    The key/result map and the in-flight table are guarded by a single
    lock, so lookup, flight registration and completion are atomic. The
    shared resolution runs in its own task: cancelling one waiter leaves it
    running for the others, and it is aborted only once every waiter is gone.
    If the loop owning that task shuts down while waiters on other loops
    remain, those waiters start a fresh resolution.
    """

    def __init__(self, inner: PackageResolver):
        """Initialize the cache.

        Args:
            inner: Resolver doing the actual work on a miss.
        """
        self._inner = inner
        self._lock = threading.Lock()
        self._packages: Dict[PackageIdentifier, ResolvedPackage] = {}
        self._in_flight: Dict[PackageIdentifier, _Flight] = {}
        self._hits = 0
        self._misses = 0
        self._joins = 0

    @property
    def inner(self) -> PackageResolver:
        return self._inner

    async def resolve_package(
        self, pkg: PackageIdentifier, client: HttpClient
    ) -> ResolvedPackage:
        while True:
            try:
                return await self._resolve_once(pkg, client)
            except _FlightInterrupted:
                logger.info("Shared resolution of %s was interrupted; retrying", pkg)

    async def _resolve_once(
        self, pkg: PackageIdentifier, client: HttpClient
    ) -> ResolvedPackage:
        loop = asyncio.get_running_loop()
        current = _current_flight.get()

        with self._lock:
            cached = self._packages.get(pkg)
            if cached is not None:
                self._hits += 1
                flight = None
                leader = False
            else:
                flight = self._in_flight.get(pkg)
                leader = flight is None
                if leader:
                    self._misses += 1
                    flight = _Flight(pkg, loop)
                    self._in_flight[pkg] = flight
                    flight.task = loop.create_task(self._run(pkg, client, flight))
                else:
                    cycle = self._find_wait_cycle(current, flight)
                    if cycle is not None:
                        raise ResolverFailure(
                            f"Unable to resolve {pkg}", cause=DependencyCycleError(cycle)
                        )
                    self._joins += 1
                flight.waiters += 1
                if current is not None:
                    current.blocked_on.add(flight)

        if flight is None:
            self._trace("cache_hit", pkg)
            return cached.clone()

        self._trace("cache_miss" if leader else "cache_join", pkg)
        waiter = asyncio.wrap_future(flight.future)
        try:
            resolved = await asyncio.shield(waiter)
        except asyncio.CancelledError:
            waiter.add_done_callback(_consume)
            self._abandon(pkg, flight)
            raise
        finally:
            if current is not None:
                with self._lock:
                    current.blocked_on.discard(flight)
        return resolved.clone()

    def _find_wait_cycle(
        self, current: Optional[_Flight], target: _Flight
    ) -> Optional[List[str]]:
        """Return the cycle ``current`` would close by waiting on ``target``.

        Must be called with the lock held.
        """
        if current is None:
            return None

        def walk(flight: _Flight, seen: Set[_Flight]) -> Optional[List[_Flight]]:
            if flight is current:
                return [flight]
            seen.add(flight)
            for nxt in flight.blocked_on:
                if nxt in seen:
                    continue
                path = walk(nxt, seen)
                if path is not None:
                    return [flight] + path
            return None

        path = walk(target, set())
        if path is None:
            return None
        return [current.key.full_name] + [f.key.full_name for f in path]

    async def _run(self, pkg: PackageIdentifier, client: HttpClient, flight: _Flight) -> None:
        _current_flight.set(flight)
        try:
            resolved = await self._inner.resolve_package(pkg, client)
        except asyncio.CancelledError:
            self._complete(pkg, flight)
            with self._lock:
                orphaned = flight.waiters > 0
            if orphaned:
                # The owning loop is going away (e.g. shutdown); waiters on
                # other loops start a fresh flight.
                flight.future.set_exception(
                    _FlightInterrupted(f"Resolution of {pkg} was interrupted")
                )
            else:
                flight.future.cancel()
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._complete(pkg, flight)
            logger.warning("Resolution of %s failed; not caching: %s", pkg, exc)
            flight.future.set_exception(exc)
        else:
            self._complete(pkg, flight, resolved)
            flight.future.set_result(resolved)

    def _complete(
        self,
        pkg: PackageIdentifier,
        flight: _Flight,
        resolved: Optional[ResolvedPackage] = None,
    ) -> None:
        with self._lock:
            if self._in_flight.get(pkg) is flight:
                del self._in_flight[pkg]
            if resolved is not None:
                self._packages[pkg] = resolved
            flight.blocked_on.clear()

    def _abandon(self, pkg: PackageIdentifier, flight: _Flight) -> None:
        """Drop one waiter; abort the shared task once nobody is left."""
        with self._lock:
            flight.waiters -= 1
            if flight.waiters > 0 or flight.future.done():
                return
            if self._in_flight.get(pkg) is flight:
                del self._in_flight[pkg]
            task = flight.task

        logger.debug(
            "All waiters cancelled; aborting resolution",
            extra=extra_context(event="cache_abort", component="resolver_cache", target=str(pkg)),
        )
        if task is not None and not task.done():
            flight.loop.call_soon_threadsafe(task.cancel)

    def _trace(self, event: str, pkg: PackageIdentifier) -> None:
        if is_debug_enabled(logger):
            logger.debug(
                "Package cache %s",
                event.split("_", 1)[1],
                extra=extra_context(event=event, component="resolver_cache", target=str(pkg)),
            )

    def invalidate(self, pkg: PackageIdentifier) -> None:
        """Forget a stored package. In-flight resolutions are unaffected."""
        with self._lock:
            self._packages.pop(pkg, None)

    def clear(self) -> None:
        """Forget every stored package."""
        with self._lock:
            self._packages.clear()

    def __contains__(self, pkg: PackageIdentifier) -> bool:
        with self._lock:
            return pkg in self._packages

    def stats(self) -> Dict[str, int]:
        """Get cache statistics."""
        with self._lock:
            return {
                "entries": len(self._packages),
                "in_flight": len(self._in_flight),
                "hits": self._hits,
                "misses": self._misses,
                "joins": self._joins,
            }

    def __repr__(self) -> str:
        return f"InMemoryCache({self._inner!r})"
