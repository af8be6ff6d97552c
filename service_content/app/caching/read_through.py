"""
In-memory read-through cache with single-flight computation.

Values are owned by the cache: every read hands out a deep copy, so callers
can mutate what they get back without touching cached state. Concurrent
misses on the same key share one computation. Failures and None results
are never stored.
"""

import asyncio
import copy
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL_SECONDS = 3600


def _normalize(value: Any) -> Any:
    """Reduce a parameter value to a hashable, order-independent form."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(sorted({str(item) for item in value}))
    if isinstance(value, dict):
        return tuple(sorted((str(k), _normalize(v)) for k, v in value.items()))
    return str(value)


@dataclass(frozen=True)
class CacheKey:
    """Structured cache key: operation name plus sorted, normalized parameters."""

    operation: str
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def build(cls, operation: str, **params: Any) -> "CacheKey":
        normalized = tuple(sorted((name, _normalize(value)) for name, value in params.items()))
        return cls(operation, normalized)

    def __str__(self) -> str:
        return json.dumps([self.operation, [list(p) for p in self.params]], separators=(",", ":"), default=list)


@dataclass
class CacheEntry:
    key: CacheKey
    value: Any
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


@dataclass
class _Flight:
    task: "asyncio.Task[Any]"
    waiters: int = 0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    cleared: int = 0


class ReadThroughCache:
    """Key -> value store with per-entry TTL, computed on miss.

    The cache is confined to the event loop that uses it; the loop is what
    serialises access to the entry and in-flight maps.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        *,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.logger = get_logger("content.cache")
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, _Flight] = {}
        self._generation = 0
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.is_fresh(self._clock())

    async def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """Return a copy of the cached value for ``key``, computing it on a miss."""
        entry = self._entries.get(key)
        if entry is not None:
            if entry.is_fresh(self._clock()):
                self._stats.hits += 1
                self._record("cache_hits_total", key)
                return copy.deepcopy(entry.value)
            del self._entries[key]

        flight = self._inflight.get(key)
        if flight is None:
            self._stats.misses += 1
            self._record("cache_misses_total", key)
            self.logger.debug("Cache miss", key=str(key))
            flight = self._start(key, compute, self.default_ttl if ttl is None else ttl)
        else:
            self._stats.coalesced += 1
            self.logger.debug("Joining in-flight computation", key=str(key), waiters=flight.waiters)

        flight.waiters += 1
        try:
            value = await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                # Every caller went away
                flight.task.cancel()

        return copy.deepcopy(value)

    def clear(self) -> int:
        """Drop every entry; returns how many were dropped.

        Computations already running finish for their own callers but are not
        stored.
        """
        dropped = len(self._entries)
        self._entries.clear()
        self._inflight.clear()
        self._generation += 1
        self._stats.cleared += dropped
        self.logger.info("Cache cleared", dropped=dropped)
        return dropped

    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "in_flight": len(self._inflight),
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "coalesced": self._stats.coalesced,
            "cleared": self._stats.cleared,
        }

    def _start(self, key: CacheKey, compute: Callable[[], Awaitable[Any]], ttl: float) -> _Flight:
        generation = self._generation
        task = asyncio.ensure_future(self._compute_and_store(key, compute, ttl, generation))
        flight = _Flight(task=task)
        self._inflight[key] = flight
        task.add_done_callback(lambda done, key=key, flight=flight: self._finish(key, flight, done))
        return flight

    async def _compute_and_store(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[Any]],
        ttl: float,
        generation: int,
    ) -> Any:
        value = await compute()
        if generation != self._generation:
            self.logger.debug("Discarding value computed before clear", key=str(key))
        elif ttl > 0 and value is not None:
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)
        return value

    def _finish(self, key: CacheKey, flight: _Flight, task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]
        if task.cancelled():
            self.logger.info("Cache computation cancelled", key=str(key))
            return
        error = task.exception()
        if error is not None:
            self.logger.debug("Cache computation failed, nothing stored", key=str(key), error=str(error))

    def _record(self, metric_name: str, key: CacheKey) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, operation=key.operation)
