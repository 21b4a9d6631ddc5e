"""
TTL cache with in-flight coalescing.

One instance per cached concern (round metadata, round movetext, archive bundle,
...). Instances are owned by whoever constructs them, so tests build isolated
caches instead of sharing module state.

Check-then-set on ``_in_flight`` happens without an ``await`` in between, so on
a single event loop two callers can never both start a fetch for the same key.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Hashable, Optional, TypeVar

from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_LOOKUPS

logger = get_logger(__name__)

T = TypeVar("T")


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    cached_at_ms: int
    expires_at_ms: int

    def is_live(self, now_ms: int) -> bool:
        return now_ms < self.expires_at_ms


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    value: T
    hit: bool
    age_ms: int


class TTLCache(Generic[T]):
    """
    Async get-or-fetch cache.

    ``get(key, ttl_ms, fetcher)``:
      * a live entry is returned with no I/O;
      * a miss while a fetch for ``key`` is underway awaits that fetch;
      * otherwise ``fetcher()`` runs, its value is stored only on success and the
        in-flight marker is cleared either way.
    """

    def __init__(self, name: str, clock: Callable[[], int] = monotonic_ms) -> None:
        self.name = name
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._in_flight: dict[Hashable, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the live entry for ``key``; expired entries are dropped."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_live(self._clock()):
            del self._entries[key]
            return None
        return entry

    def is_in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def get(
        self, key: Hashable, ttl_ms: int, fetcher: Callable[[], Awaitable[T]]
    ) -> T:
        result = await self.fetch(key, ttl_ms, fetcher)
        return result.value

    async def fetch(
        self, key: Hashable, ttl_ms: int, fetcher: Callable[[], Awaitable[T]]
    ) -> CacheResult[T]:
        """Like ``get`` but also reports whether the value came from cache and its age."""
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")

        entry = self.lookup(key)
        if entry is not None:
            CACHE_LOOKUPS.labels(cache=self.name, result="hit").inc()
            return CacheResult(entry.value, True, self._clock() - entry.cached_at_ms)

        task = self._in_flight.get(key)
        if task is not None:
            CACHE_LOOKUPS.labels(cache=self.name, result="coalesced").inc()
            value = await asyncio.shield(task)
            return CacheResult(value, True, 0)

        CACHE_LOOKUPS.labels(cache=self.name, result="miss").inc()
        task = asyncio.ensure_future(self._fill(key, ttl_ms, fetcher))
        task.add_done_callback(_consume_exception)
        self._in_flight[key] = task
        value = await asyncio.shield(task)
        return CacheResult(value, False, 0)

    async def _fill(
        self, key: Hashable, ttl_ms: int, fetcher: Callable[[], Awaitable[T]]
    ) -> T:
        try:
            value = await fetcher()
            now = self._clock()
            self._entries[key] = CacheEntry(value, now, now + ttl_ms)
            return value
        except Exception as exc:
            logger.debug("cache_fill_failed", cache=self.name, key=str(key), error=str(exc))
            raise
        finally:
            self._in_flight.pop(key, None)


def _consume_exception(task: asyncio.Task) -> None:
    # Waiters may all have been cancelled; mark the exception as retrieved.
    if not task.cancelled():
        task.exception()
