"""
Weather resolution cache.

Purpose:
- Memoize weather snapshots per city for a bounded time (TTL)
- Coalesce concurrent lookups for the same city into a single upstream call
- Bound every upstream lookup with a timeout

Keys are the city strings exactly as supplied (case-sensitive).

The asyncio.Lock guards only the two maps (fresh entries and in-flight tasks).
Provider calls are awaited outside the lock; only their result is written back
under it. Failures are handed to every waiter and never cached.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict

from core.errors import UpstreamErrorKind, UpstreamFailure
from models.weather import WeatherSnapshot

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    snapshot: WeatherSnapshot
    fetched_at: float


def _consume_exception(task: asyncio.Task) -> None:
    # A fetch whose waiters were all cancelled still settles; mark its error as seen.
    if not task.cancelled():
        task.exception()


class WeatherResolutionCache:
    def __init__(self, provider, ttl_sec: float = 3600.0, fetch_timeout_sec: float = 10.0,
                 clock: Callable[[], float] = time.monotonic):
        self.provider = provider
        self.ttl_sec = ttl_sec
        self.fetch_timeout_sec = fetch_timeout_sec
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    async def resolve(self, city: str) -> WeatherSnapshot:
        """
        Return weather for `city`:
        1. fresh cached snapshot -> no upstream call
        2. lookup already in flight -> wait for that one
        3. otherwise start a lookup and register it as in flight
        Raises the UpstreamFailure the provider raised (or a timeout failure).
        """
        async with self._lock:
            entry = self._entries.get(city)
            if entry is not None:
                if self._clock() - entry.fetched_at < self.ttl_sec:
                    logger.debug('Weather cache hit for city="%s"', city)
                    return entry.snapshot
                del self._entries[city]

            task = self._in_flight.get(city)
            if task is None:
                task = asyncio.create_task(self._fetch(city))
                task.add_done_callback(_consume_exception)
                self._in_flight[city] = task
            else:
                logger.debug('Joining in-flight weather lookup for city="%s"', city)

        # shield: a cancelled waiter must not cancel the lookup other waiters share
        return await asyncio.shield(task)

    async def _fetch(self, city: str) -> WeatherSnapshot:
        snapshot = None
        try:
            snapshot = await asyncio.wait_for(self.provider.get_weather(city), timeout=self.fetch_timeout_sec)
            return snapshot
        except asyncio.TimeoutError as e:
            logger.error('Weather lookup for city="%s" timed out after %.1fs', city, self.fetch_timeout_sec)
            raise UpstreamFailure(UpstreamErrorKind.SERVICE_ERROR, "Weather service timed out") from e
        finally:
            async with self._lock:
                if snapshot is not None:
                    now = self._clock()
                    # sweep on every write; bounded even when purge_expired() never runs
                    self._evict_stale(now)
                    self._entries[city] = _CacheEntry(snapshot, now)
                self._in_flight.pop(city, None)

    def _evict_stale(self, now: float) -> int:
        # caller holds self._lock
        stale = [city for city, e in self._entries.items() if now - e.fetched_at >= self.ttl_sec]
        for city in stale:
            del self._entries[city]
        return len(stale)

    async def purge_expired(self) -> int:
        """Drop stale entries; returns how many were removed."""
        async with self._lock:
            removed = self._evict_stale(self._clock())
        if removed:
            logger.debug("Purged %d expired weather cache entries", removed)
        return removed

    async def clear(self) -> None:
        """Drop every entry and cancel lookups still in flight."""
        async with self._lock:
            self._entries.clear()
            tasks = list(self._in_flight.values())
            self._in_flight.clear()
        for task in tasks:
            task.cancel()

    def __len__(self) -> int:
        return len(self._entries)
