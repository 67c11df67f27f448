# lazy ttl cache with single-flight get-or-compute
# when you request data: if cached (and not expired) → instant return
#                        if another request is already computing it → wait for that result
#                        otherwise → compute + cache + return

import asyncio
import inspect
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from goals.logger import get_logger

logger = get_logger("cache")

ComputeFn = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass
class CacheEntry:
    """one stored value; valid while now - stored_at < ttl_seconds"""
    key: str
    value: Any
    stored_at: float
    ttl_seconds: int

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_seconds

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at < self.ttl_seconds


class TTLCache:
    """
    time-to-live cache - items expire after their own ttl
    this keeps expensive sql aggregates around between dashboard requests
    """

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        """
        initialize cache

        args:
            max_entries: high-water mark, above it expired/oldest entries are evicted
            clock: returns the current time in seconds (tests pass a fake one)
        """
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()  # thread-safe for concurrent access
        self._max_entries = max_entries
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        """
        get value from cache if it exists and hasn't expired

        args:
            key: cache key (e.g., "goals:static:seller_id=7:year=2026:classification=all")

        returns:
            cached value if found and fresh, None otherwise
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_valid(self._clock()):
                return entry.value
            # expired - delete it
            del self._entries[key]
        return None

    def set(self, key: str, value: Any, ttl_seconds: int):
        """
        store value in cache, overwriting any previous entry and restarting its clock

        args:
            key: cache key
            value: data to cache
            ttl_seconds: how long the value stays valid
        """
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                stored_at=self._clock(),
                ttl_seconds=ttl_seconds,
            )
            if len(self._entries) > self._max_entries:
                self._evict_locked(keep=key)

    async def get_or_set(self, key: str, compute_fn: ComputeFn, ttl_seconds: int) -> Any:
        """return the cached value for key, computing and storing it on a miss"""
        value, _ = await self.get_or_set_with_hit(key, compute_fn, ttl_seconds)
        return value

    async def get_or_set_with_hit(
        self,
        key: str,
        compute_fn: ComputeFn,
        ttl_seconds: int
    ) -> Tuple[Any, bool]:
        """
        get-or-compute with single-flight

        concurrent callers for the same missing key share one compute_fn call.
        a failing compute is re-raised to every waiter and nothing is stored.

        args:
            key: cache key
            compute_fn: sync or async callable producing the value
            ttl_seconds: ttl for the stored value

        returns:
            (value, cache_hit)
        """
        # a cached None is indistinguishable from a miss, same as get()
        value = self.get(key)
        if value is not None:
            self.hits += 1
            logger.debug(f"cache HIT: {key}")
            return value, True

        self.misses += 1
        task = self._inflight.get(key)
        if task is None:
            logger.debug(f"cache MISS: {key}")
            task = asyncio.ensure_future(self._compute_and_store(key, compute_fn, ttl_seconds))
            # if every waiter gets cancelled, a failure would otherwise go unretrieved
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        else:
            logger.debug(f"cache MISS (joining in-flight compute): {key}")

        # shield so one cancelled request doesn't cancel the shared computation
        value = await asyncio.shield(task)
        return value, False

    async def _compute_and_store(self, key: str, compute_fn: ComputeFn, ttl_seconds: int) -> Any:
        task = asyncio.current_task()
        try:
            value = compute_fn()
            if inspect.isawaitable(value):
                value = await value
            # invalidated while computing: the result predates the invalidation,
            # hand it to the callers already waiting but don't store it
            if self._inflight.get(key) is task:
                self.set(key, value, ttl_seconds)
            else:
                logger.debug(f"discarding result of detached compute: {key}")
            return value
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    def _detach_inflight(self, matches: Callable[[str], bool]) -> int:
        # new callers start a fresh compute instead of joining the stale one
        detached = [key for key in self._inflight if matches(key)]
        for key in detached:
            del self._inflight[key]
        return len(detached)

    def delete(self, key: str) -> bool:
        """drop one key (and any compute in flight for it), returns True if it was stored"""
        self._detach_inflight(lambda k: k == key)
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """
        drop every key starting with prefix (e.g. all tiers of one seller
        after a new sale is registered). computes in flight for those keys
        are detached so their results are never stored.

        returns:
            number of stored entries removed
        """
        detached = self._detach_inflight(lambda k: k.startswith(prefix))
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        if detached:
            logger.debug(f"detached {detached} in-flight computes under {prefix}")
        return len(keys)

    def sweep(self) -> int:
        """remove expired entries, returns how many were removed"""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict_locked(self, keep: str = None):
        # expired first, then the oldest stored; the entry just written always stays
        removed = self._sweep_locked(self._clock())
        overflow = len(self._entries) - self._max_entries
        if overflow > 0:
            candidates = [entry for entry in self._entries.values() if entry.key != keep]
            oldest = sorted(candidates, key=lambda entry: entry.stored_at)[:overflow]
            for entry in oldest:
                del self._entries[entry.key]
            removed += len(oldest)
        logger.info(f"cache over {self._max_entries} entries, evicted {removed}")

    def clear(self):
        """clear entire cache, in-flight computes included (useful for testing)"""
        self._detach_inflight(lambda k: True)
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        """get number of items in cache (expired-but-unswept ones included)"""
        with self._lock:
            return len(self._entries)

    def hit_rate(self, hits: Optional[int] = None, misses: Optional[int] = None) -> float:
        """
        calculate cache hit rate (for monitoring)

        args:
            hits: number of cache hits (default: this cache's counter)
            misses: number of cache misses (default: this cache's counter)

        returns:
            hit rate as percentage (0-100)
        """
        hits = self.hits if hits is None else hits
        misses = self.misses if misses is None else misses
        total = hits + misses
        if total == 0:
            return 0.0
        return (hits / total) * 100

    def stats(self) -> Dict[str, Any]:
        return {
            'entries': self.size(),
            'max_entries': self._max_entries,
            'inflight': len(self._inflight),
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': round(self.hit_rate(), 2),
        }


def _consume_exception(task: asyncio.Task):
    if not task.cancelled():
        task.exception()
