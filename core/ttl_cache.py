"""Bounded TTL cache with get-or-fetch semantics for enrichment lookups."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TTLCache(Generic[T]):
    """
    In-memory TTL cache with a size bound.

    Safe for asyncio (single-threaded event loop). Concurrent `get_or_fetch`
    calls for the same key share one fetch.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        max_size: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._data: Dict[str, Tuple[T, float]] = {}  # key -> (value, expires_at)
        self._inflight: Dict[str, asyncio.Future] = {}
        self._hits = 0
        self._misses = 0
        self._fetch_errors = 0

    def get(self, key: str) -> Optional[T]:
        """Get value if present and not expired."""
        item = self._data.get(key)
        if item is None:
            self._misses += 1
            return None

        value, expires_at = item
        if expires_at < self._clock():
            del self._data[key]
            self._misses += 1
            return None

        self._hits += 1
        return value

    def set(self, key: str, value: T, ttl: Optional[float] = None):
        """Set value with optional custom TTL."""
        if key not in self._data and len(self._data) >= self.max_size:
            self._evict()

        actual_ttl = ttl if ttl is not None else self.ttl
        self._data[key] = (value, self._clock() + actual_ttl)

    def delete(self, key: str):
        self._data.pop(key, None)

    def contains(self, key: str) -> bool:
        return self.get(key) is not None

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Optional[T]]],
        ttl: Optional[float] = None,
    ) -> Optional[T]:
        """
        Return the cached value or populate it from `fetch`.

        None results are not cached. Fetch errors propagate to every waiter
        and leave the cache untouched. If the task running the fetch is
        cancelled, its waiters fetch again themselves.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
            # The owning task was cancelled; fetch on our own
            return await self.get_or_fetch(key, fetch, ttl)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await fetch()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            self._fetch_errors += 1
            future.set_exception(e)
            # Mark retrieved so a lone future does not log "exception never retrieved"
            future.exception()
            raise
        finally:
            self._inflight.pop(key, None)

        if value is not None:
            self.set(key, value, ttl)
        future.set_result(value)
        return value

    def _evict(self):
        """Drop expired entries, then the oldest quarter if still full."""
        now = self._clock()
        for k in [k for k, (_, exp) in self._data.items() if exp < now]:
            del self._data[k]

        if len(self._data) >= self.max_size:
            oldest = sorted(self._data, key=lambda k: self._data[k][1])
            for k in oldest[:max(1, len(self._data) // 4)]:
                del self._data[k]

    def clear(self):
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def stats(self) -> dict:
        """Get cache statistics."""
        total = self._hits + self._misses
        return {
            "size": len(self._data),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total > 0 else 0,
            "fetch_errors": self._fetch_errors,
            "ttl": self.ttl,
        }
