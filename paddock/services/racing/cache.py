"""
In-Memory Cache with TTL
Freshness-window caching for racing fetch results and raw upstream responses.
"""
import time
import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional
import logging

logger = logging.getLogger(__name__)


class CacheEntry:
    """
    Cache entry with timestamp and TTL.

    Attributes:
        data: Cached data
        created_at: Timestamp when entry was created
        ttl_seconds: Time-to-live in seconds
    """

    def __init__(self, data: Any, ttl_seconds: float, created_at: float):
        self.data = data
        self.created_at = created_at
        self.ttl_seconds = ttl_seconds

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        """
        Check if cache entry has expired.

        Returns:
            True once the entry is at least ttl_seconds old
        """
        return self.age(now) >= self.ttl_seconds


class InMemoryCache:
    """
    Simple in-memory cache with TTL support.

    Keys are query signatures (any hashable). Expired entries are removed
    on access. ``get_or_set`` is single-flight per key: concurrent callers
    for the same missing key share one factory call.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Initialize in-memory cache.

        Args:
            clock: Wall clock used for entry timestamps
        """
        self._cache: Dict[Hashable, CacheEntry] = {}
        self._key_locks: Dict[Hashable, asyncio.Lock] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: Hashable) -> Optional[Any]:
        """
        Get value from cache if not expired.

        Args:
            key: Cache key

        Returns:
            Cached value if exists and not expired, None otherwise
        """
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return None
            return entry.data

    async def set(self, key: Hashable, value: Any, ttl_seconds: float) -> None:
        """
        Set value in cache with TTL.

        Args:
            key: Cache key
            value: Value to cache
            ttl_seconds: Time-to-live in seconds
        """
        async with self._lock:
            self._cache[key] = CacheEntry(value, ttl_seconds, created_at=self._clock())

    async def age(self, key: Hashable) -> Optional[float]:
        """Seconds since the entry for key was stored, or None if absent."""
        async with self._lock:
            entry = self._cache.get(key)
            return entry.age(self._clock()) if entry else None

    async def clear(self, key: Optional[Hashable] = None) -> None:
        """
        Clear cache entry or all entries.

        Args:
            key: Optional cache key to clear. If None, clears all cache.
        """
        async with self._lock:
            if key is not None:
                self._cache.pop(key, None)
                logger.info(f"Cleared cache entry: {key}")
            else:
                self._cache.clear()
                logger.info("Cleared all cache entries")

    async def get_or_set(
        self,
        key: Hashable,
        value_factory: Callable[[], Awaitable[Any]],
        ttl_seconds: float
    ) -> Any:
        """
        Get value from cache, or set it using factory function if not found.

        Args:
            key: Cache key
            value_factory: Async function that returns the value to cache
            ttl_seconds: Time-to-live in seconds

        Returns:
            Cached or newly computed value
        """
        async with self._lock:
            key_lock = self._key_locks.setdefault(key, asyncio.Lock())

        async with key_lock:
            cached = await self.get(key)
            if cached is not None:
                return cached

            value = await value_factory()
            await self.set(key, value, ttl_seconds)
            return value
