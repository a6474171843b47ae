"""Process-local cache with absolute TTL expiration.

Values are stored by reference, so nothing is serialized and nothing is
visible outside the current process. Used for hot game data and for the
upstream access token.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar
import asyncio
import time

from armory.app.core.logging import get_log_context, get_logger
from armory.app.exceptions import InvalidArgumentError, ProducerReturnedEmptyError

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class _CacheEntry:
    """Internal cache entry with TTL tracking."""

    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def _require_key(key: str) -> None:
    if not key or not key.strip():
        raise InvalidArgumentError("Cache key cannot be null or empty")


class LocalCache:
    """In-memory cache with TTL support.

    Expired entries are dropped lazily when read, or in bulk by
    cleanup_expired(). Data is lost when the process restarts.

    Example:
        >>> cache = LocalCache()
        >>> await cache.set("wow:us:static:item:19019:v1", item, ttl=300)
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize the local cache.

        Args:
            clock: Returns the current time in seconds; injectable for tests.
        """
        self._data: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[Any]:
        """Retrieve a value, or None if absent or expired."""
        _require_key(key)
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._data[key]
                return None
            return entry.value

    async def set(self, key: str, value: Any, ttl: float) -> None:
        """Store a value with an absolute expiration ttl seconds from now.

        Raises:
            InvalidArgumentError: If the key is blank, the value is None or
                ttl is not strictly positive.
        """
        _require_key(key)
        if value is None:
            raise InvalidArgumentError("Cannot cache a None value")
        if ttl <= 0:
            raise InvalidArgumentError("Expiration must be greater than zero")
        async with self._lock:
            self._data[key] = _CacheEntry(value=value, expires_at=self._clock() + ttl)
        logger.debug(
            f"Cached value in memory with ttl={ttl}s",
            extra=get_log_context(cache_key=key, cache_tier="local"),
        )

    async def remove(self, key: str) -> None:
        _require_key(key)
        async with self._lock:
            self._data.pop(key, None)

    async def remove_by_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix. Returns the number removed."""
        _require_key(prefix)
        async with self._lock:
            doomed = [key for key in self._data if key.startswith(prefix)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def get_or_set(
        self,
        key: str,
        producer: Callable[[], Awaitable[Optional[T]]],
        ttl: float,
    ) -> T:
        """Return the cached value, or produce, store and return it.

        Raises:
            ProducerReturnedEmptyError: If the producer returns None; nothing
                is cached in that case.
        """
        cached = await self.get(key)
        if cached is not None:
            logger.debug(
                "Memory cache hit",
                extra=get_log_context(cache_key=key, cache_tier="local"),
            )
            return cached

        logger.debug(
            "Memory cache miss, executing producer",
            extra=get_log_context(cache_key=key, cache_tier="local"),
        )
        value = await producer()
        if value is None:
            raise ProducerReturnedEmptyError(key)
        await self.set(key, value, ttl)
        return value

    async def clear(self) -> None:
        """Clear all entries from the cache."""
        async with self._lock:
            self._data.clear()

    async def cleanup_expired(self) -> int:
        """Remove all expired entries from the cache.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._data.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._data[key]
            return len(expired_keys)

    def __len__(self) -> int:
        return len(self._data)


# Global cache instance (singleton pattern)
_local_cache: LocalCache | None = None


def get_local_cache() -> LocalCache:
    """Get or create the process-wide local cache."""
    global _local_cache
    if _local_cache is None:
        _local_cache = LocalCache()
    return _local_cache


def reset_local_cache() -> None:
    """Reset the global cache instance.

    This is primarily useful for testing.
    """
    global _local_cache
    _local_cache = None
