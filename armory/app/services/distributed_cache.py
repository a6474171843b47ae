"""Redis-backed cache shared by every process.

Values are serialized to JSON with pydantic and validated against a schema
on the way back, so an entry written by an older model version reads as a
miss and is deleted instead of surfacing a deserialization error. Store
errors never propagate: a failed read is a miss and a failed write is only
logged, so a degraded Redis degrades to direct upstream calls.
"""

import json
from functools import lru_cache
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic.errors import PydanticSchemaGenerationError
from pydantic_core import PydanticSerializationError
from redis.exceptions import RedisError

from armory.app.core.logging import get_log_context, get_logger
from armory.app.core.redis import delete_by_pattern, get_redis
from armory.app.exceptions import (
    CacheCorruptionError,
    InvalidArgumentError,
    ProducerReturnedEmptyError,
)

logger = get_logger(__name__)

T = TypeVar("T")


@lru_cache(maxsize=64)
def _adapter(schema: Any) -> TypeAdapter:
    return TypeAdapter(schema)


def _require_key(key: str) -> None:
    if not key or not key.strip():
        raise InvalidArgumentError("Cache key cannot be null or empty")


class DistributedCache:
    """Cache-aside layer over the shared Redis store.

    There is no cross-process deduplication: two processes that miss the
    same key at the same time both run their producer.
    """

    def __init__(self, redis_client: Optional[Any] = None) -> None:
        self._redis = redis_client

    def _get_redis(self) -> Any:
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    @staticmethod
    def _serialize(value: Any, schema: Any = None) -> bytes:
        return _adapter(schema if schema is not None else type(value)).dump_json(value)

    @staticmethod
    def _deserialize(key: str, raw: bytes | str, schema: Any = None) -> Any:
        try:
            if schema is None:
                return json.loads(raw)
            return _adapter(schema).validate_json(raw)
        except (ValidationError, ValueError) as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            raise CacheCorruptionError(key, str(e)) from e

    async def get(self, key: str, schema: Any = None) -> Optional[Any]:
        """Read and deserialize a value.

        Args:
            key: Cache key.
            schema: Type to validate against (pydantic model, list[Model], ...).
                When None the raw JSON document is returned.

        Returns:
            The value, or None on a miss, a store error or a corrupt entry.
        """
        _require_key(key)
        context = get_log_context(cache_key=key, cache_tier="distributed")
        try:
            raw = await self._get_redis().get(key)
        except RedisError as e:
            logger.error(f"Redis error while getting key: {e}", extra=context)
            return None

        if raw is None or raw == b"" or raw == "":
            logger.debug("Cache miss", extra=context)
            return None

        try:
            value = self._deserialize(key, raw, schema)
        except CacheCorruptionError as e:
            logger.error(f"Deserialization error, removing entry: {e.reason}", extra=context)
            await self.remove(key)
            return None

        logger.debug("Cache hit", extra=context)
        return value

    async def set(self, key: str, value: Any, ttl: int, schema: Any = None) -> None:
        """Serialize and store a value with a TTL in seconds.

        Raises:
            InvalidArgumentError: If the key is blank, the value is None or
                ttl is not strictly positive.
        """
        _require_key(key)
        if value is None:
            raise InvalidArgumentError("Cannot cache a None value")
        if ttl <= 0:
            raise InvalidArgumentError("Expiration must be greater than zero")

        context = get_log_context(cache_key=key, cache_tier="distributed")
        try:
            payload = self._serialize(value, schema)
        except (PydanticSchemaGenerationError, PydanticSerializationError, TypeError) as e:
            logger.error(f"Serialization error: {e}", extra=context)
            return

        try:
            await self._get_redis().set(key, payload, ex=int(ttl))
            logger.debug(f"Cached value with ttl={ttl}s", extra=context)
        except RedisError as e:
            logger.error(f"Redis error while setting key: {e}", extra=context)

    async def remove(self, key: str) -> None:
        _require_key(key)
        try:
            await self._get_redis().delete(key)
        except RedisError as e:
            logger.error(
                f"Redis error while removing key: {e}",
                extra=get_log_context(cache_key=key, cache_tier="distributed"),
            )

    async def remove_by_prefix(self, pattern: str) -> int:
        """Remove all keys matching a glob pattern (e.g. "wow:us:static:*").

        Administrative only: never called on the request path.

        Returns:
            Number of keys removed; 0 on store errors.
        """
        if not pattern or not pattern.strip():
            raise InvalidArgumentError("Pattern cannot be null or empty")
        try:
            removed = await delete_by_pattern(self._get_redis(), pattern)
        except RedisError as e:
            logger.error(f"Redis error while removing keys by pattern {pattern}: {e}")
            return 0
        if removed:
            logger.info(f"Removed {removed} keys matching pattern: {pattern}")
        return removed

    async def exists(self, key: str) -> bool:
        _require_key(key)
        try:
            return await self._get_redis().exists(key) > 0
        except RedisError as e:
            logger.error(
                f"Redis error while checking key existence: {e}",
                extra=get_log_context(cache_key=key, cache_tier="distributed"),
            )
            return False

    async def get_or_set(
        self,
        key: str,
        producer: Callable[[], Awaitable[Optional[T]]],
        ttl: int,
        schema: Any = None,
    ) -> T:
        """Cache-aside read: return the cached value or produce and store it.

        The producer runs at most once per call. Exceptions it raises
        propagate unchanged and nothing is cached.

        Raises:
            ProducerReturnedEmptyError: If the producer returns None.
        """
        cached = await self.get(key, schema)
        if cached is not None:
            return cached

        logger.debug(
            "Cache miss, executing producer",
            extra=get_log_context(cache_key=key, cache_tier="distributed"),
        )
        value = await producer()
        if value is None:
            raise ProducerReturnedEmptyError(key)

        await self.set(key, value, ttl, schema)
        return value


_distributed_cache: Optional[DistributedCache] = None


def get_distributed_cache(redis_client: Optional[Any] = None) -> DistributedCache:
    """Get the global distributed cache instance."""
    global _distributed_cache
    if _distributed_cache is None or redis_client is not None:
        _distributed_cache = DistributedCache(redis_client=redis_client)
    return _distributed_cache


def reset_distributed_cache() -> None:
    """Reset the global distributed cache instance.

    Useful for testing.
    """
    global _distributed_cache
    _distributed_cache = None
