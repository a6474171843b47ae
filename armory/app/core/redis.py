"""Shared Redis client used as the cross-process counter and cache store.

Only a handful of commands are relied on: INCR, EXPIRE, GET, SET with
expiry, DELETE and SCAN for administrative pattern deletion.
"""

from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from armory.app.core.config import settings
from armory.app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: Optional[Any] = None


def get_redis() -> Any:
    """Get or create the process-wide Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(settings.redis_url)
    return _redis_client


def set_redis(client: Optional[Any]) -> None:
    """Replace the process-wide Redis client (used by tests and lifespan)."""
    global _redis_client
    _redis_client = client


async def close_redis() -> None:
    """Close the Redis connection."""
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")
        _redis_client = None


async def delete_by_pattern(client: Any, pattern: str) -> int:
    """Delete every key matching a glob pattern.

    Uses incremental SCAN, never KEYS.

    Returns:
        Number of keys removed.
    """
    removed = 0
    batch: list[Any] = []
    async for key in client.scan_iter(match=pattern, count=500):
        batch.append(key)
        if len(batch) >= 500:
            removed += await client.delete(*batch)
            batch.clear()
    if batch:
        removed += await client.delete(*batch)
    return removed
