"""Tests for the process-local cache."""

import asyncio

import pytest

from armory.app.core.cache import (
    LocalCache,
    _CacheEntry,
    get_local_cache,
    reset_local_cache,
)
from armory.app.exceptions import InvalidArgumentError, ProducerReturnedEmptyError


class TestCacheEntry:
    """Tests for the internal _CacheEntry class."""

    def test_not_expired_before_deadline(self):
        entry = _CacheEntry(value="x", expires_at=100.0)
        assert not entry.is_expired(99.9)

    def test_expired_at_deadline(self):
        entry = _CacheEntry(value="x", expires_at=100.0)
        assert entry.is_expired(100.0)
        assert entry.is_expired(150.0)


class TestLocalCache:
    """Tests for LocalCache get/set/remove semantics."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, clock):
        cache = LocalCache(clock=clock)
        await cache.set("wow:us:static:item:1:v1", {"id": 1}, ttl=60)
        assert await cache.get("wow:us:static:item:1:v1") == {"id": 1}

    @pytest.mark.asyncio
    async def test_values_are_stored_by_reference(self, clock):
        cache = LocalCache(clock=clock)
        value = {"id": 1}
        await cache.set("key", value, ttl=60)
        assert await cache.get("key") is value

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self, clock):
        cache = LocalCache(clock=clock)
        assert await cache.get("nonexistent") is None

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, clock):
        cache = LocalCache(clock=clock)
        await cache.set("key", "value", ttl=10)

        clock.advance(9.9)
        assert await cache.get("key") == "value"

        clock.advance(0.1)
        assert await cache.get("key") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_overwrite_resets_expiration(self, clock):
        cache = LocalCache(clock=clock)
        await cache.set("key", "old", ttl=10)
        clock.advance(8)
        await cache.set("key", "new", ttl=10)
        clock.advance(8)
        assert await cache.get("key") == "new"

    @pytest.mark.asyncio
    async def test_remove(self, clock):
        cache = LocalCache(clock=clock)
        await cache.set("key", "value", ttl=60)
        await cache.remove("key")
        assert await cache.get("key") is None
        # Removing a missing key is a no-op
        await cache.remove("key")

    @pytest.mark.asyncio
    async def test_remove_by_prefix(self, clock):
        cache = LocalCache(clock=clock)
        await cache.set("wow:us:static:item:1:v1", 1, ttl=60)
        await cache.set("wow:us:static:item:2:v1", 2, ttl=60)
        await cache.set("wow:eu:static:item:1:v1", 3, ttl=60)

        removed = await cache.remove_by_prefix("wow:us:")

        assert removed == 2
        assert await cache.get("wow:eu:static:item:1:v1") == 3

    @pytest.mark.asyncio
    async def test_exists(self, clock):
        cache = LocalCache(clock=clock)
        await cache.set("key", "value", ttl=5)
        assert await cache.exists("key")
        clock.advance(5)
        assert not await cache.exists("key")

    @pytest.mark.asyncio
    async def test_clear_and_cleanup_expired(self, clock):
        cache = LocalCache(clock=clock)
        await cache.set("short", 1, ttl=1)
        await cache.set("long", 2, ttl=100)

        clock.advance(2)
        assert await cache.cleanup_expired() == 1
        assert len(cache) == 1

        await cache.clear()
        assert len(cache) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [0, -1])
    async def test_set_rejects_non_positive_ttl(self, clock, ttl):
        cache = LocalCache(clock=clock)
        with pytest.raises(InvalidArgumentError):
            await cache.set("key", "value", ttl=ttl)
        assert await cache.get("key") is None

    @pytest.mark.asyncio
    async def test_set_rejects_none_value(self, clock):
        cache = LocalCache(clock=clock)
        with pytest.raises(InvalidArgumentError):
            await cache.set("key", None, ttl=10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", "   "])
    async def test_blank_key_rejected(self, clock, key):
        cache = LocalCache(clock=clock)
        with pytest.raises(InvalidArgumentError):
            await cache.get(key)
        with pytest.raises(InvalidArgumentError):
            await cache.set(key, "value", ttl=10)


class TestLocalCacheGetOrSet:
    """Tests for the cache-aside helper."""

    @pytest.mark.asyncio
    async def test_miss_runs_producer_and_stores(self, clock):
        cache = LocalCache(clock=clock)
        calls = 0

        async def producer():
            nonlocal calls
            calls += 1
            return "produced"

        assert await cache.get_or_set("key", producer, ttl=60) == "produced"
        assert await cache.get_or_set("key", producer, ttl=60) == "produced"
        assert calls == 1

    @pytest.mark.asyncio
    async def test_producer_returning_none_raises_and_caches_nothing(self, clock):
        cache = LocalCache(clock=clock)

        async def producer():
            return None

        with pytest.raises(ProducerReturnedEmptyError):
            await cache.get_or_set("key", producer, ttl=60)
        assert await cache.get("key") is None

    @pytest.mark.asyncio
    async def test_producer_exception_propagates(self, clock):
        cache = LocalCache(clock=clock)

        async def producer():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await cache.get_or_set("key", producer, ttl=60)
        assert await cache.get("key") is None


class TestLocalCacheConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_writers_leave_one_consistent_value(self, clock):
        cache = LocalCache(clock=clock)

        await asyncio.gather(*(cache.set("key", i, ttl=60) for i in range(50)))

        assert await cache.get("key") in range(50)
        assert len(cache) == 1


class TestGlobalLocalCache:

    def test_singleton(self):
        assert get_local_cache() is get_local_cache()

    def test_reset(self):
        first = get_local_cache()
        reset_local_cache()
        assert get_local_cache() is not first
