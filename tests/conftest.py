"""Shared fixtures for the armory test suite."""

import fnmatch
import time
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from armory.app.core.cache import reset_local_cache
from armory.app.core.redis import set_redis
from armory.app.services.armory import reset_armory_service
from armory.app.services.credentials import reset_credential_manager
from armory.app.services.distributed_cache import reset_distributed_cache
from armory.app.services.quota import reset_quota_coordinator
from armory.app.services.source_client import reset_api_client


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset process-wide singletons before and after each test."""

    def _reset():
        reset_local_cache()
        reset_distributed_cache()
        reset_quota_coordinator()
        reset_credential_manager()
        reset_api_client()
        reset_armory_service()
        set_redis(None)

    _reset()
    yield
    _reset()


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    """Buffers commands and runs them against the in-memory store on execute."""

    def __init__(self, redis, transaction=True):
        self._redis = redis
        self._transaction = transaction
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self._commands = []
        return False

    def incr(self, key):
        self._commands.append(("incr", (key,), {}))
        return self

    def expire(self, key, ttl, nx=False):
        self._commands.append(("expire", (key, ttl), {"nx": nx}))
        return self

    async def execute(self):
        commands, self._commands = self._commands, []
        if self._transaction:
            self._redis.transactions.append([(name, args) for name, args, _ in commands])
        return [await getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in commands]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_redis():
    """In-memory stand-in for redis.asyncio.Redis.

    Honours key expiry against ``redis.clock`` (time.time by default) and
    raises ConnectionError from every command once ``redis.fail`` is set.
    """
    redis = MagicMock()
    redis.data = {}
    redis.ttls = {}
    redis.clock = time.time
    redis.fail = False

    def _check():
        if redis.fail:
            raise RedisConnectionError("Connection refused")

    def _expired(key):
        if key in redis.ttls and redis.ttls[key] <= redis.clock():
            redis.data.pop(key, None)
            redis.ttls.pop(key, None)
            return True
        return False

    def _encode(value):
        if isinstance(value, bytes):
            return value
        return str(value).encode()

    async def mock_incr(key):
        _check()
        _expired(key)
        new_val = int(redis.data.get(key, b"0")) + 1
        redis.data[key] = str(new_val).encode()
        return new_val

    async def mock_expire(key, ttl, nx=False):
        _check()
        if key not in redis.data:
            return False
        if nx and key in redis.ttls:
            return False
        redis.ttls[key] = redis.clock() + ttl
        return True

    async def mock_get(key):
        _check()
        if _expired(key):
            return None
        return redis.data.get(key)

    async def mock_set(key, value, ex=None):
        _check()
        redis.data[key] = _encode(value)
        if ex is not None:
            redis.ttls[key] = redis.clock() + ex
        else:
            redis.ttls.pop(key, None)
        return True

    async def mock_setex(key, ttl, value):
        return await mock_set(key, value, ex=ttl)

    async def mock_delete(*keys):
        _check()
        removed = 0
        for key in keys:
            if key in redis.data:
                removed += 1
            redis.data.pop(key, None)
            redis.ttls.pop(key, None)
        return removed

    async def mock_exists(*keys):
        _check()
        return sum(1 for key in keys if not _expired(key) and key in redis.data)

    async def mock_scan_iter(match=None, count=None):
        _check()
        for key in list(redis.data):
            if _expired(key):
                continue
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    redis.incr = mock_incr
    redis.expire = mock_expire
    redis.get = mock_get
    redis.set = mock_set
    redis.setex = mock_setex
    redis.delete = mock_delete
    redis.exists = mock_exists
    redis.scan_iter = mock_scan_iter
    redis.pipeline = lambda transaction=True: FakePipeline(redis, transaction)
    redis.transactions = []

    return redis
