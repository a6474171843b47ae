"""Cross-process admission control for the upstream game-data API.

Every process shares one upstream budget through Redis counters keyed by
wall-clock buckets:

- ratelimit:global:second:{yyyyMMddHHmmss}       - all processes, per second
- ratelimit:global:hour:{yyyyMMddHH}             - all processes, per hour
- ratelimit:caller:{caller}:minute:{yyyyMMddHHmm} - one caller, per minute
- ratelimit:caller:{caller}:hour:{yyyyMMddHH}     - one caller, per hour

Only INCR and EXPIRE NX are used, sent together per key in one MULTI/EXEC
(EXPIRE NX needs Redis 7.0 or newer). Buckets are calendar-aligned rather than
sliding, so up to twice the ceiling can pass across a bucket boundary.

The two entry points fail differently when Redis is down. Caller admission
fails open. Global slot acquisition waits a short fixed delay and then
proceeds, but when Redis *is* reachable and the budget stays exhausted it
gives up with QuotaSaturationError rather than risk the upstream limit.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from redis.exceptions import RedisError

from armory.app.core.config import Settings, settings as default_settings
from armory.app.core.logging import get_log_context, get_logger
from armory.app.core.redis import get_redis
from armory.app.exceptions import (
    InvalidArgumentError,
    QuotaExceededError,
    QuotaSaturationError,
)

logger = get_logger(__name__)

GLOBAL_KEY_PREFIX = "ratelimit:global"
CALLER_KEY_PREFIX = "ratelimit:caller"

# Counter expiry, slightly longer than the bucket width
SECOND_BUCKET_TTL = 5
MINUTE_BUCKET_TTL = 120
HOUR_BUCKET_TTL = 7200

SECOND_FORMAT = "%Y%m%d%H%M%S"
MINUTE_FORMAT = "%Y%m%d%H%M"
HOUR_FORMAT = "%Y%m%d%H"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RateLimitStats:
    """Point-in-time view of the rate limit counters.

    Computed on demand and never stored. Caller fields are None when no
    caller was requested.
    """

    global_second_used: int = 0
    global_second_limit: int = 0
    global_hour_used: int = 0
    global_hour_limit: int = 0
    caller_minute_used: Optional[int] = None
    caller_minute_limit: int = 0
    caller_hour_used: Optional[int] = None
    caller_hour_limit: int = 0

    @property
    def global_second_remaining(self) -> int:
        return max(0, self.global_second_limit - self.global_second_used)

    @property
    def global_hour_remaining(self) -> int:
        return max(0, self.global_hour_limit - self.global_hour_used)

    @property
    def global_hour_utilization(self) -> float:
        """Percentage of the hourly global budget consumed."""
        if self.global_hour_limit <= 0:
            return 0.0
        return self.global_hour_used / self.global_hour_limit * 100

    @property
    def caller_minute_remaining(self) -> Optional[int]:
        if self.caller_minute_used is None:
            return None
        return max(0, self.caller_minute_limit - self.caller_minute_used)

    @property
    def caller_hour_remaining(self) -> Optional[int]:
        if self.caller_hour_used is None:
            return None
        return max(0, self.caller_hour_limit - self.caller_hour_used)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "global_second_used": self.global_second_used,
            "global_second_limit": self.global_second_limit,
            "global_second_remaining": self.global_second_remaining,
            "global_hour_used": self.global_hour_used,
            "global_hour_limit": self.global_hour_limit,
            "global_hour_remaining": self.global_hour_remaining,
            "global_hour_utilization": round(self.global_hour_utilization, 2),
            "caller_minute_used": self.caller_minute_used,
            "caller_minute_limit": self.caller_minute_limit,
            "caller_hour_used": self.caller_hour_used,
            "caller_hour_limit": self.caller_hour_limit,
        }


@dataclass
class QuotaLimits:
    """Ceilings and timings used by the coordinator."""

    global_per_second: int = 80
    global_per_hour: int = 28800
    caller_per_minute: int = 60
    caller_per_hour: int = 1000
    max_retries: int = 10
    retry_delay: float = 1.0
    hour_wait_margin: float = 1.0
    store_failure_delay: float = 0.1

    @classmethod
    def from_settings(cls, config: Settings) -> "QuotaLimits":
        return cls(
            global_per_second=config.global_per_second_limit,
            global_per_hour=config.global_per_hour_limit,
            caller_per_minute=config.caller_per_minute_limit,
            caller_per_hour=config.caller_per_hour_limit,
            max_retries=config.global_slot_max_retries,
            retry_delay=config.global_slot_retry_delay_seconds,
            hour_wait_margin=config.global_hour_wait_margin_seconds,
            store_failure_delay=config.store_failure_delay_seconds,
        )


def seconds_until_next_hour(now: datetime) -> float:
    """Wall-clock seconds from now to the start of the next hour."""
    next_hour = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    return (next_hour - now).total_seconds()


class QuotaCoordinator:
    """Global and per-caller admission control over shared Redis counters.

    Provides:
    - admit_caller: per-caller minute/hour budget, fail-open
    - await_global_slot: blocks until the shared upstream budget has room
    - stats: best-effort snapshot of the live buckets
    - reset_caller: administrative reset of a caller's buckets
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        limits: Optional[QuotaLimits] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the coordinator.

        Args:
            redis_client: Redis client; defaults to the shared one.
            limits: Ceilings; defaults to values from settings.
            clock: Returns the current UTC time; injectable for tests.
            sleep: Awaitable sleep; injectable for tests.
        """
        self._redis = redis_client
        self.limits = limits or QuotaLimits.from_settings(default_settings)
        self._clock = clock
        self._sleep = sleep

    def _get_redis(self) -> Any:
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    # Key construction

    @staticmethod
    def _global_second_key(now: datetime) -> str:
        return f"{GLOBAL_KEY_PREFIX}:second:{now.strftime(SECOND_FORMAT)}"

    @staticmethod
    def _global_hour_key(now: datetime) -> str:
        return f"{GLOBAL_KEY_PREFIX}:hour:{now.strftime(HOUR_FORMAT)}"

    @staticmethod
    def _caller_minute_key(caller_id: str, now: datetime) -> str:
        return f"{CALLER_KEY_PREFIX}:{caller_id}:minute:{now.strftime(MINUTE_FORMAT)}"

    @staticmethod
    def _caller_hour_key(caller_id: str, now: datetime) -> str:
        return f"{CALLER_KEY_PREFIX}:{caller_id}:hour:{now.strftime(HOUR_FORMAT)}"

    @staticmethod
    def _require_caller(caller_id: str) -> None:
        if not caller_id or not caller_id.strip():
            raise InvalidArgumentError("Caller ID cannot be null or empty")

    async def _increment(self, key: str, ttl: int) -> int:
        """INCR a bucket counter, setting its expiry when it is created.

        Both commands go in one MULTI/EXEC on the single key, so a counter
        never exists without a TTL. EXPIRE NX leaves an existing expiry alone.
        """
        async with self._get_redis().pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl, nx=True)
            count, _ = await pipe.execute()
        return int(count)

    # Per-caller admission

    async def admit_caller(self, caller_id: str) -> bool:
        """Count one request against a caller's minute and hour budgets.

        The increment stays in place even when the request is rejected, so
        retry storms keep paying for themselves. The hour bucket is only
        touched once the minute check has passed.

        Returns:
            False if either ceiling is exceeded, True otherwise (including
            when Redis is unavailable).
        """
        self._require_caller(caller_id)
        context = get_log_context(caller_id=caller_id)
        try:
            now = self._clock()

            minute_count = await self._increment(
                self._caller_minute_key(caller_id, now), MINUTE_BUCKET_TTL
            )
            if minute_count > self.limits.caller_per_minute:
                logger.warning(
                    f"Caller exceeded per-minute rate limit "
                    f"({minute_count}/{self.limits.caller_per_minute})",
                    extra=context,
                )
                return False

            hour_count = await self._increment(
                self._caller_hour_key(caller_id, now), HOUR_BUCKET_TTL
            )
            if hour_count > self.limits.caller_per_hour:
                logger.warning(
                    f"Caller exceeded per-hour rate limit "
                    f"({hour_count}/{self.limits.caller_per_hour})",
                    extra=context,
                )
                return False

            return True
        except RedisError as e:
            logger.error(
                f"Redis error while checking caller rate limit, allowing request: {e}",
                extra=context,
            )
            return True

    async def ensure_caller_admitted(self, caller_id: str) -> None:
        """Like admit_caller, but raise instead of returning False.

        Raises:
            QuotaExceededError: The caller should try again later.
        """
        if await self.admit_caller(caller_id):
            return
        stats = await self.stats(caller_id)
        raise QuotaExceededError(caller_id=caller_id, stats=stats, retry_after=60)

    # Global upstream slot

    async def await_global_slot(self) -> None:
        """Wait until the shared upstream budget has room for one call.

        Over the per-second ceiling: sleep retry_delay and try again.
        Over the per-hour ceiling: sleep until the next hour boundary plus
        a small margin and try again. Each wait uses one retry.

        Cancelling the awaiting task raises asyncio.CancelledError out of
        the current sleep; counters already incremented stay as they are
        and nothing further is incremented.

        Raises:
            QuotaSaturationError: After max_retries waits without a slot.
        """
        limits = self.limits
        retry_count = 0

        while retry_count < limits.max_retries:
            try:
                now = self._clock()

                second_count = await self._increment(
                    self._global_second_key(now), SECOND_BUCKET_TTL
                )
                if second_count > limits.global_per_second:
                    logger.debug(
                        f"Global per-second rate limit reached "
                        f"({second_count}/{limits.global_per_second}), "
                        f"waiting {limits.retry_delay}s"
                    )
                    await self._sleep(limits.retry_delay)
                    retry_count += 1
                    continue

                hour_count = await self._increment(
                    self._global_hour_key(now), HOUR_BUCKET_TTL
                )
                if hour_count > limits.global_per_hour:
                    wait = seconds_until_next_hour(now) + limits.hour_wait_margin
                    logger.warning(
                        f"Global per-hour rate limit reached "
                        f"({hour_count}/{limits.global_per_hour}), waiting {wait:.1f}s"
                    )
                    await self._sleep(wait)
                    retry_count += 1
                    continue

                return
            except RedisError as e:
                logger.error(
                    f"Redis error while acquiring global slot, allowing request "
                    f"after {limits.store_failure_delay}s: {e}"
                )
                await self._sleep(limits.store_failure_delay)
                return

        logger.error(f"No global slot after {limits.max_retries} retries")
        raise QuotaSaturationError(attempts=limits.max_retries)

    # Monitoring and administration

    async def _read_counter(self, key: str) -> int:
        try:
            value = await self._get_redis().get(key)
        except RedisError as e:
            logger.warning(f"Redis error while reading {key}: {e}")
            return 0
        if value is None:
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    async def stats(self, caller_id: Optional[str] = None) -> RateLimitStats:
        """Best-effort snapshot of the current buckets.

        Any bucket that cannot be read counts as zero.
        """
        now = self._clock()
        limits = self.limits
        result = RateLimitStats(
            global_second_used=await self._read_counter(self._global_second_key(now)),
            global_second_limit=limits.global_per_second,
            global_hour_used=await self._read_counter(self._global_hour_key(now)),
            global_hour_limit=limits.global_per_hour,
            caller_minute_limit=limits.caller_per_minute,
            caller_hour_limit=limits.caller_per_hour,
        )
        if caller_id and caller_id.strip():
            result.caller_minute_used = await self._read_counter(
                self._caller_minute_key(caller_id, now)
            )
            result.caller_hour_used = await self._read_counter(
                self._caller_hour_key(caller_id, now)
            )
        return result

    async def reset_caller(self, caller_id: str) -> None:
        """Delete a caller's current minute and hour buckets. Use with caution."""
        self._require_caller(caller_id)
        now = self._clock()
        try:
            await self._get_redis().delete(
                self._caller_minute_key(caller_id, now),
                self._caller_hour_key(caller_id, now),
            )
            logger.info("Reset rate limits for caller", extra=get_log_context(caller_id=caller_id))
        except RedisError as e:
            logger.error(
                f"Redis error while resetting caller rate limits: {e}",
                extra=get_log_context(caller_id=caller_id),
            )


_quota_coordinator: Optional[QuotaCoordinator] = None


def get_quota_coordinator(redis_client: Optional[Any] = None) -> QuotaCoordinator:
    """Get the global quota coordinator instance."""
    global _quota_coordinator
    if _quota_coordinator is None or redis_client is not None:
        _quota_coordinator = QuotaCoordinator(redis_client=redis_client)
    return _quota_coordinator


def reset_quota_coordinator() -> None:
    """Reset the global quota coordinator instance."""
    global _quota_coordinator
    _quota_coordinator = None
