"""Retrieval service: two cache tiers in front of the upstream API.

For every resource the lookup order is local cache, distributed cache,
then the upstream source. An upstream call first waits for a global quota
slot and a bearer token, then the mapped result is written to the
distributed cache and finally to the local cache.
"""

from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError

from armory.app.core.cache import LocalCache, get_local_cache
from armory.app.core.config import Settings, settings as default_settings
from armory.app.core.logging import get_log_context, get_logger
from armory.app.exceptions import (
    InvalidArgumentError,
    SourceNotFoundError,
    SourceTransientError,
)
from armory.app.services.cache_keys import CacheKeys, VolatilityClass
from armory.app.services.distributed_cache import DistributedCache, get_distributed_cache
from armory.app.services.models import (
    Achievement,
    Character,
    Guild,
    Item,
    Mount,
    Realm,
    Region,
)
from armory.app.services.quota import QuotaCoordinator, get_quota_coordinator
from armory.app.services.source_client import ArmoryApiClient, get_api_client

logger = get_logger(__name__)

T = TypeVar("T")


def ttl_policy(config: Settings) -> dict[VolatilityClass, tuple[int, int]]:
    """Volatility class -> (distributed TTL, local TTL) in seconds."""
    return {
        VolatilityClass.STATIC: (config.cache_ttl_static, config.local_cache_ttl_static),
        VolatilityClass.PROFILE: (config.cache_ttl_profile, config.local_cache_ttl_profile),
        VolatilityClass.DYNAMIC: (config.cache_ttl_dynamic, config.local_cache_ttl_dynamic),
        VolatilityClass.SEARCH: (config.cache_ttl_search, config.local_cache_ttl_search),
    }


class ArmoryService:
    """Cached access to characters, guilds, items, achievements, mounts and realms.

    A resource the upstream reports as missing comes back as None; every
    other upstream or quota failure propagates to the caller.
    """

    def __init__(
        self,
        local_cache: Optional[LocalCache] = None,
        distributed_cache: Optional[DistributedCache] = None,
        quota: Optional[QuotaCoordinator] = None,
        api_client: Optional[ArmoryApiClient] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self._settings = config if config is not None else default_settings
        self.local_cache = local_cache if local_cache is not None else get_local_cache()
        self.distributed_cache = (
            distributed_cache if distributed_cache is not None else get_distributed_cache()
        )
        self.quota = quota if quota is not None else get_quota_coordinator()
        self.api_client = api_client if api_client is not None else get_api_client()
        self._ttls = ttl_policy(self._settings)

    def _region(self, region: Optional[str]) -> Region:
        raw = region if region is not None else self._settings.armory_default_region
        try:
            return Region(raw.strip().lower())
        except (AttributeError, ValueError):
            raise InvalidArgumentError(f"Unknown region: {region!r}")

    async def _fetch(
        self,
        key: str,
        volatility: VolatilityClass,
        schema: Any,
        fetch: Callable[[], Awaitable[T]],
    ) -> Optional[T]:
        """Run the local -> distributed -> upstream lookup for one key."""
        distributed_ttl, local_ttl = self._ttls[volatility]
        context = get_log_context(cache_key=key)

        cached = await self.local_cache.get(key)
        if cached is not None:
            logger.debug("Local cache hit", extra=context)
            return cached

        async def producer() -> T:
            await self.quota.await_global_slot()
            try:
                return await fetch()
            except (KeyError, TypeError, ValidationError) as e:
                logger.error(f"Could not map upstream body: {e!r}", extra=context)
                raise SourceTransientError("Upstream returned an unexpected body") from e

        try:
            value = await self.distributed_cache.get_or_set(
                key, producer, distributed_ttl, schema=schema
            )
        except SourceNotFoundError:
            logger.info("Resource not found upstream", extra=context)
            return None

        await self.local_cache.set(key, value, local_ttl)
        return value

    async def get_character(
        self, realm: str, name: str, region: Optional[str] = None
    ) -> Optional[Character]:
        region_ = self._region(region)
        key = CacheKeys.character(region_.value, realm, name)

        async def fetch() -> Character:
            payload = await self.api_client.character(region_.value, realm, name)
            return Character.from_payload(payload, realm=realm, region=region_)

        return await self._fetch(key, VolatilityClass.PROFILE, Character, fetch)

    async def get_guild(
        self, realm: str, name: str, region: Optional[str] = None
    ) -> Optional[Guild]:
        region_ = self._region(region)
        key = CacheKeys.guild(region_.value, realm, name)

        async def fetch() -> Guild:
            payload = await self.api_client.guild(region_.value, realm, name)
            return Guild.from_payload(payload, realm=realm, region=region_)

        return await self._fetch(key, VolatilityClass.PROFILE, Guild, fetch)

    async def get_item(self, item_id: int, region: Optional[str] = None) -> Optional[Item]:
        region_ = self._region(region)
        key = CacheKeys.item(region_.value, item_id)

        async def fetch() -> Item:
            return Item.from_payload(await self.api_client.item(region_.value, item_id))

        return await self._fetch(key, VolatilityClass.STATIC, Item, fetch)

    async def get_achievement(
        self, achievement_id: int, region: Optional[str] = None
    ) -> Optional[Achievement]:
        region_ = self._region(region)
        key = CacheKeys.achievement(region_.value, achievement_id)

        async def fetch() -> Achievement:
            payload = await self.api_client.achievement(region_.value, achievement_id)
            return Achievement.from_payload(payload)

        return await self._fetch(key, VolatilityClass.STATIC, Achievement, fetch)

    async def get_mount(self, mount_id: int, region: Optional[str] = None) -> Optional[Mount]:
        region_ = self._region(region)
        key = CacheKeys.mount(region_.value, mount_id)

        async def fetch() -> Mount:
            return Mount.from_payload(await self.api_client.mount(region_.value, mount_id))

        return await self._fetch(key, VolatilityClass.STATIC, Mount, fetch)

    async def get_realm(self, slug: str, region: Optional[str] = None) -> Optional[Realm]:
        region_ = self._region(region)
        key = CacheKeys.realm(region_.value, slug)

        async def fetch() -> Realm:
            return Realm.from_payload(await self.api_client.realm(region_.value, slug), region_)

        return await self._fetch(key, VolatilityClass.DYNAMIC, Realm, fetch)

    async def get_realms(self, region: Optional[str] = None) -> list[Realm]:
        """All realms of a region, cached as a derived list."""
        region_ = self._region(region)
        key = CacheKeys.realm_index(region_.value)

        async def fetch() -> list[Realm]:
            payload = await self.api_client.realm_index(region_.value)
            return [Realm.from_payload(entry, region_) for entry in payload.get("realms", [])]

        realms = await self._fetch(key, VolatilityClass.SEARCH, list[Realm], fetch)
        return realms or []

    # Administration

    async def invalidate(self, key: str) -> None:
        """Remove one key from both cache tiers."""
        await self.distributed_cache.remove(key)
        await self.local_cache.remove(key)
        logger.info("Invalidated cache entry", extra=get_log_context(cache_key=key))

    async def invalidate_region(
        self,
        region: str,
        namespace: Optional[str] = None,
        category: Optional[str] = None,
    ) -> int:
        """Remove every cached entry of a region (optionally one namespace/category).

        Returns:
            Number of distributed entries removed.
        """
        pattern = CacheKeys.pattern(region, namespace, category)
        removed = await self.distributed_cache.remove_by_prefix(pattern)
        await self.local_cache.remove_by_prefix(pattern.rstrip("*"))
        return removed


_armory_service: Optional[ArmoryService] = None


def get_armory_service() -> ArmoryService:
    """Get the process-wide retrieval service."""
    global _armory_service
    if _armory_service is None:
        _armory_service = ArmoryService()
    return _armory_service


def reset_armory_service() -> None:
    """Reset the global retrieval service instance."""
    global _armory_service
    _armory_service = None
