"""Services package for the armory gateway.

This package provides:
- Quota coordination across processes (per-caller and global budgets)
- Distributed cache and cache key construction
- Upstream credential management and API client
- The retrieval service that ties the tiers together
"""

from armory.app.services.armory import (
    ArmoryService,
    get_armory_service,
    reset_armory_service,
)
from armory.app.services.cache_keys import CacheKeys, VolatilityClass
from armory.app.services.credentials import (
    Credential,
    CredentialManager,
    get_credential_manager,
    reset_credential_manager,
)
from armory.app.services.distributed_cache import (
    DistributedCache,
    get_distributed_cache,
    reset_distributed_cache,
)
from armory.app.services.quota import (
    QuotaCoordinator,
    RateLimitStats,
    get_quota_coordinator,
    reset_quota_coordinator,
)
from armory.app.services.source_client import (
    ArmoryApiClient,
    get_api_client,
    reset_api_client,
)

__all__ = [
    # Retrieval
    "ArmoryService",
    "get_armory_service",
    "reset_armory_service",
    # Cache
    "CacheKeys",
    "VolatilityClass",
    "DistributedCache",
    "get_distributed_cache",
    "reset_distributed_cache",
    # Credentials
    "Credential",
    "CredentialManager",
    "get_credential_manager",
    "reset_credential_manager",
    # Quota
    "QuotaCoordinator",
    "RateLimitStats",
    "get_quota_coordinator",
    "reset_quota_coordinator",
    # Upstream
    "ArmoryApiClient",
    "get_api_client",
    "reset_api_client",
]
