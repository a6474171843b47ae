"""HTTP client for the upstream game data API.

Every request carries the process-wide bearer token and the
``namespace``/``locale`` query parameters the API requires. Responses are
branched on status code only; payload semantics belong to the models.
"""

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from armory.app.core.config import Settings, settings as default_settings
from armory.app.core.http_client import get_http_client
from armory.app.core.logging import get_log_context, get_logger
from armory.app.exceptions import (
    SourceNotFoundError,
    SourceRateLimitedError,
    SourceTransientError,
)
from armory.app.services.cache_keys import CacheKeys, normalize_slug
from armory.app.services.credentials import CredentialManager, get_credential_manager
from armory.app.services.quota import QuotaCoordinator, get_quota_coordinator

logger = get_logger(__name__)

STATIC = "static"
DYNAMIC = "dynamic"
PROFILE = "profile"


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        return None


class ArmoryApiClient:
    """Thin wrapper over the shared httpx client for game data endpoints.

    A 401 answer triggers exactly one credential refresh and one repeat of
    the request. The repeat is a second upstream call, so it waits for its
    own global quota slot. Nothing else is retried here.
    """

    def __init__(
        self,
        credentials: Optional[CredentialManager] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
        quota: Optional[QuotaCoordinator] = None,
    ) -> None:
        self._credentials = credentials
        self._http_client = http_client
        self._settings = config or default_settings
        self._quota = quota

    def _get_credentials(self) -> CredentialManager:
        if self._credentials is None:
            self._credentials = get_credential_manager()
        return self._credentials

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = get_http_client()
        return self._http_client

    def _get_quota(self) -> QuotaCoordinator:
        if self._quota is None:
            self._quota = get_quota_coordinator()
        return self._quota

    def _url(self, region: str, path: str) -> str:
        return f"{self._settings.api_base_url_for(region).rstrip('/')}{path}"

    def _params(self, kind: str, region: str) -> Dict[str, str]:
        return {
            "namespace": CacheKeys.upstream_namespace(kind, region),
            "locale": self._settings.armory_locale,
        }

    async def _send(self, url: str, params: Dict[str, str], token: str) -> httpx.Response:
        try:
            return await self._get_http_client().get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling {url}: {e}")
            raise SourceTransientError(f"Upstream request failed: {e}") from e

    async def get_json(self, region: str, path: str, kind: str) -> Dict[str, Any]:
        """GET a resource and return its JSON body.

        Args:
            region: Region code, selects the API host and namespace suffix.
            path: Path below the API base URL.
            kind: Upstream namespace type (static, dynamic or profile).

        Raises:
            SourceNotFoundError: The resource does not exist (404).
            SourceRateLimitedError: The upstream answered 429.
            SourceTransientError: Network errors, other statuses, bad bodies.
            CredentialAcquisitionError: A token could not be obtained.
            QuotaSaturationError: No global slot for the repeat after a 401.
        """
        url = self._url(region, path)
        params = self._params(kind, region)
        context = get_log_context(region=region, path=path)

        credentials = self._get_credentials()
        response = await self._send(url, params, await credentials.get_token())

        if response.status_code == 401:
            logger.warning("Upstream rejected access token, refreshing once", extra=context)
            token = await credentials.refresh_token()
            await self._get_quota().await_global_slot()
            response = await self._send(url, params, token)
            if response.status_code == 401:
                raise SourceTransientError(
                    "Upstream rejected a freshly issued access token", status=401
                )

        if response.status_code == 404:
            logger.debug("Upstream resource not found", extra=context)
            raise SourceNotFoundError(f"Resource not found: {path}")

        if response.status_code == 429:
            retry_after = _retry_after(response)
            logger.warning(
                f"Upstream rate limit reached, retry after {retry_after}", extra=context
            )
            raise SourceRateLimitedError(retry_after=retry_after)

        if not response.is_success:
            logger.error(
                f"Upstream error. Status: {response.status_code}, "
                f"Error: {response.text[:200]}",
                extra=context,
            )
            raise SourceTransientError(
                f"Upstream returned status {response.status_code}",
                status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Upstream returned a non-JSON body: {e}", extra=context)
            raise SourceTransientError(
                "Upstream returned a non-JSON body", status=response.status_code
            ) from e

        if not isinstance(body, dict):
            raise SourceTransientError(
                "Upstream returned an unexpected body", status=response.status_code
            )
        return body

    async def character(self, region: str, realm: str, name: str) -> Dict[str, Any]:
        path = f"/profile/wow/character/{normalize_slug(realm)}/{quote(name.strip().lower(), safe='')}"
        return await self.get_json(region, path, PROFILE)

    async def guild(self, region: str, realm: str, name: str) -> Dict[str, Any]:
        guild_slug = quote(name.strip().lower().replace(" ", "-"), safe="")
        path = f"/data/wow/guild/{normalize_slug(realm)}/{guild_slug}"
        return await self.get_json(region, path, PROFILE)

    async def item(self, region: str, item_id: int) -> Dict[str, Any]:
        return await self.get_json(region, f"/data/wow/item/{item_id}", STATIC)

    async def achievement(self, region: str, achievement_id: int) -> Dict[str, Any]:
        return await self.get_json(region, f"/data/wow/achievement/{achievement_id}", STATIC)

    async def mount(self, region: str, mount_id: int) -> Dict[str, Any]:
        return await self.get_json(region, f"/data/wow/mount/{mount_id}", STATIC)

    async def realm(self, region: str, slug: str) -> Dict[str, Any]:
        return await self.get_json(region, f"/data/wow/realm/{normalize_slug(slug)}", DYNAMIC)

    async def realm_index(self, region: str) -> Dict[str, Any]:
        return await self.get_json(region, "/data/wow/realm/index", DYNAMIC)


_api_client: Optional[ArmoryApiClient] = None


def get_api_client() -> ArmoryApiClient:
    """Get the process-wide upstream API client."""
    global _api_client
    if _api_client is None:
        _api_client = ArmoryApiClient()
    return _api_client


def reset_api_client() -> None:
    """Reset the global API client instance."""
    global _api_client
    _api_client = None
