"""Upstream access token management.

One bearer credential per process, obtained with the OAuth 2.0 client
credentials grant and held in the local cache until shortly before it
expires. The common path reads the cache without taking any lock; only
requests that find the token missing or stale contend for the refresh
lock, and they re-check the cache once they hold it so a single
authentication call serves all of them.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, ValidationError

from armory.app.core.cache import LocalCache, get_local_cache
from armory.app.core.config import Settings, settings as default_settings
from armory.app.core.http_client import get_http_client
from armory.app.core.logging import get_logger
from armory.app.exceptions import CredentialAcquisitionError

logger = get_logger(__name__)

TOKEN_CACHE_KEY = "armory:oauth:token"


class TokenResponse(BaseModel):
    """Body of a successful token endpoint response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: Optional[str] = None


@dataclass
class Credential:
    """An issued bearer token.

    Attributes:
        token: The access token
        token_type: Usually "Bearer"
        expires_in: Lifetime in seconds from issue
        issued_at: Epoch seconds when the token was received
        scope: Granted scopes, if any
    """

    token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    issued_at: float = field(default_factory=time.time)
    scope: Optional[str] = None

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    def remaining_seconds(self, now: Optional[float] = None) -> float:
        """Seconds until real expiry, never negative."""
        now = time.time() if now is None else now
        return max(0.0, self.expires_at - now)

    def is_stale(self, buffer_seconds: float = 60, now: Optional[float] = None) -> bool:
        """True once fewer than buffer_seconds remain before expiry."""
        now = time.time() if now is None else now
        return now >= self.expires_at - buffer_seconds

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.token}"

    @classmethod
    def from_response(cls, response: TokenResponse, issued_at: float) -> "Credential":
        return cls(
            token=response.access_token,
            token_type=response.token_type or "Bearer",
            expires_in=response.expires_in,
            issued_at=issued_at,
            scope=response.scope,
        )


class CredentialManager:
    """Acquires, caches and refreshes the process-wide upstream credential.

    State per process: unset -> acquiring -> valid -> stale -> acquiring ...
    Authentication failures propagate to the caller; retrying is the
    caller's decision.
    """

    def __init__(
        self,
        cache: Optional[LocalCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._http_client = http_client
        self._settings = config or default_settings
        self._clock = clock
        self._refresh_lock = asyncio.Lock()

    def _get_cache(self) -> LocalCache:
        if self._cache is None:
            self._cache = get_local_cache()
        return self._cache

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = get_http_client()
        return self._http_client

    @property
    def buffer_seconds(self) -> int:
        return self._settings.credential_refresh_buffer_seconds

    def _effective_buffer(self, credential: Credential) -> float:
        """Refresh buffer, capped at half the token lifetime."""
        return min(self.buffer_seconds, credential.expires_in / 2)

    async def _cached_credential(self) -> Optional[Credential]:
        credential = await self._get_cache().get(TOKEN_CACHE_KEY)
        if credential is None:
            return None
        if credential.is_stale(self._effective_buffer(credential), now=self._clock()):
            logger.debug("Cached token is expired or about to expire")
            return None
        return credential

    async def get_token(self) -> str:
        """Return a token with at least the safety buffer of lifetime left.

        Raises:
            CredentialAcquisitionError: The token endpoint failed or returned
                an unusable body.
        """
        credential = await self._cached_credential()
        if credential is not None:
            return credential.token

        async with self._refresh_lock:
            # Another task may have refreshed while this one waited
            credential = await self._cached_credential()
            if credential is not None:
                logger.debug("Token was refreshed by another task")
                return credential.token

            credential = await self._request_credential()
            if credential.expires_in <= self.buffer_seconds:
                logger.warning(
                    f"Token lifetime {credential.expires_in}s does not exceed the "
                    f"refresh buffer of {self.buffer_seconds}s, refreshing at half-life"
                )
            ttl = credential.remaining_seconds(now=self._clock())
            if ttl > 0:
                await self._get_cache().set(TOKEN_CACHE_KEY, credential, ttl)
            logger.info(
                f"Obtained new access token, expires in {credential.expires_in}s"
            )
            return credential.token

    async def refresh_token(self) -> str:
        """Drop the cached credential and fetch a new one."""
        logger.info("Forcing access token refresh")
        await self.invalidate()
        return await self.get_token()

    async def invalidate(self) -> None:
        """Forget the cached credential without calling the token endpoint."""
        await self._get_cache().remove(TOKEN_CACHE_KEY)

    async def _request_credential(self) -> Credential:
        """POST the client credentials grant to the token endpoint."""
        url = f"{self._settings.armory_oauth_base_url.rstrip('/')}/token"
        logger.debug("Requesting new access token")
        try:
            response = await self._get_http_client().post(
                url,
                data={"grant_type": "client_credentials"},
                auth=(self._settings.armory_client_id, self._settings.armory_client_secret),
            )
        except httpx.HTTPError as e:
            logger.error(f"HTTP error while requesting access token: {e}")
            raise CredentialAcquisitionError(f"Token request failed: {e}") from e

        if not response.is_success:
            logger.error(
                f"Failed to obtain access token. Status: {response.status_code}, "
                f"Error: {response.text[:200]}"
            )
            raise CredentialAcquisitionError(
                f"Failed to obtain access token. Status: {response.status_code}"
            )

        try:
            body = TokenResponse.model_validate_json(response.content)
        except ValidationError as e:
            logger.error(f"Failed to parse access token response: {e}")
            raise CredentialAcquisitionError("Failed to parse access token response") from e

        if not body.access_token.strip():
            logger.error("Received empty access token")
            raise CredentialAcquisitionError("Received invalid token response")

        return Credential.from_response(body, issued_at=self._clock())


_credential_manager: Optional[CredentialManager] = None


def get_credential_manager(**kwargs: Any) -> CredentialManager:
    """Get the process-wide credential manager."""
    global _credential_manager
    if _credential_manager is None:
        _credential_manager = CredentialManager(**kwargs)
    return _credential_manager


def reset_credential_manager() -> None:
    """Reset the global credential manager instance."""
    global _credential_manager
    _credential_manager = None
