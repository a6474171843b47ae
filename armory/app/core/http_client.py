"""Shared HTTP client for the authentication and game-data endpoints.

One pooled client per process; it is opened in the application lifespan
and reused by the credential manager and the source client.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx

from armory.app.core.config import settings

_shared_http_client: httpx.AsyncClient | None = None


def _build_timeout(**overrides: Any) -> httpx.Timeout:
    if overrides.get("timeout") is not None:
        return httpx.Timeout(overrides["timeout"])
    return httpx.Timeout(
        connect=overrides.get("connect_timeout", settings.httpx_connect_timeout),
        read=overrides.get("read_timeout", settings.httpx_read_timeout),
        write=overrides.get("write_timeout", settings.httpx_write_timeout),
        pool=overrides.get("pool_timeout", settings.httpx_pool_timeout),
    )


def _build_limits(**overrides: Any) -> httpx.Limits:
    return httpx.Limits(
        max_connections=overrides.get("max_connections", settings.httpx_max_connections),
        max_keepalive_connections=overrides.get(
            "max_keepalive_connections", settings.httpx_max_keepalive_connections
        ),
        keepalive_expiry=overrides.get("keepalive_expiry", settings.httpx_keepalive_expiry),
    )


def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client, creating it lazily outside a lifespan."""
    global _shared_http_client
    if _shared_http_client is None or _shared_http_client.is_closed:
        _shared_http_client = create_http_client()
    return _shared_http_client


@asynccontextmanager
async def init_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Open the shared HTTP client for the lifetime of the application.

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client():
                yield
    """
    global _shared_http_client
    _shared_http_client = create_http_client()
    try:
        yield _shared_http_client
    finally:
        if _shared_http_client is not None:
            await _shared_http_client.aclose()
            _shared_http_client = None


def create_http_client(**overrides: Any) -> httpx.AsyncClient:
    """Create a new HTTP client with the configured pool and timeouts.

    Keyword overrides: timeout, connect_timeout, read_timeout, write_timeout,
    pool_timeout, max_connections, max_keepalive_connections, keepalive_expiry.
    The caller owns the returned client and must close it.
    """
    return httpx.AsyncClient(
        timeout=_build_timeout(**overrides),
        limits=_build_limits(**overrides),
    )
