"""Per-caller admission middleware.

Counts every request against the caller's minute and hour budgets in the
shared quota store and rejects over-budget callers with 429. When the
store is unavailable requests are let through.
"""

import hashlib
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from armory.app.core.logging import get_log_context, get_logger
from armory.app.services.quota import QuotaCoordinator, get_quota_coordinator

logger = get_logger(__name__)

RETRY_AFTER_SECONDS = 60
MAX_TOKEN_LENGTH = 512


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Enforce per-caller request budgets.

    Callers are identified by a hash of their bearer token when one is
    sent, otherwise by client IP address.
    """

    def __init__(
        self,
        app,
        quota: Optional[QuotaCoordinator] = None,
        exempt_paths: tuple[str, ...] = ("/health",),
    ):
        super().__init__(app)
        self._quota = quota
        self.exempt_paths = exempt_paths

    @property
    def quota(self) -> QuotaCoordinator:
        if self._quota is None:
            self._quota = get_quota_coordinator()
        return self._quota

    @staticmethod
    def get_caller_id(request: Request) -> str:
        """Caller identity for rate limiting; never contains a raw token.

        Tokens are reduced to the first 32 hex chars of their SHA-256.
        """
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            token = auth[7:].strip()[:MAX_TOKEN_LENGTH]
            if token:
                return f"token:{hashlib.sha256(token.encode()).hexdigest()[:32]}"

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def _is_exempt(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix.rstrip("/") + "/")
            for prefix in self.exempt_paths
        )

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if self._is_exempt(request.url.path):
            return await call_next(request)

        caller_id = self.get_caller_id(request)
        quota = self.quota

        if not await quota.admit_caller(caller_id):
            logger.info(
                "Rejected request over caller budget",
                extra=get_log_context(
                    caller_id=caller_id, path=request.url.path, method=request.method
                ),
            )
            return JSONResponse(
                status_code=429,
                content={
                    "type": "about:blank",
                    "title": "Too Many Requests",
                    "status": 429,
                    "detail": (
                        "Rate limit exceeded. "
                        f"Please try again in {RETRY_AFTER_SECONDS} seconds."
                    ),
                },
                media_type="application/problem+json",
                headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            )

        response = await call_next(request)

        stats = await quota.stats(caller_id)
        response.headers["X-RateLimit-Limit-Minute"] = str(stats.caller_minute_limit)
        response.headers["X-RateLimit-Limit-Hour"] = str(stats.caller_hour_limit)
        response.headers["X-RateLimit-Used-Minute"] = str(stats.caller_minute_used or 0)
        response.headers["X-RateLimit-Used-Hour"] = str(stats.caller_hour_used or 0)
        return response
