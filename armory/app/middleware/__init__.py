"""Middleware package for the armory gateway."""

from armory.app.middleware.rate_limit import RateLimitMiddleware

__all__ = [
    "RateLimitMiddleware",
]
