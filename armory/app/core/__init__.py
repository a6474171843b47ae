"""Core utilities for the armory gateway."""

from armory.app.core.cache import LocalCache, get_local_cache, reset_local_cache
from armory.app.core.config import settings
from armory.app.core.logging import get_logger, setup_logging

__all__ = [
    "LocalCache",
    "get_local_cache",
    "reset_local_cache",
    "settings",
    "get_logger",
    "setup_logging",
]
