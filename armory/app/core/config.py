from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from armory.app.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Upstream API credentials (client credentials grant)
    armory_client_id: str = ""
    armory_client_secret: str = ""
    armory_default_region: str = "us"
    armory_oauth_base_url: str = "https://oauth.battle.net"
    armory_api_base_url: str = "https://{region}.api.blizzard.com"
    armory_locale: str = "en_US"

    # Global ceilings: 80% of the upstream 100 req/sec and 36,000 req/hour
    global_per_second_limit: int = 80
    global_per_hour_limit: int = 28800

    # Per-caller ceilings
    caller_per_minute_limit: int = 60
    caller_per_hour_limit: int = 1000

    # Global slot acquisition
    global_slot_max_retries: int = 10
    global_slot_retry_delay_seconds: float = 1.0
    global_hour_wait_margin_seconds: float = 1.0
    store_failure_delay_seconds: float = 0.1  # Fail-open delay when Redis is down

    # Distributed cache TTLs (seconds) per volatility class
    cache_ttl_static: int = 7 * 24 * 3600
    cache_ttl_profile: int = 30 * 60
    cache_ttl_dynamic: int = 10 * 60
    cache_ttl_search: int = 20 * 60

    # Local cache TTLs (seconds) per volatility class
    local_cache_ttl_static: int = 5 * 60
    local_cache_ttl_profile: int = 2 * 60
    local_cache_ttl_dynamic: int = 60
    local_cache_ttl_search: int = 2 * 60

    # Credentials are refreshed this many seconds before they really expire
    credential_refresh_buffer_seconds: int = 60

    # Redis settings
    redis_url: str = "redis://localhost:6379/0"

    # HTTP Client connection pool settings
    httpx_timeout: float = 30.0  # Default timeout for all operations
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 30.0  # Time to read response data
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    def api_base_url_for(self, region: str) -> str:
        """Build the API base URL for a region (us, eu, kr, tw, cn)."""
        return self.armory_api_base_url.replace("{region}", region.strip().lower())

    def validate_credentials(self) -> None:
        """Ensure the upstream client credentials are configured.

        Raises:
            ConfigurationError: If client id, secret or default region is blank.
        """
        if not self.armory_client_id.strip():
            raise ConfigurationError("ARMORY_CLIENT_ID is not configured")
        if not self.armory_client_secret.strip():
            raise ConfigurationError("ARMORY_CLIENT_SECRET is not configured")
        if not self.armory_default_region.strip():
            raise ConfigurationError("ARMORY_DEFAULT_REGION is not configured")

    @field_validator(
        "global_per_second_limit",
        "global_per_hour_limit",
        "caller_per_minute_limit",
        "caller_per_hour_limit",
        "global_slot_max_retries",
    )
    @classmethod
    def validate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator(
        "cache_ttl_static",
        "cache_ttl_profile",
        "cache_ttl_dynamic",
        "cache_ttl_search",
        "local_cache_ttl_static",
        "local_cache_ttl_profile",
        "local_cache_ttl_dynamic",
        "local_cache_ttl_search",
    )
    @classmethod
    def validate_ttl_positive(cls, v: int) -> int:
        """Validate cache TTLs are positive."""
        if v < 1:
            raise ValueError("Cache TTL values must be at least 1 second")
        return v

    @field_validator(
        "global_slot_retry_delay_seconds",
        "global_hour_wait_margin_seconds",
        "store_failure_delay_seconds",
        "credential_refresh_buffer_seconds",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Validate delays and buffers are not negative."""
        if v < 0:
            raise ValueError("Delay and buffer values must not be negative")
        return v

    @field_validator("httpx_timeout", "httpx_connect_timeout", "httpx_read_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
