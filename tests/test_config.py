"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from armory.app.core.config import Settings
from armory.app.exceptions import ConfigurationError


def test_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.global_per_second_limit == 80
    assert settings.global_per_hour_limit == 28800
    assert settings.caller_per_minute_limit == 60
    assert settings.caller_per_hour_limit == 1000
    assert settings.global_slot_max_retries == 10
    assert settings.store_failure_delay_seconds == 0.1
    assert settings.credential_refresh_buffer_seconds == 60
    assert settings.cache_ttl_static == 7 * 24 * 3600


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("GLOBAL_PER_SECOND_LIMIT", "5")
    monkeypatch.setenv("CACHE_TTL_PROFILE", "900")

    settings = Settings(_env_file=None)

    assert settings.global_per_second_limit == 5
    assert settings.cache_ttl_profile == 900


def test_api_base_url_for_region() -> None:
    settings = Settings(_env_file=None, armory_api_base_url="https://{region}.api.example.test")
    assert settings.api_base_url_for(" EU ") == "https://eu.api.example.test"


@pytest.mark.parametrize(
    "field",
    ["global_per_second_limit", "caller_per_minute_limit", "cache_ttl_static", "local_cache_ttl_search"],
)
def test_non_positive_values_rejected(field: str) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: 0})


def test_negative_delay_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, store_failure_delay_seconds=-1)


def test_validate_credentials() -> None:
    with pytest.raises(ConfigurationError):
        Settings(_env_file=None, armory_client_id="", armory_client_secret="s").validate_credentials()
    with pytest.raises(ConfigurationError):
        Settings(_env_file=None, armory_client_id="id", armory_client_secret=" ").validate_credentials()

    Settings(_env_file=None, armory_client_id="id", armory_client_secret="s").validate_credentials()
