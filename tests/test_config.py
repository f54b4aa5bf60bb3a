"""Tests for environment-driven settings."""
from __future__ import annotations

from datetime import timedelta

import pytest

from locallink.core.config import Settings, load_settings
from locallink.core.exceptions import ConfigurationException

_ENV_VARS = (
    "LOCALLINK_STORE",
    "REDIS_URL",
    "GEMINI_API_KEY",
    "API_KEY",
    "PORT",
    "DEAD_LEAD_MINUTES",
    "DEBUG",
    "TOWN_HUB_ID",
    "GEMINI_BASE_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # a developer .env file must not leak into the assertions
    monkeypatch.setattr("locallink.core.config.load_dotenv", lambda: False)


def test_defaults():
    settings = load_settings()
    assert settings.store_backend == "memory"
    assert settings.port == 8080
    assert settings.dead_lead_grace == timedelta(minutes=10)
    assert settings.daily_update_ttl == timedelta(hours=24)
    assert settings.town_hub.actor_id == "town-hub"
    assert not settings.assistant.enabled
    assert not settings.debug


def test_overrides(monkeypatch):
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("DEAD_LEAD_MINUTES", "5")
    monkeypatch.setenv("DEBUG", "yes")
    monkeypatch.setenv("TOWN_HUB_ID", "hub-pune")
    monkeypatch.setenv("GEMINI_BASE_URL", "http://localhost:9999/v1/")

    settings = load_settings()

    assert settings.port == 9000
    assert settings.dead_lead_grace == timedelta(minutes=5)
    assert settings.debug
    assert settings.town_hub.actor_id == "hub-pune"
    assert settings.assistant.base_url == "http://localhost:9999/v1"


def test_legacy_api_key_name(monkeypatch):
    monkeypatch.setenv("API_KEY", "secret")
    assert load_settings().assistant.api_key == "secret"
    monkeypatch.setenv("GEMINI_API_KEY", "preferred")
    assert load_settings().assistant.api_key == "preferred"


def test_redis_backend_needs_url(monkeypatch):
    monkeypatch.setenv("LOCALLINK_STORE", "redis")
    with pytest.raises(ConfigurationException):
        load_settings()
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    assert load_settings().store_backend == "redis"


def test_unknown_backend(monkeypatch):
    monkeypatch.setenv("LOCALLINK_STORE", "postgres")
    with pytest.raises(ConfigurationException):
        load_settings()


def test_bad_integer(monkeypatch):
    monkeypatch.setenv("PORT", "eighty")
    with pytest.raises(ConfigurationException):
        load_settings()


def test_settings_dataclass_defaults():
    settings = Settings()
    assert settings.recovery_stale_after == timedelta(seconds=15)
    assert settings.assistant.model == "gemini-2.0-flash"
