"""Environment-driven configuration objects for the service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta

from dotenv import load_dotenv

from locallink.core.exceptions import ConfigurationException

STORE_BACKENDS = ("memory", "redis")


def _str_to_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"true", "1", "yes", "y"}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationException(f"{name} must be an integer, got {raw!r}") from e


@dataclass(slots=True)
class AssistantConfig:
    api_key: str | None
    model: str
    base_url: str
    timeout: float

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass(slots=True)
class TownHubConfig:
    actor_id: str = "town-hub"
    name: str = "Town Hub"


@dataclass(slots=True)
class Settings:
    store_backend: str = "memory"
    redis_url: str | None = None
    key_prefix: str = "locallink"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    dead_lead_minutes: int = 10
    daily_update_ttl_hours: int = 24
    recovery_interval_seconds: int = 30
    recovery_stale_seconds: int = 15
    sentry_environment: str = "production"
    debug: bool = False
    town_hub: TownHubConfig = field(default_factory=TownHubConfig)
    assistant: AssistantConfig = field(
        default_factory=lambda: AssistantConfig(
            api_key=None,
            model="gemini-2.0-flash",
            base_url="https://generativelanguage.googleapis.com/v1beta",
            timeout=30.0,
        )
    )

    @property
    def dead_lead_grace(self) -> timedelta:
        return timedelta(minutes=self.dead_lead_minutes)

    @property
    def daily_update_ttl(self) -> timedelta:
        return timedelta(hours=self.daily_update_ttl_hours)

    @property
    def recovery_stale_after(self) -> timedelta:
        return timedelta(seconds=self.recovery_stale_seconds)


def load_settings() -> Settings:
    """Load environment variables once and expose typed settings."""
    load_dotenv()

    store_backend = os.getenv("LOCALLINK_STORE", "memory").strip().lower()
    if store_backend not in STORE_BACKENDS:
        raise ConfigurationException(
            f"LOCALLINK_STORE must be one of {', '.join(STORE_BACKENDS)}, got {store_backend!r}"
        )

    redis_url = os.getenv("REDIS_URL") or None
    if store_backend == "redis" and not redis_url:
        raise ConfigurationException("LOCALLINK_STORE=redis requires REDIS_URL")

    # API_KEY is the name the hosted assistant proxy used
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or None

    assistant = AssistantConfig(
        api_key=api_key,
        model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        base_url=os.getenv(
            "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
        ).rstrip("/"),
        timeout=float(_int_env("ASSISTANT_TIMEOUT", 30)),
    )

    town_hub = TownHubConfig(
        actor_id=os.getenv("TOWN_HUB_ID", "town-hub"),
        name=os.getenv("TOWN_HUB_NAME", "Town Hub"),
    )

    return Settings(
        store_backend=store_backend,
        redis_url=redis_url,
        key_prefix=os.getenv("LOCALLINK_KEY_PREFIX", "locallink"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_int_env("PORT", 8080),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        dead_lead_minutes=_int_env("DEAD_LEAD_MINUTES", 10),
        daily_update_ttl_hours=_int_env("DAILY_UPDATE_TTL_HOURS", 24),
        recovery_interval_seconds=_int_env("RECOVERY_INTERVAL_SECONDS", 30),
        recovery_stale_seconds=_int_env("RECOVERY_STALE_SECONDS", 15),
        sentry_environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
        debug=_str_to_bool(os.getenv("DEBUG")),
        town_hub=town_hub,
        assistant=assistant,
    )
