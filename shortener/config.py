"""Configuration management for the URL shortener application.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    snapshot = settings.SNAPSHOT_PATH

**Step 3 — Build short URLs**::
    short_url = f"{settings.short_url_base}/{short_code}"

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- BASE_URL falls back to http://HOST:PORT when unset.
- Tests construct ``Settings(...)`` directly instead of going through the cache.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    HOST: str = "localhost"
    PORT: int = 3000
    BASE_URL: str | None = None
    LOG_LEVEL: str = "INFO"

    # Snapshot persistence
    SNAPSHOT_PATH: str = "data/urlMappings.json"

    # Short URL config
    SHORT_CODE_LENGTH: int = 10
    MAX_CODE_GENERATION_ATTEMPTS: int = 100
    URL_LIFETIME_DAYS: int = 30
    MAX_URL_LENGTH: int = 2048

    # Push delivery
    DELIVERY_RETRY_INTERVAL_SECONDS: float = 5.0
    DELIVERY_MAX_RETRIES: int = 5

    # Admission guard
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: float = 300.0

    # Expired mapping sweep
    EXPIRY_SWEEP_INTERVAL_SECONDS: float = 3600.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @property
    def short_url_base(self) -> str:
        if self.BASE_URL:
            return self.BASE_URL.rstrip("/")
        return f"http://{self.HOST}:{self.PORT}"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
