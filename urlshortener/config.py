"""Configuration management for the URL shortener service.

This module provides centralized configuration using Pydantic BaseSettings
with environment variable support and caching.

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
    from urlshortener.config import get_settings

**Step 2 — Read values**::
    settings = get_settings()
    window = settings.RATE_LIMIT_WINDOW_SECONDS

Key Behaviours
===============
- Settings are cached after first access.
- Environment variables (or a ``.env`` file) override defaults.
- Every quota, window, TTL and timeout used by the core is a setting.

Classes:
    Settings:  Pydantic model for all configuration values.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DB_TIMEOUT_SECONDS: float = 5.0

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_TIMEOUT_SECONDS: float = 0.5
    CACHE_TTL_SECONDS: int = 86400

    # Short codes
    SHORT_CODE_LENGTH: int = 7
    SHORT_CODE_FALLBACK_LENGTH: int = 10
    CODE_GENERATION_ATTEMPTS: int = 5
    CODE_INSERT_ATTEMPTS: int = 3

    # Input limits
    MAX_URL_LENGTH: int = 2048
    MIN_EXPIRES_IN_SECONDS: int = 60
    MAX_EXPIRES_IN_SECONDS: int = 31536000

    # Rate limiting (fixed windows)
    RATE_LIMIT_WINDOW_SECONDS: int = 900
    RATE_LIMIT_MAX_REQUESTS: int = 100
    CREATE_LIMIT_WINDOW_SECONDS: int = 900
    CREATE_LIMIT_MAX_REQUESTS: int = 10

    # Abuse tracking
    ABUSE_WINDOW_SECONDS: int = 3600
    ABUSE_THRESHOLD: int = 50
    BLOCK_DURATION_SECONDS: int = 3600
    SUSPICIOUS_URL_PATTERNS: list[str] = [
        r"malware",
        r"phishing",
        r"\.exe$",
        r"\.scr$",
        r"bit\.ly",
        r"tinyurl\.com",
    ]

    # Analytics recorder
    ANALYTICS_QUEUE_SIZE: int = 1000
    ANALYTICS_SHUTDOWN_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
