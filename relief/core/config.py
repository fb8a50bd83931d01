"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development. Components take
explicit constructor arguments and only fall back to these values.

Usage:
    from relief.core.config import settings
    print(settings.RATE_LIMIT_WINDOW_MS)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Relief Sync Platform"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Sync client ──
    API_BASE_URL: str = "http://localhost:8000/api"
    API_TIMEOUT_SECONDS: float = 10.0
    LOCAL_DB_URL: str = "sqlite+aiosqlite:///relief_local.db"
    SYNC_MAX_RETRIES: int = 3  # drain retries before an action is dropped
    PULL_RETRY_ATTEMPTS: int = 3
    PULL_RETRY_BACKOFF_SECONDS: float = 1.0
    DEFAULT_CONFLICT_STRATEGY: str = "serverWins"  # serverWins | localWins | merge
    CONNECTIVITY_PROBE_INTERVAL_SECONDS: float = 15.0

    # ── Rate limiting ──
    RATE_LIMIT_WINDOW_MS: int = 900_000  # 15 minutes
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS: float = 60.0
    RATE_LIMIT_AUTH: int = 20
    RATE_LIMIT_REPORTS: int = 50
    RATE_LIMIT_ALERTS: int = 100
    RATE_LIMIT_DEFAULT: int = 200

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def rate_limits(self) -> Dict[str, int]:
        """Per-route-class request ceilings."""
        return {
            "auth": self.RATE_LIMIT_AUTH,
            "reports": self.RATE_LIMIT_REPORTS,
            "alerts": self.RATE_LIMIT_ALERTS,
            "default": self.RATE_LIMIT_DEFAULT,
        }


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
