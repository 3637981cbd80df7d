"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``SAMPARK_`` prefix; infrastructure settings (database,
Redis, JWT) use their canonical environment variable names via
``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the Sampark grievance service.

    Environment variables are loaded from a ``.env`` file when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="SAMPARK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── Database ───────────────────────────────────────────────────────
    database_url: str = Field(default="sqlite+aiosqlite:///./sampark.db", validation_alias="DATABASE_URL")
    database_echo: bool = Field(default=False, validation_alias="SQLALCHEMY_ECHO")
    create_tables_on_startup: bool = True

    # ── Redis ──────────────────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    # Form drafts only; the grievance list cache is never served from process memory
    draft_cache_inmemory_fallback: bool = True

    # ── Auth ───────────────────────────────────────────────────────────
    jwt_secret: str = Field(default="change-me", validation_alias="JWT_SECRET")
    jwt_algorithm: str = "HS256"
    jwt_cookie_name: str = "token"
    jwt_expiry_days: int = 7

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=3000, validation_alias="API_PORT")
    cors_origins: str = Field(default="http://localhost:8080", validation_alias="FRONTEND_URL")

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Grievance lifecycle ────────────────────────────────────────────
    tracking_code_max_attempts: int = Field(default=20, ge=1)
    admin_max_page_size: int = Field(default=100, ge=1)

    # ── Cache TTLs (seconds) ───────────────────────────────────────────
    grievance_list_cache_ttl: int = 86_400  # 24 hours
    draft_form_cache_ttl: int = 86_400  # 24 hours

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def async_database_url(self) -> str:
        """Database URL rewritten to an async driver where needed."""
        url = self.database_url
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
