"""
Application configuration using pydantic-settings.

Centralizes all environment variables and application settings.
Validates configuration at startup to fail fast on misconfiguration.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_VERSION = "1.0.0"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via .env file or environment variables.
    Environment variables take precedence over .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Application
    # ===================
    app_name: str = Field(
        default="SchemaForge", description="Application name for logging and identification"
    )
    debug: bool = Field(default=False, description="Enable debug mode (console logging, docs)")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    # ===================
    # Authentication
    # ===================
    jwt_secret: str = Field(
        ...,  # Required
        min_length=32,
        description="Secret used to sign and verify user access tokens (min 32 chars)",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_expiration_minutes: int = Field(
        default=60 * 24 * 7, ge=1, description="Lifetime of tokens minted by the CLI"
    )
    admin_api_key: str | None = Field(
        default=None,
        min_length=32,
        description="X-API-Key for admin endpoints (bulk cleanup). Disabled when unset",
    )

    # ===================
    # Database
    # ===================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./schemaforge.db", description="SQLAlchemy async database URL"
    )

    # ===================
    # Bulk Processing
    # ===================
    bulk_max_urls_per_job: int = Field(default=100, ge=1, description="Hard cap on URLs per job")
    bulk_max_active_jobs_per_user: int = Field(
        default=3, ge=1, description="Pending/processing jobs allowed per user"
    )
    bulk_max_concurrent_jobs: int = Field(
        default=5, ge=1, description="Jobs allowed to process at the same time, system-wide"
    )
    bulk_job_retention_days: int = Field(
        default=7, ge=1, description="Age after which finished jobs are purged"
    )

    # ===================
    # Autosave
    # ===================
    autosave_stale_hours: int = Field(
        default=24, ge=1, description="Age after which an autosave can no longer be recovered"
    )
    draft_history_limit: int = Field(
        default=50, ge=1, description="Maximum number of draft versions kept per project"
    )
    maintenance_interval: int = Field(
        default=3600, ge=10, description="Seconds between stale-autosave and job retention sweeps"
    )

    # ===================
    # External APIs
    # ===================
    scrape_api_url: str = Field(
        default="https://api.firecrawl.dev/v1", description="Base URL of the web scraping API"
    )
    scrape_api_key: str | None = Field(default=None, description="Scraping API key")
    ai_api_url: str = Field(
        default="https://api.deepseek.com/v1",
        description="Base URL of an OpenAI-compatible chat completion API",
    )
    ai_api_key: str | None = Field(default=None, description="AI provider API key")
    ai_model: str = Field(default="deepseek-chat", description="Model used for schema generation")
    external_timeout: int = Field(
        default=60, ge=5, le=300, description="Read timeout in seconds for external API calls"
    )
    external_max_retries: int = Field(
        default=3, ge=1, le=10, description="Maximum attempts for rate-limited external calls"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str) -> str:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def admin_enabled(self) -> bool:
        """Admin endpoints are only reachable when an admin key is configured."""
        return self.admin_api_key is not None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for performance.

    Returns:
        Settings: Validated application settings

    Raises:
        ValidationError: If required settings are missing or invalid
    """
    return Settings()
