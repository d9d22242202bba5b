"""
Configuration settings for the coursenav client.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COURSENAV_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Curriculum Service
    # ========================================
    api_base_url: str = Field(
        default="http://localhost:8000/api",
        description="Base URL of the remote curriculum service",
    )
    api_token: str | None = Field(
        default=None,
        description="Bearer credential supplied by the session layer",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Per-request timeout",
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per request on timeouts, connection errors and 5xx",
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay for exponential backoff (1x, 2x, 4x ...)",
    )

    # ========================================
    # Course Cache
    # ========================================
    cache_ttl_seconds: float = Field(
        default=120.0,  # 2 minutes
        gt=0.0,
        description="Freshness window for assembled course trees",
    )
    revalidate_fresh: bool = Field(
        default=False,
        description="Refresh in the background even when the cached tree is fresh",
    )

    # ========================================
    # Loading & Progress
    # ========================================
    fanout_concurrency: int = Field(
        default=8,
        ge=1,
        description="Maximum parallel per-task requests while assembling a course",
    )
    auto_complete_enrollment: bool = Field(
        default=True,
        description="Mark the enrollment completed when progress reaches 100%",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(
        default="INFO",
        description="Loguru level for the CLI sink",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
