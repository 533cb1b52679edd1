"""Configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_limiter_settings() -> "LimiterSettings":
    return LimiterSettings()


def _build_store_settings() -> "StoreSettings":
    return StoreSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class LimiterSettings(BaseSettings):
    """Token bucket parameters shared by every process using the same store."""

    capacity: int = Field(
        10,
        description="Maximum tokens a bucket can hold (burst size)",
        ge=1,
    )
    refill_rate_per_second: float = Field(
        1.0,
        description="Tokens added to a bucket per elapsed second",
        gt=0,
    )
    max_retries: int = Field(
        5,
        description="Optimistic-conflict retries before raising ContentionError",
        ge=1,
    )
    key_prefix: str = Field(
        "rate_limit",
        description="Namespace for state keys: {prefix}:{client_id}:state",
        min_length=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Shared state store selection and connection options."""

    backend: Literal["memory", "redis"] = Field(
        "memory",
        description="State store backend: memory (single process) or redis (shared)",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL used when backend=redis",
    )
    socket_timeout_seconds: float = Field(
        0.5,
        description="Per-operation Redis socket timeout in seconds",
        gt=0,
    )
    state_ttl_seconds: int | None = Field(
        None,
        description="Optional expiry for idle bucket state (seconds)",
        ge=1,
    )
    use_server_time: bool = Field(
        True,
        description="Use the Redis TIME command as the shared clock",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file at this size (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    limiter: LimiterSettings = Field(default_factory=_build_limiter_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance; nested settings are created via default_factory
settings = Settings()
