"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
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


DEFAULT_WINDOWS: dict[str, dict[str, int]] = {
    "anti_spam": {"limit": 1, "window_ms": 2_000},
    "burst": {"limit": 5, "window_ms": 60_000},
    "quota": {"limit": 10, "window_ms": 86_400_000},
    "bootstrap": {"limit": 20, "window_ms": 86_400_000},
}

DEFAULT_TRUST_POLICIES: dict[str, dict[str, Any]] = {
    "NEW": {
        "daily_message_limit": 10,
        "windows": {
            "anti_spam": {"limit": 1, "window_ms": 2_000},
            "burst": {"limit": 5, "window_ms": 60_000},
            "quota": {"limit": 10, "window_ms": 86_400_000},
        },
    },
    "LOW": {
        "daily_message_limit": 5,
        "windows": {
            "anti_spam": {"limit": 1, "window_ms": 5_000},
            "burst": {"limit": 3, "window_ms": 60_000},
            "quota": {"limit": 5, "window_ms": 86_400_000},
        },
    },
    "AUTHENTICATED": {
        "daily_message_limit": 1000,
        "windows": {
            "anti_spam": {"limit": 10, "window_ms": 2_000},
            "burst": {"limit": 60, "window_ms": 60_000},
            "quota": {"limit": 1000, "window_ms": 86_400_000},
        },
    },
    "NONE": {
        "daily_message_limit": 0,
        "windows": {},
    },
}


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(0, description="Rotate the log file after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Shared ephemeral store configuration.

    The memory backend is per-process only and is meant for local
    development and tests; deployments with more than one worker must use
    Redis so that every worker observes the same counters.
    """

    backend: str = Field(
        "memory",
        description="Store backend: memory or redis",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    socket_timeout_seconds: float = Field(
        2.0,
        description="Redis socket and connect timeout in seconds",
        gt=0,
    )
    key_prefix: str = Field(
        "",
        description="Optional prefix prepended to every key owned by the service",
    )
    merge_max_retries: int = Field(
        5,
        description="Optimistic retry budget for cross-key session merges",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class SessionSettings(BaseSettings):
    """Anonymous session configuration."""

    ttl_seconds: int = Field(
        86_400,
        description="Fixed session lifetime (quota period) in seconds",
        ge=1,
    )
    header_name: str = Field(
        "X-Session-ID",
        description="Header carrying the client's anonymous session id",
    )
    cookie_name: str = Field(
        "anon_session_id",
        description="Cookie carrying the client's anonymous session id",
    )
    hash_salt: str = Field(
        "",
        description="Salt mixed into IP and user agent hashes",
    )

    model_config = SettingsConfigDict(
        env_prefix="SESSION_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Sliding-window limiter and trust policy configuration."""

    enabled: bool = Field(
        True,
        description="Enable sliding-window rate limiting for anonymous traffic",
    )
    fail_open: bool = Field(
        True,
        description="Allow requests when the shared store is unreachable",
    )
    quota_fail_open: bool = Field(
        True,
        description="Admit messages when the quota cannot be verified",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    windows: dict[str, dict[str, int]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_WINDOWS.items()},
        description="Named window table: {name: {limit, window_ms}}",
    )
    trust_policies: dict[str, dict[str, Any]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_TRUST_POLICIES.items()},
        description="Per trust level window overrides and daily message limits",
    )
    max_sessions_per_ip: int = Field(
        5,
        description="Sessions bootstrapped from one IP in the bootstrap window before trust drops to LOW",
        ge=1,
    )
    require_user_agent: bool = Field(
        False,
        description="Downgrade clients without a User-Agent header to LOW trust",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required for admin endpoints",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )
    trusted_user_header: str | None = Field(
        None,
        description=(
            "Header set by the upstream identity provider for authenticated users. "
            "Leave unset unless a trusted proxy strips it from client requests."
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


def _build_log_settings() -> LogSettings:
    return LogSettings()  # type: ignore[call-arg]


def _build_store_settings() -> StoreSettings:
    return StoreSettings()  # type: ignore[call-arg]


def _build_session_settings() -> SessionSettings:
    return SessionSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_app_settings() -> AppSettings:
    return AppSettings()  # type: ignore[call-arg]


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting is malformed.
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=_build_log_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    session: SessionSettings = Field(default_factory=_build_session_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
