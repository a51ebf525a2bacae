"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
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

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_QUOTA_EXCEEDED_MESSAGE = (
    "HTTP request quota exceeded! maximum admitted {limit} per {period}"
)


def check_message_template(template: str) -> str:
    """Ensure a rejection message template formats with ``limit`` and ``period``.

    Raises:
        ValueError: If the template uses positional fields, unknown names or
            unbalanced braces.
    """
    try:
        template.format(limit=1, period="second")
    except (AttributeError, KeyError, IndexError, ValueError) as exc:
        raise ValueError(
            "quota_exceeded_message may only use {limit} and {period}; "
            f"escape literal braces as {{{{ and }}}} ({exc!r})"
        ) from exc
    return template


def _build_throttle_settings() -> "ThrottleSettings":
    """Build throttle settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    Static type checkers treat fields as constructor arguments, which is not
    how BaseSettings is intended to be used.
    """

    return ThrottleSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build log settings from environment.

    See _build_throttle_settings() for rationale about the type ignore.
    """

    return LogSettings()  # type: ignore[call-arg]


class ThrottleSettings(BaseSettings):
    """Request throttling configuration.

    When ``policy_file`` is set the policy is loaded from that JSON file and
    the per-period fields below are ignored.
    """

    enabled: bool = Field(
        True,
        description="Enable request throttling for the HTTP integration",
    )
    policy_file: str | None = Field(
        None,
        description="Path to a JSON throttle policy file",
    )

    per_second: int | None = Field(None, description="Base limit per second", ge=1)
    per_minute: int | None = Field(60, description="Base limit per minute", ge=1)
    per_hour: int | None = Field(1000, description="Base limit per hour", ge=1)
    per_day: int | None = Field(None, description="Base limit per day", ge=1)
    per_week: int | None = Field(None, description="Base limit per week", ge=1)

    ip_throttling: bool = Field(True, description="Partition counters by client IP")
    client_throttling: bool = Field(
        False,
        description="Partition counters by client identity (auth/anon)",
    )
    endpoint_throttling: bool = Field(True, description="Partition counters by endpoint")
    user_agent_throttling: bool = Field(
        False,
        description="Partition counters by User-Agent header",
    )
    stack_blocked_requests: bool = Field(
        False,
        description="Evaluate periods longest-first so rejected requests count against long windows",
    )

    status_code: int = Field(
        429,
        description="HTTP status code returned when a request is throttled",
        ge=400,
        le=599,
    )
    quota_exceeded_message: str = Field(
        DEFAULT_QUOTA_EXCEEDED_MESSAGE,
        description="Message template; {limit} and {period} are substituted",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers when throttling (Retry-After is always sent)",
    )
    forwarded_ip_strategy: Literal["none", "last", "first"] = Field(
        "none",
        description=(
            "How to read X-Forwarded-For: ignore it, take the last public IP "
            "(load balancers) or the first public IP (nginx)"
        ),
    )

    store_max_entries: int | None = Field(
        100_000,
        description="Capacity bound for the in-memory counter store (None for unbounded)",
        ge=1,
    )
    store_lock_stripes: int = Field(
        64,
        description="Number of lock stripes guarding counter transactions",
        ge=1,
    )
    fail_open: bool = Field(
        False,
        description="Allow requests when the counter store fails instead of returning 503",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated API keys identifying authenticated clients",
    )
    log_sink_max_entries: int = Field(
        1000,
        description="Number of recent blocked-request entries kept in memory",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="THROTTLE_",
        case_sensitive=False,
    )

    @field_validator("quota_exceeded_message")
    @classmethod
    def _validate_message_template(cls, value: str) -> str:
        return check_message_template(value)


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log output format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    throttle: ThrottleSettings = Field(default_factory=_build_throttle_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
