"""Shared configuration contract for expensecore.

This module provides Pydantic-validated configuration models for the
authorization core (LOG_LEVEL, REDIS_URL, redirect targets, timeouts).

Applications embedding expensecore MUST build the core from these models
and extend them with their own settings. Direct os.environ/os.getenv usage
is FORBIDDEN for any setting defined here; ``load_shared_config_from_env``
is the single place that reads the environment.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RedirectConfig(BaseModel):
    """Redirect targets used by route guards.

    Each denial reason maps to its own destination so that a user is never
    sent to a dead end:

        not authenticated       → login
        no organization         → organization picker
        insufficient access     → insufficient-access page
        privileged operator     → privileged (operator) area
    """

    model_config = {"extra": "ignore"}

    login: str = Field(default="/auth/login", description="Login page")
    organization_picker: str = Field(
        default="/organization/select",
        description="Where callers without a selected organization are sent",
    )
    organization_setup: str = Field(
        default="/organization/setup",
        description="Default route for callers who belong to no organization yet",
    )
    insufficient_access: str = Field(
        default="/home",
        description="Where authenticated callers lacking a role/capability are sent",
    )
    home: str = Field(default="/home", description="Default landing route")
    privileged_area: str = Field(
        default="/super-admin",
        description="Landing route of the platform-operator area",
    )


class SharedConfig(BaseModel):
    """Configuration contract for the authorization core.

    RULE: All settings MUST come through this config chain.
    """

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    # Durable organization context
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL for the durable context store (e.g., redis://localhost:6379/0)",
    )
    org_context_key: str = Field(
        default="current_organization_id",
        description="Store key holding the currently selected organization id",
    )
    org_context_prefix: str = Field(
        default="expensecore:session",
        description="Key prefix for per-session values in the Redis store",
    )

    # Privileged-operator checks
    privileged_check_timeout_s: float = Field(
        default=10.0,
        description="Upper bound for a privileged-status wait before it resolves to deny",
    )

    # Service identification
    service_name: Optional[str] = Field(
        default=None,
        description="Service name for log identification",
    )

    redirects: RedirectConfig = Field(
        default_factory=RedirectConfig,
        description="Guard redirect targets",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with redis://, rediss://, or unix://")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    @field_validator("privileged_check_timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("privileged_check_timeout_s must be positive")
        return v

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",  # Prevent accidental extra fields
    }


def load_shared_config_from_env() -> SharedConfig:
    """Load shared configuration from environment variables.

    This is the ONLY place where os.getenv is allowed for shared settings.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - REDIS_URL: Redis connection URL for the durable context store
    - ORG_CONTEXT_KEY: Store key of the current organization id
    - ORG_CONTEXT_PREFIX: Redis key prefix for session values
    - PRIVILEGED_CHECK_TIMEOUT_S: Privileged-status wait bound in seconds
    - SERVICE_NAME: Service name for logs
    - REDIRECT_LOGIN, REDIRECT_ORGANIZATION_PICKER, REDIRECT_ORGANIZATION_SETUP,
      REDIRECT_INSUFFICIENT_ACCESS, REDIRECT_HOME, REDIRECT_PRIVILEGED_AREA:
      guard redirect targets

    Returns:
        SharedConfig instance with values from environment or defaults.
    """
    import os

    defaults = RedirectConfig()
    redirects = RedirectConfig(
        login=os.getenv("REDIRECT_LOGIN", defaults.login),
        organization_picker=os.getenv("REDIRECT_ORGANIZATION_PICKER", defaults.organization_picker),
        organization_setup=os.getenv("REDIRECT_ORGANIZATION_SETUP", defaults.organization_setup),
        insufficient_access=os.getenv("REDIRECT_INSUFFICIENT_ACCESS", defaults.insufficient_access),
        home=os.getenv("REDIRECT_HOME", defaults.home),
        privileged_area=os.getenv("REDIRECT_PRIVILEGED_AREA", defaults.privileged_area),
    )

    return SharedConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "false").lower() in ("true", "1", "yes"),
        redis_url=os.getenv("REDIS_URL"),
        org_context_key=os.getenv("ORG_CONTEXT_KEY", "current_organization_id"),
        org_context_prefix=os.getenv("ORG_CONTEXT_PREFIX", "expensecore:session"),
        privileged_check_timeout_s=float(os.getenv("PRIVILEGED_CHECK_TIMEOUT_S", "10")),
        service_name=os.getenv("SERVICE_NAME"),
        redirects=redirects,
    )


__all__ = [
    "SharedConfig",
    "RedirectConfig",
    "LogLevel",
    "load_shared_config_from_env",
]
