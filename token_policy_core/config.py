"""
Centralized configuration management for the token policy service.

This module provides a unified configuration system with support for:
- Environment variables
- Token issuance and access policy tuning
- Validation using Pydantic
"""

import os
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, Limits, LogLevel


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class QueueConfig(BaseModel):
    """Azure Storage Queue configuration for structured log shipping."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )
    logs_queue_name: str = Field(default="logs-queue", description="Logs queue name")
    batch_size: int = Field(default=10, description="Log entries buffered before sending")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )
    enable_queue: bool = Field(default=False, description="Ship logs to the Azure logs queue")

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class TokenPolicyConfig(BaseModel):
    """Token issuance and access policy tuning."""

    secret_prefix: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.SECRET_PREFIX.value, "sk-"),
        description="Prefix prepended to every generated secret",
    )
    secret_bytes: int = Field(
        default_factory=lambda: int(
            os.getenv(EnvironmentVariable.SECRET_BYTES.value, str(Limits.MIN_SECRET_BYTES))
        ),
        description="Random bytes of entropy per secret",
    )
    secret_max_attempts: int = Field(
        default=Limits.DEFAULT_SECRET_MAX_ATTEMPTS,
        description="Attempts before giving up on secret collisions",
    )
    secret_encryption_key: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.SECRET_ENCRYPTION_KEY.value, "user_token_secret_key"
        ),
        description="Symmetric key for pgcrypto secret encryption",
    )
    lock_timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(
                EnvironmentVariable.LOCK_TIMEOUT_SECONDS.value,
                str(Limits.DEFAULT_LOCK_TIMEOUT_SECONDS),
            )
        ),
        description="Maximum wait for a per-token lock",
    )
    curfew_timezone: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.CURFEW_TIMEZONE.value) or None,
        description="IANA zone for curfew and daily buckets; server local time when unset",
    )
    trust_proxy_headers: bool = Field(
        default_factory=lambda: _env_bool(EnvironmentVariable.TRUST_PROXY_HEADERS.value),
        description="Prefer X-Forwarded-For / X-Real-IP over the peer address",
    )
    daily_usage_retention_days: int = Field(
        default_factory=lambda: int(
            os.getenv(
                EnvironmentVariable.DAILY_USAGE_RETENTION_DAYS.value,
                str(Limits.DEFAULT_DAILY_USAGE_RETENTION_DAYS),
            )
        ),
        description="Days of per-token usage buckets kept by the sweep",
    )
    record_access_denials: bool = Field(
        default=True, description="Write denied access attempts to the access log"
    )

    @field_validator("secret_bytes")
    def validate_secret_bytes(cls, v: int) -> int:
        """Secrets must carry at least 256 bits of entropy."""
        if v < Limits.MIN_SECRET_BYTES:
            raise ValueError(f"secret_bytes must be at least {Limits.MIN_SECRET_BYTES}")
        return v

    @field_validator("secret_max_attempts")
    def validate_secret_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("secret_max_attempts must be at least 1")
        return v

    @field_validator("lock_timeout_seconds")
    def validate_lock_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        return v

    @field_validator("curfew_timezone")
    def validate_curfew_timezone(cls, v: Optional[str]) -> Optional[str]:
        """Reject zone names the tz database does not know."""
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    def local_zone(self) -> Optional[ZoneInfo]:
        """Zone used for curfew and "today"; None means the server's local zone."""
        return ZoneInfo(self.curfew_timezone) if self.curfew_timezone else None


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: _env_bool(EnvironmentVariable.DEBUG.value),
        description="Debug mode",
    )

    queue: QueueConfig = Field(default_factory=QueueConfig, description="Queue configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    policy: TokenPolicyConfig = Field(
        default_factory=TokenPolicyConfig, description="Token policy configuration"
    )

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
