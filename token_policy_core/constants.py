"""
Constants and enums for the token policy core.

This module centralizes the magic strings and numeric defaults used across
the package to keep them consistent between layers.
"""

from datetime import timedelta
from enum import Enum


class ExpiresType(str, Enum):
    """Expiry classes a user token can be issued with."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    NEVER = "never"


# Fixed durations; "month" is 30 days, not a calendar month.
EXPIRY_DURATIONS = {
    ExpiresType.DAY: timedelta(hours=24),
    ExpiresType.WEEK: timedelta(days=7),
    ExpiresType.MONTH: timedelta(days=30),
}


class DenialReason(str, Enum):
    """Why an access attempt was refused."""

    UNAUTHORIZED = "unauthorized"
    DISABLED = "disabled"
    EXPIRED = "expired"
    CURFEW_BLOCKED = "curfew_blocked"
    IP_LIMIT_EXCEEDED = "ip_limit_exceeded"


class RemoteOperation(str, Enum):
    """Names of the remote operations consumed by the operator screen."""

    LIST_USER_TOKENS = "list_user_tokens"
    GET_USER_TOKEN_SUMMARY = "get_user_token_summary"
    CREATE_USER_TOKEN = "create_user_token"
    UPDATE_USER_TOKEN = "update_user_token"
    DELETE_USER_TOKEN = "delete_user_token"
    RENEW_USER_TOKEN = "renew_user_token"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    DEBUG = "DEBUG"
    SECRET_PREFIX = "TOKEN_SECRET_PREFIX"
    SECRET_BYTES = "TOKEN_SECRET_BYTES"
    LOCK_TIMEOUT_SECONDS = "TOKEN_LOCK_TIMEOUT_SECONDS"
    CURFEW_TIMEZONE = "TOKEN_CURFEW_TIMEZONE"
    TRUST_PROXY_HEADERS = "TOKEN_TRUST_PROXY_HEADERS"
    DAILY_USAGE_RETENTION_DAYS = "TOKEN_DAILY_USAGE_RETENTION_DAYS"
    SECRET_ENCRYPTION_KEY = "TOKEN_SECRET_ENCRYPTION_KEY"


class LogContextKey(str, Enum):
    """Standard keys for logging context."""

    OPERATION_ID = "operation_id"
    CORRELATION_ID = "correlation_id"
    TOKEN_ID = "token_id"
    USERNAME = "username"
    CLIENT_IP = "client_ip"
    DURATION_MS = "duration_ms"
    STATUS = "status"
    ERROR_CODE = "error_code"
    OPERATION = "operation"


class Limits:
    """System limits and thresholds."""

    MIN_SECRET_BYTES = 32
    MAX_USERNAME_LENGTH = 100
    MAX_DESCRIPTION_LENGTH = 500
    MAX_IP_LENGTH = 45
    SECRET_PREVIEW_LENGTH = 12
    DEFAULT_SECRET_MAX_ATTEMPTS = 5
    DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0
    DEFAULT_DAILY_USAGE_RETENTION_DAYS = 30
