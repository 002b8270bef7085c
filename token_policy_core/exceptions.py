"""
Consolidated exception system with error codes, context, and correlation support.

Every failure the token service can report is a BaseError subclass carrying a
standardized error code, an HTTP-style status code and a context dictionary.
Errors log themselves on construction, so calling code only needs to decide
whether to propagate or translate them.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .constants import DenialReason

_thread_local = threading.local()


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"
    CONSTRAINT_VIOLATION = "2004"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    DUPLICATE = "3001"
    CONFLICT = "3002"
    LOCKED = "3003"
    EXPIRED = "3004"
    LIMIT_EXCEEDED = "3005"

    # Access policy errors (4xxx)
    PERMISSION_DENIED = "4003"
    UNAUTHORIZED = "4010"
    DISABLED = "4011"
    CURFEW_BLOCKED = "4012"


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Initialize base error with rich context.

        Args:
            message: Human-readable error message
            error_code: Standardized error code from ErrorCode enum
            status_code: HTTP status code for API responses
            cause: Original exception that caused this error
            **context: Additional context information
        """
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())
        self.context = context

        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id

        self.context["error_id"] = self.error_id

        if cause:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

        super().__init__(message)

    def _log_error(self) -> None:
        """Log error with appropriate level based on status code."""
        # Lazy import: the logger module imports config, which must not import us back
        from .utils.logger import get_logger

        logger = get_logger()

        log_data = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "timestamp": self.timestamp,
            "context": {k: v for k, v in self.context.items() if k not in ["cause", "traceback"]},
        }

        if "correlation_id" in self.context:
            log_data["correlation_id"] = self.context["correlation_id"]

        if self.status_code >= 500:
            logger.error(
                f"Error {self.error_code.value}: {self.message}", extra=log_data, exc_info=self.cause
            )
        elif self.status_code >= 400:
            logger.warning(f"Client error {self.error_code.value}: {self.message}", extra=log_data)
        else:
            logger.info(f"Error {self.error_code.value}: {self.message}", extra=log_data)

    def to_dict(
        self, include_cause: bool = False, include_traceback: bool = False
    ) -> Dict[str, Any]:
        """
        Convert to dict for API responses.

        Args:
            include_cause: Include cause information (useful for debugging)
            include_traceback: Include full traceback (only in debug mode)

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        result: Dict[str, Any] = {
            "error": {
                "id": self.error_id,
                "code": self.error_code.value,
                "message": self.message,
                "timestamp": self.timestamp,
                "context": {
                    k: v
                    for k, v in self.context.items()
                    if k not in ["cause", "error_id", "correlation_id"]
                },
            }
        }

        if "correlation_id" in self.context:
            result["error"]["correlation_id"] = self.context["correlation_id"]

        if include_cause and "cause" in self.context:
            result["error"]["cause"] = {
                "type": self.context["cause"]["type"],
                "message": self.context["cause"]["message"],
            }
            if include_traceback:
                result["error"]["cause"]["traceback"] = self.context["cause"]["traceback"]

        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        """
        Add additional context to the error (fluent interface).

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[Exception]:
        """Get the full chain of errors."""
        chain: List[Exception] = [self]
        current = self.cause
        while current:
            chain.append(current)
            current = getattr(current, "cause", None)
        return chain


# Layer-specific base exceptions
class RepositoryError(BaseError):
    """Repository layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Invalid caller input, rejected before any state change."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class NotFoundError(RepositoryError):
    """Raised when a token record does not exist."""

    def __init__(self, message: str = "Token not found", **kwargs):
        super().__init__(message, error_code=ErrorCode.NOT_FOUND, status_code=404, **kwargs)


class DuplicateSecretError(RepositoryError):
    """Raised when a generated secret collides with an existing one."""

    def __init__(self, message: str = "Token secret already exists", **kwargs):
        super().__init__(message, error_code=ErrorCode.DUPLICATE, status_code=409, **kwargs)


class StoreUnavailableError(RepositoryError):
    """Transient storage failure; the whole operation may be retried."""

    retryable = True

    def __init__(self, message: str = "Token store unavailable", **kwargs):
        super().__init__(message, error_code=ErrorCode.CONNECTION_ERROR, status_code=503, **kwargs)


class StoreTimeoutError(RepositoryError):
    """A store operation could not complete within its latency bound."""

    retryable = True

    def __init__(
        self,
        message: str = "Token store operation timed out",
        error_code: ErrorCode = ErrorCode.TIMEOUT_ERROR,
        **kwargs,
    ):
        super().__init__(message, error_code=error_code, status_code=503, **kwargs)


# ==================== ACCESS POLICY DENIALS ====================


class AccessDeniedError(BaseError):
    """Base exception for every access-time denial."""

    reason: DenialReason = DenialReason.UNAUTHORIZED

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.PERMISSION_DENIED,
        status_code: int = 403,
        **kwargs,
    ):
        kwargs.setdefault("reason", self.reason.value)
        super().__init__(message, error_code=error_code, status_code=status_code, **kwargs)


class UnauthorizedError(AccessDeniedError):
    """Raised when the presented secret matches no token."""

    reason = DenialReason.UNAUTHORIZED

    def __init__(self, message: str = "Invalid token", **kwargs):
        super().__init__(message, error_code=ErrorCode.UNAUTHORIZED, status_code=401, **kwargs)


class TokenDisabledError(AccessDeniedError):
    """Raised when the token exists but has been disabled by an operator."""

    reason = DenialReason.DISABLED

    def __init__(self, message: str = "Token is disabled", **kwargs):
        super().__init__(message, error_code=ErrorCode.DISABLED, status_code=403, **kwargs)


class TokenExpiredError(AccessDeniedError):
    """Raised when the token's expiry instant has passed."""

    reason = DenialReason.EXPIRED

    def __init__(self, message: str = "Token has expired", **kwargs):
        super().__init__(message, error_code=ErrorCode.EXPIRED, status_code=401, **kwargs)


class CurfewBlockedError(AccessDeniedError):
    """Raised when access falls inside the token's daily blackout window."""

    reason = DenialReason.CURFEW_BLOCKED

    def __init__(self, message: str = "Token is in curfew", **kwargs):
        super().__init__(message, error_code=ErrorCode.CURFEW_BLOCKED, status_code=403, **kwargs)


class IPLimitExceededError(AccessDeniedError):
    """Raised when a new source IP arrives and the token's IP set is full."""

    reason = DenialReason.IP_LIMIT_EXCEEDED

    def __init__(self, message: str = "Token IP limit exceeded", **kwargs):
        super().__init__(message, error_code=ErrorCode.LIMIT_EXCEEDED, status_code=403, **kwargs)


# Factory functions for common error patterns
def not_found(resource_type: str, cause: Optional[Exception] = None, **identifiers) -> NotFoundError:
    """
    Factory for not found errors.

    Args:
        resource_type: Type of resource (e.g., 'UserToken')
        cause: Original exception if any
        **identifiers: Resource identifiers (e.g., token_id='123')

    Returns:
        Configured NotFoundError instance with 404 status
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"{resource_type} not found"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return NotFoundError(message, cause=cause, resource_type=resource_type, **identifiers)


def duplicate(
    resource_type: str, cause: Optional[Exception] = None, **identifiers
) -> DuplicateSecretError:
    """Factory for duplicate secret errors."""
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"Duplicate {resource_type}"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return DuplicateSecretError(message, cause=cause, resource_type=resource_type, **identifiers)


def validation_failed(
    field: str, value: Any, reason: str, cause: Optional[Exception] = None
) -> ValidationError:
    """
    Factory for validation errors.

    Args:
        field: Field that failed validation
        value: The invalid value
        reason: Why validation failed
        cause: Original exception if any

    Returns:
        Configured ValidationError instance
    """
    return ValidationError(
        f"Validation failed for {field}: {reason}",
        field=field,
        error_code=ErrorCode.VALIDATION_FAILED,
        cause=cause,
        value=str(value),
        reason=reason,
    )


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation ID."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation ID."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
