"""
Token Policy Core - user token issuance and access-policy enforcement.

Owns user token records, issues and renews bearer secrets, and decides per
request whether a token may be used (enabled, expiry, curfew, IP limit)
while accounting usage under concurrent access.
"""

from .config import AppConfig, TokenPolicyConfig, get_config, set_config
from .constants import DenialReason, ExpiresType, RemoteOperation
from .exceptions import (
    AccessDeniedError,
    BaseError,
    CurfewBlockedError,
    DuplicateSecretError,
    ErrorCode,
    IPLimitExceededError,
    NotFoundError,
    RepositoryError,
    ServiceError,
    StoreTimeoutError,
    StoreUnavailableError,
    TokenDisabledError,
    TokenExpiredError,
    UnauthorizedError,
    ValidationError,
)
from .services.user_token_service import UserTokenService

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "TokenPolicyConfig",
    "get_config",
    "set_config",
    "DenialReason",
    "ExpiresType",
    "RemoteOperation",
    "AccessDeniedError",
    "BaseError",
    "CurfewBlockedError",
    "DuplicateSecretError",
    "ErrorCode",
    "IPLimitExceededError",
    "NotFoundError",
    "RepositoryError",
    "ServiceError",
    "StoreTimeoutError",
    "StoreUnavailableError",
    "TokenDisabledError",
    "TokenExpiredError",
    "UnauthorizedError",
    "ValidationError",
    "UserTokenService",
]
