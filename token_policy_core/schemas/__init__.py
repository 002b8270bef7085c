from .user_token_schema import (
    AccessGrant,
    UsageResult,
    UserTokenCreate,
    UserTokenRead,
    UserTokenRenew,
    UserTokenSummary,
    UserTokenUpdate,
    to_epoch_seconds,
)

__all__ = [
    "AccessGrant",
    "UsageResult",
    "UserTokenCreate",
    "UserTokenRead",
    "UserTokenRenew",
    "UserTokenSummary",
    "UserTokenUpdate",
    "to_epoch_seconds",
]
