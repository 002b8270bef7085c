from .access_policy_service import AccessPolicyService
from .summary_service import SummaryService
from .token_issuer import TokenIssuer, compute_expiry
from .user_token_service import UserTokenService

__all__ = [
    "AccessPolicyService",
    "SummaryService",
    "TokenIssuer",
    "UserTokenService",
    "compute_expiry",
]
