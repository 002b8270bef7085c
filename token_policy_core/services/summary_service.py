"""
Read-only fleet rollups and the advisory maintenance sweep.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from ..config import TokenPolicyConfig, get_config
from ..context.operation_context import operation
from ..db.db_base import as_utc, utc_now
from ..repositories.user_token_repository import UserTokenRepository
from ..schemas.user_token_schema import UserTokenSummary
from ..utils.logger import get_logger


class SummaryService:
    """Dashboard counts over the token store."""

    def __init__(
        self,
        repository: UserTokenRepository,
        policy_config: Optional[TokenPolicyConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.policy_config = policy_config or get_config().policy
        self.clock = clock
        self.logger = get_logger()

    def summary(self, now: Optional[datetime] = None) -> UserTokenSummary:
        """All four counts from one consistent read."""
        return self.repository.summary_counts(as_utc(now or self.clock()))

    def total_tokens(self) -> int:
        return self.summary().total_tokens

    def active_tokens(self, now: Optional[datetime] = None) -> int:
        """Enabled tokens with no expiry or an expiry still in the future."""
        return self.summary(now).active_tokens

    def total_users(self) -> int:
        """Distinct owner usernames."""
        return self.summary().total_users

    def today_requests(self, now: Optional[datetime] = None) -> int:
        """Requests accounted under today's date in the configured zone."""
        return self.summary(now).today_requests

    @operation()
    def sweep(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Passive maintenance pass.

        Counts expired tokens for the log and prunes day buckets older than
        the retention window. Token records are never modified; expiry is
        always enforced at access time.
        """
        now = as_utc(now or self.clock())
        retention_days = self.policy_config.daily_usage_retention_days
        cutoff = self.repository.usage_day(now) - timedelta(days=retention_days)

        expired = self.repository.count_expired(now)
        pruned = self.repository.prune_daily_usage(cutoff)

        result = {
            "expired_tokens": expired,
            "pruned_daily_buckets": pruned,
            "retention_cutoff": cutoff.isoformat(),
        }
        self.logger.info("User token sweep finished", extra=result)
        return result
