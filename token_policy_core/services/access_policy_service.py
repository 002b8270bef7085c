"""
Per-request access decision for user tokens.

Checks run in a fixed order and stop at the first failure: unknown secret,
disabled, expired, curfew, then the IP limit. Steps two to four run again
inside the store's critical section so a concurrent disable/renew cannot slip
between the check and the usage write.
"""

from datetime import datetime
from typing import Callable, Mapping, Optional

from ..config import TokenPolicyConfig, get_config
from ..constants import DenialReason
from ..db.db_base import as_utc, utc_now
from ..exceptions import (
    AccessDeniedError,
    CurfewBlockedError,
    ErrorCode,
    NotFoundError,
    TokenDisabledError,
    TokenExpiredError,
    UnauthorizedError,
    ValidationError,
)
from ..repositories.user_token_repository import UserTokenRepository
from ..schemas.user_token_schema import AccessGrant, UserTokenRead
from ..utils.client_ip_utils import extract_client_ip, normalize_ip
from ..utils.curfew_utils import is_within_curfew
from ..utils.logger import get_logger, secret_preview


class AccessPolicyService:
    """Authorizes bearer secrets and accounts their usage."""

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

    def check_state(self, token: UserTokenRead, now: datetime) -> None:
        """
        Raise the first state-based denial that applies to ``token`` at ``now``.

        Raises:
            TokenDisabledError: If the token is disabled
            TokenExpiredError: If ``now`` is at or past ``expires_at``
            CurfewBlockedError: If local time-of-day is inside the curfew window
        """
        if not token.enabled:
            raise TokenDisabledError(token_id=token.id)

        if token.is_expired(now):
            raise TokenExpiredError(
                token_id=token.id,
                expires_at=token.expires_at.isoformat(),
                expires_type=token.expires_type.value,
            )

        if is_within_curfew(
            token.curfew_start, token.curfew_end, now, self.policy_config.local_zone()
        ):
            raise CurfewBlockedError(
                token_id=token.id,
                curfew_start=token.curfew_start,
                curfew_end=token.curfew_end,
            )

    def authorize(
        self,
        secret: str,
        source_ip: str,
        now: Optional[datetime] = None,
        usage: int = 0,
    ) -> AccessGrant:
        """
        Decide whether a request may proceed and account it if so.

        Input is validated before the secret is looked up, so a malformed
        ``source_ip`` is a ValidationError even when the secret is unknown.
        A naive ``now`` is read as UTC.

        Args:
            secret: Bearer secret presented by the caller
            source_ip: Caller address
            now: Request instant (defaults to the service clock)
            usage: Usage units consumed by this request

        Returns:
            AccessGrant with the token identity and updated counters

        Raises:
            ValidationError: If ``usage`` is negative or ``source_ip`` is malformed
            AccessDeniedError: One of its subclasses, naming the denial reason
        """
        now = as_utc(now or self.clock())
        if usage < 0:
            raise ValidationError(
                "usage must be non-negative",
                field="usage",
                error_code=ErrorCode.CONSTRAINT_VIOLATION,
                value=usage,
            )
        client_ip = normalize_ip(source_ip)

        token: Optional[UserTokenRead] = None
        try:
            try:
                token = self.repository.get_by_secret(secret)
            except NotFoundError as e:
                raise UnauthorizedError(
                    client_ip=client_ip,
                    secret_preview=secret_preview(secret),
                    cause=e,
                ) from e

            self.check_state(token, now)

            result = self.repository.record_usage(
                token.id,
                token_delta=usage,
                source_ip=client_ip,
                now=now,
                guard=lambda fresh: self.check_state(fresh, now),
            )
        except NotFoundError as e:
            # Deleted between lookup and usage write
            self._record_denial(DenialReason.UNAUTHORIZED, token, client_ip, now)
            raise UnauthorizedError(client_ip=client_ip, cause=e) from e
        except AccessDeniedError as e:
            self._record_denial(e.reason, token, client_ip, now)
            raise

        snapshot = result.token
        if result.ip_recorded:
            self.logger.info(
                "New source IP recorded for token",
                extra={
                    "token_id": snapshot.id,
                    "client_ip": client_ip,
                    "distinct_ips": result.distinct_ips,
                    "max_ips": snapshot.max_ips,
                },
            )

        return AccessGrant(
            token_id=snapshot.id,
            username=snapshot.username,
            total_requests=snapshot.total_requests,
            total_tokens_used=snapshot.total_tokens_used,
            last_used_at=snapshot.last_used_at or now,
            source_ip=client_ip,
            new_ip=result.ip_recorded,
        )

    def authorize_request(
        self,
        secret: str,
        headers: Optional[Mapping[str, str]],
        peer_ip: Optional[str],
        now: Optional[datetime] = None,
        usage: int = 0,
    ) -> AccessGrant:
        """
        Authorize an inbound request, resolving the caller IP from headers.

        Raises:
            ValidationError: If no caller address can be determined
        """
        client_ip = extract_client_ip(headers, peer_ip, self.policy_config.trust_proxy_headers)
        if client_ip is None:
            raise ValidationError(
                "Unable to determine client IP",
                field="source_ip",
                error_code=ErrorCode.MISSING_REQUIRED,
            )
        return self.authorize(secret, client_ip, now=now, usage=usage)

    def _record_denial(
        self,
        reason: DenialReason,
        token: Optional[UserTokenRead],
        client_ip: str,
        now: datetime,
    ) -> None:
        if not self.policy_config.record_access_denials:
            return
        self.repository.log_access_denial(
            reason.value,
            token_id=token.id if token else None,
            client_ip=client_ip,
            now=now,
            context={"username": token.username} if token else None,
        )
