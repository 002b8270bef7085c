"""
Token issuance: secret generation, expiry computation and renewal.
"""

from datetime import datetime
from typing import Callable, Optional, Union

from ..config import TokenPolicyConfig, get_config
from ..constants import EXPIRY_DURATIONS, ExpiresType
from ..context.operation_context import operation
from ..db.db_base import as_utc, utc_now
from ..exceptions import DuplicateSecretError, ErrorCode, ServiceError, validation_failed
from ..repositories.user_token_repository import UserTokenRepository
from ..schemas.user_token_schema import UserTokenCreate, UserTokenRead, validate_request
from ..utils.logger import get_logger
from ..utils.secret_utils import generate_secret


def coerce_expires_type(value: Union[str, ExpiresType]) -> ExpiresType:
    """Parse an expiry class, raising ValidationError for unknown values."""
    try:
        return ExpiresType(value)
    except ValueError as e:
        raise validation_failed(
            "expires_type",
            value,
            f"must be one of {[t.value for t in ExpiresType]}",
            cause=e,
        ) from e


def compute_expiry(expires_type: Union[str, ExpiresType], now: datetime) -> Optional[datetime]:
    """
    Expiry instant for a class: day +24h, week +7d, month +30d, never None.
    """
    expires_type = coerce_expires_type(expires_type)
    if expires_type == ExpiresType.NEVER:
        return None
    return now + EXPIRY_DURATIONS[expires_type]


class TokenIssuer:
    """Creates and renews user tokens."""

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

    def generate_secret(self) -> str:
        return generate_secret(self.policy_config.secret_prefix, self.policy_config.secret_bytes)

    def compute_expiry(
        self, expires_type: Union[str, ExpiresType], now: Optional[datetime] = None
    ) -> Optional[datetime]:
        return compute_expiry(expires_type, now or self.clock())

    @operation()
    def create(
        self,
        username: str,
        description: Optional[str] = None,
        expires_type: Union[str, ExpiresType] = ExpiresType.MONTH,
        max_ips: int = 0,
        curfew_start: Optional[str] = None,
        curfew_end: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> UserTokenRead:
        """
        Issue a new token.

        Collisions on the generated secret are retried with a fresh secret up
        to ``secret_max_attempts`` times.

        Raises:
            ValidationError: On empty username, negative max_ips, bad curfew pair
            ServiceError: If every generated secret collided
        """
        if username is None or not str(username).strip():
            raise validation_failed("username", username, "username is required")
        if not isinstance(max_ips, int) or isinstance(max_ips, bool) or max_ips < 0:
            raise validation_failed("max_ips", max_ips, "must be a non-negative integer")

        request = validate_request(
            UserTokenCreate,
            {
                "username": username,
                "description": description,
                "expires_type": coerce_expires_type(expires_type),
                "max_ips": max_ips,
                "curfew_start": curfew_start,
                "curfew_end": curfew_end,
            },
        )
        return self.create_from_request(request, now=now)

    def create_from_request(
        self, request: UserTokenCreate, now: Optional[datetime] = None
    ) -> UserTokenRead:
        """Issue a token from an already validated request."""
        now = as_utc(now or self.clock())
        expires_at = compute_expiry(request.expires_type, now)

        attempts = self.policy_config.secret_max_attempts
        last_error: Optional[DuplicateSecretError] = None
        for attempt in range(1, attempts + 1):
            try:
                return self.repository.create(
                    self.generate_secret(),
                    now=now,
                    username=request.username,
                    description=request.description,
                    expires_type=request.expires_type.value,
                    expires_at=expires_at,
                    max_ips=request.max_ips,
                    curfew_start=request.curfew_start,
                    curfew_end=request.curfew_end,
                )
            except DuplicateSecretError as e:
                last_error = e
                self.logger.warning(
                    "Generated secret collided, retrying",
                    extra={"attempt": attempt, "max_attempts": attempts},
                )

        raise ServiceError(
            f"Could not generate a unique secret after {attempts} attempts",
            error_code=ErrorCode.CONFLICT,
            operation="create",
            cause=last_error,
            attempts=attempts,
        )

    @operation()
    def renew(
        self,
        token_id: str,
        expires_type: Union[str, ExpiresType],
        now: Optional[datetime] = None,
    ) -> UserTokenRead:
        """
        Restart a token's expiry from ``now``.

        Only ``expires_type`` and ``expires_at`` change; counters, seen IPs,
        ``enabled`` and the secret are untouched.

        Raises:
            NotFoundError: If the token does not exist
        """
        expires_type = coerce_expires_type(expires_type)
        now = as_utc(now or self.clock())
        renewed = self.repository.update(
            token_id,
            {
                "expires_type": expires_type.value,
                "expires_at": compute_expiry(expires_type, now),
            },
            now=now,
        )
        self.logger.info(
            "User token renewed",
            extra={
                "token_id": token_id,
                "expires_type": expires_type.value,
                "expires_at": renewed.expires_at.isoformat() if renewed.expires_at else None,
            },
        )
        return renewed
