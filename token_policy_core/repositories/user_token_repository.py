"""
User token repository.

Durable storage of token records with per-record serialized mutation.
Every public method runs in its own short-lived session and returns detached
pydantic snapshots, so callers never hold ORM state across threads.
"""

from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, List, NoReturn, Optional

from sqlalchemy import distinct, func, or_
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from ..config import TokenPolicyConfig, get_config
from ..constants import Limits
from ..context.record_locks import RecordLockRegistry
from ..db.db_base import as_utc, utc_now
from ..db.db_config import DatabaseManager
from ..db.db_user_token_models import (
    UserToken,
    UserTokenAccessLog,
    UserTokenDailyUsage,
    UserTokenIP,
)
from ..exceptions import (
    BaseError,
    ErrorCode,
    IPLimitExceededError,
    RepositoryError,
    StoreUnavailableError,
    duplicate,
    not_found,
)
from ..schemas.user_token_schema import UsageResult, UserTokenRead, UserTokenSummary
from ..utils.encryption_utils import decrypt_secret, encrypt_secret
from ..utils.logger import get_logger, secret_preview
from ..utils.secret_utils import hash_secret

UsageGuard = Callable[[UserTokenRead], None]

# Columns an update may write
UPDATABLE_FIELDS = {
    "username",
    "description",
    "enabled",
    "max_ips",
    "curfew_start",
    "curfew_end",
    "expires_type",
    "expires_at",
}


class UserTokenRepository:
    """
    Repository for user token records, their seen IPs and daily usage buckets.

    Mutations of one token are serialized in the database: a row lock on
    PostgreSQL, an immediate write transaction on SQLite. A RecordLockRegistry
    also queues threads of one process per token so they do not spin on the
    database lock.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        policy_config: Optional[TokenPolicyConfig] = None,
        lock_registry: Optional[RecordLockRegistry] = None,
    ):
        self.db_manager = db_manager
        self.policy_config = policy_config or get_config().policy
        self.locks = lock_registry or RecordLockRegistry(self.policy_config.lock_timeout_seconds)
        self.logger = get_logger()
        self.entity_name = UserToken.__name__

    # ==================== SESSION HANDLING ====================

    def _handle_db_error(
        self,
        e: Exception,
        operation_name: str,
        token_id: Optional[str] = None,
    ) -> NoReturn:
        """
        Map database failures onto the store error taxonomy.

        Raises:
            DuplicateSecretError: On unique constraint violations
            StoreUnavailableError: On connection and pool failures
            RepositoryError: On any other database failure
        """
        if isinstance(e, BaseError):
            raise e

        error_context: Dict[str, Any] = {
            "operation_name": operation_name,
            "entity_type": self.entity_name,
        }
        if token_id:
            error_context["token_id"] = token_id

        if isinstance(e, IntegrityError):
            error_message = str(e.orig).lower() if hasattr(e, "orig") else str(e).lower()
            if "unique constraint" in error_message or "duplicate" in error_message:
                self.logger.warning(
                    f"Duplicate {self.entity_name} in {operation_name}", extra=error_context
                )
                raise duplicate(resource_type=self.entity_name, cause=e, **error_context) from e

            raise RepositoryError(
                f"Database constraint violation for {self.entity_name}: {str(e)}",
                error_code=ErrorCode.CONSTRAINT_VIOLATION,
                cause=e,
                **error_context,
            ) from e

        if isinstance(e, (OperationalError, PoolTimeoutError)):
            raise StoreUnavailableError(
                f"Token store unavailable during {operation_name}: {str(e)}",
                cause=e,
                **error_context,
            ) from e

        if isinstance(e, SQLAlchemyError):
            raise RepositoryError(
                f"Database error for {self.entity_name}: {str(e)}",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
                **error_context,
            ) from e

        raise RepositoryError(
            f"Unexpected error for {self.entity_name}: {str(e)}",
            error_code=ErrorCode.INTERNAL_ERROR,
            cause=e,
            **error_context,
        ) from e

    @contextmanager
    def _session_scope(
        self,
        operation_name: str,
        token_id: Optional[str] = None,
        snapshot: bool = False,
    ):
        """
        Run one unit of work in its own session and transaction.

        Args:
            operation_name: Name of the operation for error reporting
            token_id: Optional id of the token being operated on
            snapshot: Read every statement from one consistent snapshot
        """
        session: Session = self.db_manager.new_session()
        try:
            if snapshot and self.db_manager.dialect_name == "postgresql":
                session.connection(execution_options={"isolation_level": "REPEATABLE READ"})
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            self._handle_db_error(e, operation_name, token_id)
        finally:
            session.close()

    def _load(self, session: Session, token_id: str, for_update: bool = False) -> UserToken:
        query = session.query(UserToken).filter(UserToken.id == token_id)
        if for_update:
            # FOR UPDATE on PostgreSQL; SQLite already holds the write lock
            query = query.with_for_update()
        token = query.one_or_none()
        if token is None:
            raise not_found("UserToken", token_id=token_id)
        return token

    def _to_read(self, session: Session, token: UserToken) -> UserTokenRead:
        return UserTokenRead.model_validate(
            {
                "id": token.id,
                "token": decrypt_secret(
                    session, token.encrypted_token, self.policy_config.secret_encryption_key
                ),
                "username": token.username,
                "description": token.description,
                "enabled": token.enabled,
                "expires_type": token.expires_type,
                "expires_at": token.expires_at,
                "max_ips": token.max_ips,
                "curfew_start": token.curfew_start,
                "curfew_end": token.curfew_end,
                "created_at": token.created_at,
                "updated_at": token.updated_at,
                "last_used_at": token.last_used_at,
                "total_requests": token.total_requests or 0,
                "total_tokens_used": token.total_tokens_used or 0,
            }
        )

    def usage_day(self, now: datetime) -> date:
        """Calendar day a usage instant is bucketed under."""
        return as_utc(now).astimezone(self.policy_config.local_zone()).date()

    # ==================== CRUD ====================

    def create(self, secret: str, now: Optional[datetime] = None, **fields: Any) -> UserTokenRead:
        """
        Insert a new token record.

        Args:
            secret: The bearer secret (stored hashed and encrypted)
            now: Creation instant
            **fields: Column values (username, description, expires_type, ...)

        Returns:
            Snapshot of the stored record

        Raises:
            DuplicateSecretError: If the secret collides with an existing token
        """
        now = now or utc_now()
        with self._session_scope("create") as session:
            token = UserToken(
                token_hash=hash_secret(secret),
                encrypted_token=encrypt_secret(
                    session, secret, self.policy_config.secret_encryption_key
                ),
                enabled=fields.pop("enabled", True),
                total_requests=0,
                total_tokens_used=0,
                created_at=now,
                updated_at=now,
                **fields,
            )
            session.add(token)
            session.flush()
            snapshot = self._to_read(session, token)

        self.logger.info(
            "User token created",
            extra={
                "token_id": snapshot.id,
                "username": snapshot.username,
                "expires_type": snapshot.expires_type.value,
                "secret_preview": secret_preview(secret, Limits.SECRET_PREVIEW_LENGTH),
            },
        )
        return snapshot

    def get(self, token_id: str) -> UserTokenRead:
        """
        Get a token by id.

        Raises:
            NotFoundError: If no such token exists
        """
        with self._session_scope("get", token_id) as session:
            return self._to_read(session, self._load(session, token_id))

    def get_by_secret(self, secret: str) -> UserTokenRead:
        """
        Get a token by its bearer secret.

        Raises:
            NotFoundError: If no token carries this secret
        """
        if not secret:
            raise not_found("UserToken", secret="<empty>")

        with self._session_scope("get_by_secret") as session:
            token = (
                session.query(UserToken)
                .filter(UserToken.token_hash == hash_secret(secret))
                .one_or_none()
            )
            if token is None:
                raise not_found(
                    "UserToken", secret=secret_preview(secret, Limits.SECRET_PREVIEW_LENGTH)
                )
            return self._to_read(session, token)

    def update(
        self, token_id: str, fields: Dict[str, Any], now: Optional[datetime] = None
    ) -> UserTokenRead:
        """
        Write the given columns; ``None`` values clear nullable columns.

        Raises:
            NotFoundError: If no such token exists
            RepositoryError: If a field is not updatable
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise RepositoryError(
                f"Fields not updatable: {sorted(unknown)}",
                error_code=ErrorCode.CONSTRAINT_VIOLATION,
                token_id=token_id,
            )

        now = now or utc_now()
        with self.locks.hold(token_id):
            with self._session_scope("update", token_id) as session:
                token = self._load(session, token_id, for_update=True)
                for key, value in fields.items():
                    setattr(token, key, value)
                token.updated_at = now
                session.flush()
                snapshot = self._to_read(session, token)

        self.logger.info(
            "User token updated",
            extra={"token_id": token_id, "fields": sorted(fields)},
        )
        return snapshot

    def delete(self, token_id: str) -> bool:
        """
        Delete a token and its seen IPs.

        Daily usage buckets are kept so today's request total stays accurate.

        Returns:
            False if the token did not exist
        """
        with self.locks.hold(token_id):
            with self._session_scope("delete", token_id) as session:
                session.query(UserTokenIP).filter(UserTokenIP.token_id == token_id).delete(
                    synchronize_session=False
                )
                deleted = (
                    session.query(UserToken)
                    .filter(UserToken.id == token_id)
                    .delete(synchronize_session=False)
                )

        self.logger.info("User token deleted", extra={"token_id": token_id, "existed": bool(deleted)})
        return bool(deleted)

    def list(self) -> List[UserTokenRead]:
        """All tokens, newest first, read in one transaction."""
        with self._session_scope("list", snapshot=True) as session:
            tokens = (
                session.query(UserToken)
                .order_by(UserToken.created_at.desc(), UserToken.id)
                .all()
            )
            return [self._to_read(session, token) for token in tokens]

    # ==================== USAGE ====================

    def record_usage(
        self,
        token_id: str,
        token_delta: int,
        source_ip: str,
        now: datetime,
        request_delta: int = 1,
        guard: Optional[UsageGuard] = None,
    ) -> UsageResult:
        """
        Atomically account one access against a token.

        Inside the token's critical section: re-read the record, run ``guard``
        on the fresh snapshot, admit ``source_ip`` into the seen set (or fail),
        then bump the counters, ``last_used_at`` and today's bucket.

        Args:
            token_id: Token to charge
            token_delta: Usage units to add to total_tokens_used
            source_ip: Normalized caller address
            now: Access instant
            request_delta: Requests to add to total_requests
            guard: Callback that raises to refuse the access

        Returns:
            UsageResult with the updated snapshot

        Raises:
            NotFoundError: If the token no longer exists
            IPLimitExceededError: If the IP is new and the token's IP set is full
            RepositoryError: If deltas are negative
        """
        if token_delta < 0 or request_delta < 0:
            raise RepositoryError(
                "Usage deltas must be non-negative",
                error_code=ErrorCode.CONSTRAINT_VIOLATION,
                token_id=token_id,
                token_delta=token_delta,
                request_delta=request_delta,
            )

        with self.locks.hold(token_id):
            with self._session_scope("record_usage", token_id) as session:
                token = self._load(session, token_id, for_update=True)

                if guard is not None:
                    guard(self._to_read(session, token))

                seen = (
                    session.query(UserTokenIP.id)
                    .filter(
                        UserTokenIP.token_id == token_id,
                        UserTokenIP.ip_address == source_ip,
                    )
                    .first()
                )
                distinct_ips = (
                    session.query(func.count(UserTokenIP.id))
                    .filter(UserTokenIP.token_id == token_id)
                    .scalar()
                )

                ip_recorded = False
                if seen is None:
                    if token.max_ips > 0 and distinct_ips >= token.max_ips:
                        raise IPLimitExceededError(
                            token_id=token_id,
                            client_ip=source_ip,
                            max_ips=token.max_ips,
                            distinct_ips=distinct_ips,
                        )
                    session.add(
                        UserTokenIP(token_id=token_id, ip_address=source_ip, first_seen_at=now)
                    )
                    ip_recorded = True
                    distinct_ips += 1

                token.total_requests = (token.total_requests or 0) + request_delta
                token.total_tokens_used = (token.total_tokens_used or 0) + token_delta
                token.last_used_at = now
                token.updated_at = now

                self._bump_daily_usage(session, token_id, now, request_delta, token_delta)

                session.flush()
                snapshot = self._to_read(session, token)

        return UsageResult(token=snapshot, ip_recorded=ip_recorded, distinct_ips=distinct_ips)

    def _bump_daily_usage(
        self,
        session: Session,
        token_id: str,
        now: datetime,
        request_delta: int,
        token_delta: int,
    ) -> None:
        usage_date = self.usage_day(now)
        bucket = session.get(UserTokenDailyUsage, (token_id, usage_date))
        if bucket is None:
            session.add(
                UserTokenDailyUsage(
                    token_id=token_id,
                    usage_date=usage_date,
                    request_count=request_delta,
                    tokens_used=token_delta,
                )
            )
        else:
            bucket.request_count += request_delta
            bucket.tokens_used += token_delta

    # ==================== ROLLUPS & MAINTENANCE ====================

    def summary_counts(self, now: datetime) -> UserTokenSummary:
        """Total/active tokens, distinct owners and today's requests from one snapshot."""
        today = self.usage_day(now)
        with self._session_scope("summary_counts", snapshot=True) as session:
            total_tokens = session.query(func.count(UserToken.id)).scalar() or 0
            active_tokens = (
                session.query(func.count(UserToken.id))
                .filter(
                    UserToken.enabled.is_(True),
                    or_(UserToken.expires_at.is_(None), UserToken.expires_at > now),
                )
                .scalar()
                or 0
            )
            total_users = session.query(func.count(distinct(UserToken.username))).scalar() or 0
            today_requests = (
                session.query(func.coalesce(func.sum(UserTokenDailyUsage.request_count), 0))
                .filter(UserTokenDailyUsage.usage_date == today)
                .scalar()
                or 0
            )

        return UserTokenSummary(
            total_tokens=total_tokens,
            active_tokens=active_tokens,
            total_users=total_users,
            today_requests=int(today_requests),
        )

    def count_expired(self, now: datetime) -> int:
        """Tokens whose expiry instant has passed."""
        with self._session_scope("count_expired") as session:
            return (
                session.query(func.count(UserToken.id))
                .filter(UserToken.expires_at.isnot(None), UserToken.expires_at <= now)
                .scalar()
                or 0
            )

    def prune_daily_usage(self, before: date) -> int:
        """Delete day buckets older than ``before``; returns rows removed."""
        with self._session_scope("prune_daily_usage") as session:
            return (
                session.query(UserTokenDailyUsage)
                .filter(UserTokenDailyUsage.usage_date < before)
                .delete(synchronize_session=False)
            )

    def log_access_denial(
        self,
        reason: str,
        token_id: Optional[str] = None,
        client_ip: Optional[str] = None,
        now: Optional[datetime] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Record a denied access attempt.

        Best effort: a failed write is logged and reported as False, never raised.
        """
        session: Session = self.db_manager.new_session()
        try:
            session.add(
                UserTokenAccessLog(
                    token_id=token_id,
                    client_ip=client_ip,
                    reason=reason,
                    occurred_at=now or utc_now(),
                    context=context,
                )
            )
            session.commit()
            return True
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.warning(
                "Failed to write access log entry",
                extra={"token_id": token_id, "reason": reason, "error": str(e)},
            )
            return False
        finally:
            session.close()

    def list_access_denials(self, token_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Access log entries, oldest first, optionally for one token."""
        with self._session_scope("list_access_denials", token_id) as session:
            query = session.query(UserTokenAccessLog)
            if token_id is not None:
                query = query.filter(UserTokenAccessLog.token_id == token_id)
            return [
                {
                    "token_id": entry.token_id,
                    "client_ip": entry.client_ip,
                    "reason": entry.reason,
                    "occurred_at": entry.occurred_at,
                    "context": entry.context,
                }
                for entry in query.order_by(UserTokenAccessLog.occurred_at).all()
            ]

    def seen_ips(self, token_id: str) -> List[str]:
        """Distinct source IPs recorded for a token."""
        with self._session_scope("seen_ips", token_id) as session:
            rows = (
                session.query(UserTokenIP.ip_address)
                .filter(UserTokenIP.token_id == token_id)
                .order_by(UserTokenIP.first_seen_at, UserTokenIP.ip_address)
                .all()
            )
            return [row[0] for row in rows]
