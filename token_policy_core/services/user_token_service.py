"""
Service facade for user tokens.

Binds the six operator operations (and the request-path authorization) to
the issuer, policy engine, summary service and repository. Validation
happens here; business rules live in the collaborators.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..config import TokenPolicyConfig, get_config
from ..constants import ExpiresType, RemoteOperation
from ..context.operation_context import operation
from ..context.record_locks import RecordLockRegistry
from ..db.db_base import utc_now
from ..db.db_config import DatabaseManager, get_db_manager
from ..exceptions import ErrorCode, ValidationError, validation_failed
from ..repositories.user_token_repository import UserTokenRepository
from ..schemas.user_token_schema import (
    AccessGrant,
    UserTokenCreate,
    UserTokenRead,
    UserTokenRenew,
    UserTokenSummary,
    UserTokenUpdate,
    validate_request,
)
from ..utils.logger import get_logger
from .access_policy_service import AccessPolicyService
from .summary_service import SummaryService
from .token_issuer import TokenIssuer


class UserTokenService:
    """
    Operator-facing user token operations.

    All collaborators share one repository. Mutations of a token are
    serialized by the store itself, so separate service instances (or
    processes) on one database stay consistent.
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        policy_config: Optional[TokenPolicyConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        lock_registry: Optional[RecordLockRegistry] = None,
    ):
        self.policy_config = policy_config or get_config().policy
        self.clock = clock
        self.repository = UserTokenRepository(
            db_manager or get_db_manager(), self.policy_config, lock_registry
        )
        self.issuer = TokenIssuer(self.repository, self.policy_config, clock)
        self.policy = AccessPolicyService(self.repository, self.policy_config, clock)
        self.summary_service = SummaryService(self.repository, self.policy_config, clock)
        self.logger = get_logger()

        self._commands: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            RemoteOperation.LIST_USER_TOKENS.value: self._dispatch_list,
            RemoteOperation.GET_USER_TOKEN_SUMMARY.value: self._dispatch_summary,
            RemoteOperation.CREATE_USER_TOKEN.value: self._dispatch_create,
            RemoteOperation.UPDATE_USER_TOKEN.value: self._dispatch_update,
            RemoteOperation.DELETE_USER_TOKEN.value: self._dispatch_delete,
            RemoteOperation.RENEW_USER_TOKEN.value: self._dispatch_renew,
        }

    # ==================== OPERATOR OPERATIONS ====================

    @operation()
    def list_user_tokens(self) -> List[UserTokenRead]:
        return self.repository.list()

    @operation()
    def get_user_token_summary(self) -> UserTokenSummary:
        return self.summary_service.summary()

    @operation()
    def create_user_token(
        self, request: Union[UserTokenCreate, Mapping[str, Any]]
    ) -> UserTokenRead:
        """
        Create a token.

        Raises:
            ValidationError: Missing username, negative max_ips, bad curfew pair
        """
        if not isinstance(request, UserTokenCreate):
            request = validate_request(UserTokenCreate, dict(request or {}))
        return self.issuer.create_from_request(request)

    @operation()
    def update_user_token(
        self, token_id: str, request: Union[UserTokenUpdate, Mapping[str, Any]]
    ) -> UserTokenRead:
        """
        Overwrite a token's editable fields.

        Raises:
            ValidationError: On invalid input
            NotFoundError: If the token does not exist
        """
        token_id = self._require_id(token_id)
        if not isinstance(request, UserTokenUpdate):
            request = validate_request(UserTokenUpdate, dict(request or {}))
        return self.repository.update(token_id, request.to_fields(), now=self.clock())

    @operation()
    def delete_user_token(self, token_id: str) -> bool:
        """Delete a token; a token that is already gone counts as deleted."""
        token_id = self._require_id(token_id)
        existed = self.repository.delete(token_id)
        if not existed:
            self.logger.info("Delete of unknown token treated as success", extra={"token_id": token_id})
        return True

    @operation()
    def renew_user_token(
        self, token_id: str, expires_type: Union[str, ExpiresType]
    ) -> UserTokenRead:
        """
        Restart a token's expiry.

        Raises:
            ValidationError: On unknown expiry class
            NotFoundError: If the token does not exist
        """
        request = validate_request(
            UserTokenRenew, {"id": self._require_id(token_id), "expires_type": expires_type}
        )
        return self.issuer.renew(request.id, request.expires_type)

    # ==================== REQUEST PATH ====================

    def authorize(
        self,
        secret: str,
        source_ip: str,
        now: Optional[datetime] = None,
        usage: int = 0,
    ) -> AccessGrant:
        return self.policy.authorize(secret, source_ip, now=now, usage=usage)

    def authorize_request(
        self,
        secret: str,
        headers: Optional[Mapping[str, str]],
        peer_ip: Optional[str],
        now: Optional[datetime] = None,
        usage: int = 0,
    ) -> AccessGrant:
        return self.policy.authorize_request(secret, headers, peer_ip, now=now, usage=usage)

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.summary_service.sweep(now)

    # ==================== REMOTE DISPATCH ====================

    def dispatch(self, command: str, payload: Optional[Mapping[str, Any]] = None) -> Any:
        """
        Run a remote operation by name with the payload the operator screen sends.

        Returns JSON-ready data: instants as epoch seconds, ``None`` for acks.

        Raises:
            ValidationError: On an unknown command or malformed payload
        """
        handler = self._commands.get(command)
        if handler is None:
            raise ValidationError(
                f"Unknown operation: {command}",
                field="command",
                error_code=ErrorCode.INVALID_FORMAT,
                known=sorted(self._commands),
            )
        return handler(dict(payload or {}))

    def _dispatch_list(self, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [token.model_dump() for token in self.list_user_tokens()]

    def _dispatch_summary(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.get_user_token_summary().model_dump()

    def _dispatch_create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.create_user_token(self._request_body(payload)).model_dump()

    def _dispatch_update(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.update_user_token(payload.get("id"), self._request_body(payload)).model_dump()

    def _dispatch_delete(self, payload: Dict[str, Any]) -> None:
        self.delete_user_token(payload.get("id"))
        return None

    def _dispatch_renew(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        expires_type = payload.get("expiresType", payload.get("expires_type"))
        if expires_type is None:
            raise ValidationError(
                "expiresType is required",
                field="expiresType",
                error_code=ErrorCode.MISSING_REQUIRED,
            )
        return self.renew_user_token(payload.get("id"), expires_type).model_dump()

    @staticmethod
    def _request_body(payload: Dict[str, Any]) -> Dict[str, Any]:
        body = payload.get("request")
        if not isinstance(body, Mapping):
            raise ValidationError(
                "request body is required",
                field="request",
                error_code=ErrorCode.MISSING_REQUIRED,
            )
        return dict(body)

    @staticmethod
    def _require_id(token_id: Any) -> str:
        if not isinstance(token_id, str) or not token_id.strip():
            raise validation_failed("id", token_id, "token id is required")
        return token_id.strip()
