"""
Pydantic schemas for user tokens.

Request schemas validate operator input before any state change; read
schemas are detached snapshots returned by the repository. Instants are
timezone-aware UTC datetimes in Python and integer epoch seconds on the wire.
"""

from datetime import UTC, datetime
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..constants import ExpiresType, Limits
from ..exceptions import ErrorCode, ValidationError
from ..utils.curfew_utils import normalize_curfew_pair


def to_epoch_seconds(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp())


class BaseUserTokenSchema(BaseModel):
    """Base schema for operator requests."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="ignore",
    )


class CurfewMixin(BaseModel):
    """Optional daily blackout window, both ends or neither."""

    curfew_start: Optional[str] = Field(None, description="Window start, HH:MM (inclusive)")
    curfew_end: Optional[str] = Field(None, description="Window end, HH:MM (exclusive)")

    @model_validator(mode="after")
    def validate_curfew_pair(self):
        # Raises our ValidationError directly; pydantic only wraps ValueError
        self.curfew_start, self.curfew_end = normalize_curfew_pair(
            self.curfew_start, self.curfew_end
        )
        return self


class UserTokenCreate(BaseUserTokenSchema, CurfewMixin):
    """Input for create_user_token."""

    username: str = Field(..., min_length=1, max_length=Limits.MAX_USERNAME_LENGTH)
    expires_type: ExpiresType = Field(default=ExpiresType.MONTH)
    description: Optional[str] = Field(None, max_length=Limits.MAX_DESCRIPTION_LENGTH)
    max_ips: int = Field(default=0, ge=0, description="0 = unlimited distinct IPs")

    @field_validator("description")
    @classmethod
    def blank_description_is_none(cls, v):
        return v or None


class UserTokenUpdate(BaseUserTokenSchema, CurfewMixin):
    """
    Input for update_user_token.

    The operator screen sends the full editable set, so ``description`` and
    the curfew pair are always written; missing or null clears them.
    ``enabled`` is only written when supplied.
    """

    username: str = Field(..., min_length=1, max_length=Limits.MAX_USERNAME_LENGTH)
    description: Optional[str] = Field(None, max_length=Limits.MAX_DESCRIPTION_LENGTH)
    max_ips: int = Field(..., ge=0)
    enabled: Optional[bool] = None

    @field_validator("description")
    @classmethod
    def blank_description_is_none(cls, v):
        return v or None

    def to_fields(self) -> Dict[str, Any]:
        """Column values to write."""
        fields: Dict[str, Any] = {
            "username": self.username,
            "description": self.description,
            "max_ips": self.max_ips,
            "curfew_start": self.curfew_start,
            "curfew_end": self.curfew_end,
        }
        if self.enabled is not None:
            fields["enabled"] = self.enabled
        return fields


class UserTokenRenew(BaseUserTokenSchema):
    """Input for renew_user_token."""

    id: str = Field(..., min_length=1)
    expires_type: ExpiresType


class UserTokenRead(BaseModel):
    """Detached snapshot of a token record, as sent to the operator screen."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    token: str = Field(..., description="Bearer secret")
    username: str
    description: Optional[str] = None
    enabled: bool
    expires_type: ExpiresType
    expires_at: Optional[datetime] = None
    max_ips: int
    curfew_start: Optional[str] = None
    curfew_end: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_used_at: Optional[datetime] = None
    total_requests: int = 0
    total_tokens_used: int = 0

    @field_serializer("expires_at", "created_at", "updated_at", "last_used_at")
    def serialize_instant(self, value: Optional[datetime]) -> Optional[int]:
        return to_epoch_seconds(value)

    @field_serializer("expires_type")
    def serialize_expires_type(self, value: ExpiresType) -> str:
        return value.value

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        return self.enabled and not self.is_expired(now)


class UserTokenSummary(BaseModel):
    """Fleet-wide counts for the dashboard."""

    total_tokens: int = 0
    active_tokens: int = 0
    total_users: int = 0
    today_requests: int = 0


class UsageResult(BaseModel):
    """Outcome of one successful usage recording."""

    model_config = ConfigDict(frozen=True)

    token: UserTokenRead
    ip_recorded: bool = Field(False, description="True when the source IP was new")
    distinct_ips: int = 0


class AccessGrant(BaseModel):
    """Returned to the request path when access is allowed."""

    model_config = ConfigDict(frozen=True)

    token_id: str
    username: str
    total_requests: int
    total_tokens_used: int
    last_used_at: datetime
    source_ip: str
    new_ip: bool = False

    @field_serializer("last_used_at")
    def serialize_instant(self, value: datetime) -> Optional[int]:
        return to_epoch_seconds(value)


TRequest = TypeVar("TRequest", bound=BaseModel)


def validate_request(schema_class: Type[TRequest], data: Dict[str, Any]) -> TRequest:
    """
    Build a request schema, re-raising pydantic failures as our ValidationError.

    Only the first failing field is reported, as the operator screen shows one message.
    """
    try:
        return schema_class.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        missing = first.get("type") == "missing"
        raise ValidationError(
            f"Invalid {field or 'request'}: {first.get('msg', str(e))}",
            field=field,
            error_code=ErrorCode.MISSING_REQUIRED if missing else ErrorCode.VALIDATION_FAILED,
            cause=e,
            schema=schema_class.__name__,
        ) from e
