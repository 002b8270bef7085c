"""
Unit tests for the user token schemas.
"""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from token_policy_core.constants import ExpiresType
from token_policy_core.exceptions import ErrorCode, ValidationError
from token_policy_core.schemas.user_token_schema import (
    UserTokenCreate,
    UserTokenRead,
    UserTokenRenew,
    UserTokenUpdate,
    to_epoch_seconds,
    validate_request,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _read(**overrides):
    fields = {
        "id": "t-1",
        "token": "sk-abc",
        "username": "alice",
        "enabled": True,
        "expires_type": "day",
        "expires_at": NOW + timedelta(hours=24),
        "max_ips": 0,
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return UserTokenRead(**fields)


class TestUserTokenCreate:
    def test_defaults(self):
        request = validate_request(UserTokenCreate, {"username": " alice "})

        assert request.username == "alice"
        assert request.expires_type == ExpiresType.MONTH
        assert request.max_ips == 0
        assert request.description is None
        assert (request.curfew_start, request.curfew_end) == (None, None)

    def test_blank_description_becomes_none(self):
        request = validate_request(UserTokenCreate, {"username": "alice", "description": "  "})

        assert request.description is None

    def test_unknown_keys_ignored(self):
        request = validate_request(UserTokenCreate, {"username": "alice", "enabled": False})

        assert not hasattr(request, "enabled")

    @pytest.mark.parametrize(
        "data, field",
        [
            ({}, "username"),
            ({"username": ""}, "username"),
            ({"username": "a", "max_ips": -1}, "max_ips"),
            ({"username": "a", "expires_type": "year"}, "expires_type"),
            ({"username": "x" * 101}, "username"),
        ],
    )
    def test_invalid(self, data, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_request(UserTokenCreate, data)

        assert exc_info.value.context["field"] == field
        assert exc_info.value.context["schema"] == "UserTokenCreate"

    def test_half_curfew_rejected(self):
        """Test the curfew pair check surfaces as our ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            validate_request(UserTokenCreate, {"username": "a", "curfew_start": "22:00"})

        assert exc_info.value.error_code == ErrorCode.CONSTRAINT_VIOLATION


class TestUserTokenUpdate:
    def test_to_fields_omits_enabled_when_absent(self):
        request = validate_request(UserTokenUpdate, {"username": "alice", "max_ips": 2})

        assert request.to_fields() == {
            "username": "alice",
            "description": None,
            "max_ips": 2,
            "curfew_start": None,
            "curfew_end": None,
        }

    def test_to_fields_includes_enabled(self):
        request = validate_request(
            UserTokenUpdate, {"username": "alice", "max_ips": 0, "enabled": False}
        )

        assert request.to_fields()["enabled"] is False

    def test_max_ips_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_request(UserTokenUpdate, {"username": "alice"})

        assert exc_info.value.error_code == ErrorCode.MISSING_REQUIRED


class TestUserTokenRenew:
    def test_requires_known_class(self):
        with pytest.raises(ValidationError):
            validate_request(UserTokenRenew, {"id": "t-1", "expires_type": "forever"})

    def test_valid(self):
        request = validate_request(UserTokenRenew, {"id": "t-1", "expires_type": "never"})

        assert request.expires_type == ExpiresType.NEVER


class TestUserTokenRead:
    def test_dump_uses_epoch_seconds(self):
        dumped = _read().model_dump()

        assert dumped["created_at"] == int(NOW.timestamp())
        assert dumped["expires_at"] == int(NOW.timestamp()) + 86400
        assert dumped["last_used_at"] is None
        assert dumped["expires_type"] == "day"

    def test_is_expired_boundary(self):
        token = _read()

        assert token.is_expired(NOW + timedelta(hours=23, minutes=59)) is False
        assert token.is_expired(NOW + timedelta(hours=24)) is True

    def test_never_is_not_expired(self):
        token = _read(expires_type="never", expires_at=None)

        assert token.is_expired(NOW + timedelta(days=9999)) is False

    def test_is_active(self):
        assert _read().is_active(NOW) is True
        assert _read(enabled=False).is_active(NOW) is False

    def test_frozen(self):
        with pytest.raises(PydanticValidationError):
            _read().username = "bob"


class TestToEpochSeconds:
    def test_naive_taken_as_utc(self):
        assert to_epoch_seconds(datetime(1970, 1, 1, 0, 1)) == 60

    def test_none(self):
        assert to_epoch_seconds(None) is None
