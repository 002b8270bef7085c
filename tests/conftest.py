"""
Test fixtures for the token policy core.

Each test gets its own file-backed SQLite database so worker threads in the
concurrency tests see the same data through separate connections.
"""

import os
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from token_policy_core.config import AppConfig, TokenPolicyConfig, reset_config, set_config
from token_policy_core.context.record_locks import RecordLockRegistry
from token_policy_core.db.db_config import (
    DatabaseConfig,
    DatabaseManager,
    init_db,
    set_db_manager,
)
from token_policy_core.exceptions import clear_correlation_id
from token_policy_core.repositories.user_token_repository import UserTokenRepository
from token_policy_core.services.user_token_service import UserTokenService
from token_policy_core.utils.logger import reset_logging


class FakeClock:
    """Controllable clock; call it to read the current instant."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


@pytest.fixture(autouse=True)
def isolated_environment():
    """Fresh global config, logger and correlation id per test; no queue logging."""
    with patch.dict(os.environ, {"AzureWebJobsStorage": ""}, clear=False):
        reset_config()
        reset_logging()
        clear_correlation_id()
        yield
        reset_config()
        reset_logging()
        clear_correlation_id()


@pytest.fixture
def policy_config() -> TokenPolicyConfig:
    """Policy with curfew and day buckets evaluated in UTC."""
    return TokenPolicyConfig(
        secret_prefix="sk-",
        secret_bytes=32,
        secret_max_attempts=3,
        lock_timeout_seconds=5.0,
        curfew_timezone="UTC",
        trust_proxy_headers=False,
        daily_usage_retention_days=30,
        record_access_denials=True,
    )


@pytest.fixture
def app_config(policy_config) -> AppConfig:
    config = AppConfig(policy=policy_config)
    set_config(config)
    return config


@pytest.fixture
def db_config(tmp_path) -> DatabaseConfig:
    """SQLite database file under the test's temporary directory."""
    return DatabaseConfig(
        db_type="sqlite",
        database=str(tmp_path / "user_tokens.db"),
        sqlite_busy_timeout=30.0,
        echo=False,
        development_mode=True,
    )


@pytest.fixture
def db_manager(db_config, app_config):
    """Initialized database manager, registered as the global one."""
    manager = DatabaseManager(db_config)
    init_db(manager)
    set_db_manager(manager)

    yield manager

    set_db_manager(None)
    manager.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def lock_registry(policy_config) -> RecordLockRegistry:
    return RecordLockRegistry(policy_config.lock_timeout_seconds)


@pytest.fixture
def repository(db_manager, policy_config, lock_registry) -> UserTokenRepository:
    return UserTokenRepository(db_manager, policy_config, lock_registry)


@pytest.fixture
def service(db_manager, policy_config, clock, lock_registry) -> UserTokenService:
    return UserTokenService(
        db_manager=db_manager,
        policy_config=policy_config,
        clock=clock,
        lock_registry=lock_registry,
    )


@pytest.fixture
def issuer(service):
    return service.issuer


@pytest.fixture
def policy(service):
    return service.policy


@pytest.fixture
def summary_service(service):
    return service.summary_service


@pytest.fixture
def make_token(issuer):
    """Factory issuing a token with sensible defaults."""

    def _make_token(**overrides):
        fields = {
            "username": "alice",
            "description": None,
            "expires_type": "month",
            "max_ips": 0,
            "curfew_start": None,
            "curfew_end": None,
        }
        fields.update(overrides)
        return issuer.create(**fields)

    return _make_token
