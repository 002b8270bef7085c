"""
Tests for the user token repository.
"""

from datetime import UTC, date, datetime, timedelta

import pytest

from token_policy_core.db.db_user_token_models import UserToken, UserTokenDailyUsage
from token_policy_core.exceptions import (
    DuplicateSecretError,
    IPLimitExceededError,
    NotFoundError,
    RepositoryError,
    TokenDisabledError,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _create(repository, secret="sk-test-secret-0001", **overrides):
    fields = {
        "username": "alice",
        "description": "ci pipeline",
        "expires_type": "day",
        "expires_at": NOW + timedelta(hours=24),
        "max_ips": 0,
        "curfew_start": None,
        "curfew_end": None,
    }
    fields.update(overrides)
    return repository.create(secret, now=NOW, **fields)


class TestCreateAndGet:
    """Test inserting and reading token records."""

    def test_create_returns_snapshot(self, repository):
        """Test a created token starts enabled with zero counters."""
        token = _create(repository)

        assert token.id
        assert token.token == "sk-test-secret-0001"
        assert token.username == "alice"
        assert token.enabled is True
        assert token.total_requests == 0
        assert token.total_tokens_used == 0
        assert token.last_used_at is None
        assert token.created_at == NOW
        assert token.updated_at == NOW

    def test_get_round_trip_preserves_instants_as_utc(self, repository):
        """Test stored datetimes come back timezone-aware and equal."""
        created = _create(repository)

        fetched = repository.get(created.id)

        assert fetched == created
        assert fetched.expires_at == NOW + timedelta(hours=24)
        assert fetched.expires_at.tzinfo is not None

    def test_secret_is_stored_hashed(self, repository, db_manager):
        """Test the lookup column holds a digest, not the secret."""
        created = _create(repository)

        session = db_manager.new_session()
        try:
            row = session.get(UserToken, created.id)
            assert row.token_hash != created.token
            assert len(row.token_hash) == 64
        finally:
            session.close()

    def test_get_by_secret(self, repository):
        """Test lookup by bearer secret."""
        created = _create(repository)

        assert repository.get_by_secret("sk-test-secret-0001").id == created.id

    def test_get_missing_raises_not_found(self, repository):
        """Test unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            repository.get("does-not-exist")

    def test_get_by_unknown_or_empty_secret_raises_not_found(self, repository):
        """Test unknown and empty secrets raise NotFoundError."""
        _create(repository)

        with pytest.raises(NotFoundError):
            repository.get_by_secret("sk-unknown")
        with pytest.raises(NotFoundError):
            repository.get_by_secret("")

    def test_duplicate_secret_raises(self, repository):
        """Test a colliding secret raises DuplicateSecretError."""
        _create(repository)

        with pytest.raises(DuplicateSecretError):
            _create(repository, username="bob")


class TestUpdateAndDelete:
    """Test mutation of policy fields and deletion."""

    def test_update_writes_fields_and_bumps_updated_at(self, repository):
        """Test update writes given columns and moves updated_at."""
        created = _create(repository)
        later = NOW + timedelta(minutes=5)

        updated = repository.update(
            created.id, {"username": "bob", "max_ips": 3, "enabled": False}, now=later
        )

        assert updated.username == "bob"
        assert updated.max_ips == 3
        assert updated.enabled is False
        assert updated.updated_at == later
        assert updated.created_at == NOW

    def test_update_none_clears_nullable_fields(self, repository):
        """Test None clears description and curfew."""
        created = _create(repository, curfew_start="22:00", curfew_end="06:00")

        updated = repository.update(
            created.id, {"description": None, "curfew_start": None, "curfew_end": None}
        )

        assert updated.description is None
        assert updated.curfew_start is None
        assert updated.curfew_end is None

    def test_update_missing_raises_not_found(self, repository):
        """Test updating an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            repository.update("missing", {"username": "x"})

    def test_update_rejects_immutable_fields(self, repository):
        """Test counters and secret cannot be written through update."""
        created = _create(repository)

        with pytest.raises(RepositoryError):
            repository.update(created.id, {"total_requests": 0})

    def test_delete_is_idempotent(self, repository):
        """Test delete reports existence and a second delete is harmless."""
        created = _create(repository)

        assert repository.delete(created.id) is True
        assert repository.delete(created.id) is False
        with pytest.raises(NotFoundError):
            repository.get(created.id)

    def test_delete_removes_seen_ips(self, repository):
        """Test seen IP rows go with the token."""
        created = _create(repository)
        repository.record_usage(created.id, 0, "10.0.0.1", NOW)

        repository.delete(created.id)

        assert repository.seen_ips(created.id) == []

    def test_list_returns_newest_first(self, repository):
        """Test list ordering and completeness."""
        first = repository.create(
            "sk-first", now=NOW, username="a", expires_type="never", expires_at=None
        )
        second = repository.create(
            "sk-second",
            now=NOW + timedelta(seconds=1),
            username="b",
            expires_type="never",
            expires_at=None,
        )

        assert [t.id for t in repository.list()] == [second.id, first.id]


class TestRecordUsage:
    """Test atomic usage accounting."""

    def test_counters_accumulate(self, repository):
        """Test k calls add k requests and the sum of deltas."""
        created = _create(repository)

        deltas = [5, 0, 12, 3]
        for delta in deltas:
            result = repository.record_usage(created.id, delta, "10.0.0.1", NOW)

        assert result.token.total_requests == len(deltas)
        assert result.token.total_tokens_used == sum(deltas)
        assert result.token.last_used_at == NOW

    def test_ip_limit_admits_n_and_rejects_n_plus_one(self, repository):
        """Test N distinct IPs are admitted and the N+1th is denied."""
        created = _create(repository, max_ips=2)

        first = repository.record_usage(created.id, 1, "10.0.0.1", NOW)
        second = repository.record_usage(created.id, 1, "10.0.0.2", NOW)
        assert first.ip_recorded and second.ip_recorded
        assert second.distinct_ips == 2

        with pytest.raises(IPLimitExceededError) as exc_info:
            repository.record_usage(created.id, 1, "10.0.0.3", NOW)
        assert exc_info.value.context["max_ips"] == 2

        # Known IPs keep working
        again = repository.record_usage(created.id, 1, "10.0.0.1", NOW)
        assert again.ip_recorded is False
        assert again.token.total_requests == 3

    def test_denied_usage_changes_nothing(self, repository):
        """Test a rejected IP leaves counters untouched."""
        created = _create(repository, max_ips=1)
        repository.record_usage(created.id, 4, "10.0.0.1", NOW)

        with pytest.raises(IPLimitExceededError):
            repository.record_usage(created.id, 9, "10.0.0.2", NOW)

        token = repository.get(created.id)
        assert token.total_requests == 1
        assert token.total_tokens_used == 4
        assert repository.seen_ips(created.id) == ["10.0.0.1"]

    def test_zero_max_ips_is_unlimited(self, repository):
        """Test max_ips=0 admits any number of addresses."""
        created = _create(repository, max_ips=0)

        for i in range(20):
            repository.record_usage(created.id, 0, f"10.0.1.{i}", NOW)

        assert len(repository.seen_ips(created.id)) == 20

    def test_guard_runs_on_fresh_snapshot_and_can_refuse(self, repository):
        """Test the guard sees the current row and its exception aborts the write."""
        created = _create(repository)
        repository.update(created.id, {"enabled": False})
        seen = []

        def guard(snapshot):
            seen.append(snapshot.enabled)
            if not snapshot.enabled:
                raise TokenDisabledError(token_id=snapshot.id)

        with pytest.raises(TokenDisabledError):
            repository.record_usage(created.id, 1, "10.0.0.1", NOW, guard=guard)

        assert seen == [False]
        assert repository.get(created.id).total_requests == 0

    def test_missing_token_raises_not_found(self, repository):
        """Test usage against an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            repository.record_usage("missing", 1, "10.0.0.1", NOW)

    def test_negative_delta_rejected(self, repository):
        """Test counters cannot be decreased."""
        created = _create(repository)

        with pytest.raises(RepositoryError):
            repository.record_usage(created.id, -1, "10.0.0.1", NOW)

    def test_daily_bucket_tracks_requests_per_day(self, repository, db_manager):
        """Test usage lands in the bucket for the access day."""
        created = _create(repository, expires_type="never", expires_at=None)
        repository.record_usage(created.id, 2, "10.0.0.1", NOW)
        repository.record_usage(created.id, 3, "10.0.0.1", NOW)
        repository.record_usage(created.id, 1, "10.0.0.1", NOW + timedelta(days=1))

        session = db_manager.new_session()
        try:
            today = session.get(UserTokenDailyUsage, (created.id, date(2026, 3, 10)))
            tomorrow = session.get(UserTokenDailyUsage, (created.id, date(2026, 3, 11)))
            assert (today.request_count, today.tokens_used) == (2, 5)
            assert (tomorrow.request_count, tomorrow.tokens_used) == (1, 1)
        finally:
            session.close()


class TestRollups:
    """Test summary and maintenance queries."""

    def test_summary_counts(self, repository):
        """Test total, active, users and today's requests."""
        active = _create(repository, secret="sk-1", username="alice")
        _create(repository, secret="sk-2", username="alice", expires_at=NOW - timedelta(hours=1))
        disabled = _create(repository, secret="sk-3", username="bob")
        repository.update(disabled.id, {"enabled": False})
        _create(repository, secret="sk-4", username="carol", expires_type="never", expires_at=None)

        repository.record_usage(active.id, 1, "10.0.0.1", NOW)
        repository.record_usage(active.id, 1, "10.0.0.1", NOW)
        repository.record_usage(active.id, 1, "10.0.0.1", NOW - timedelta(days=1))

        summary = repository.summary_counts(NOW)

        assert summary.total_tokens == 4
        assert summary.active_tokens == 2
        assert summary.total_users == 3
        assert summary.today_requests == 2

    def test_today_requests_survive_token_deletion(self, repository):
        """Test deleting a token keeps its share of today's requests."""
        created = _create(repository)
        repository.record_usage(created.id, 1, "10.0.0.1", NOW)

        repository.delete(created.id)

        assert repository.summary_counts(NOW).today_requests == 1

    def test_count_expired_and_prune(self, repository):
        """Test expired count and bucket pruning."""
        created = _create(repository, expires_at=NOW - timedelta(seconds=1))
        repository.record_usage(created.id, 1, "10.0.0.1", NOW - timedelta(days=40))
        repository.record_usage(created.id, 1, "10.0.0.1", NOW)

        assert repository.count_expired(NOW) == 1
        assert repository.prune_daily_usage(date(2026, 2, 1)) == 1
        assert repository.summary_counts(NOW).today_requests == 1

    def test_access_denials_are_logged(self, repository):
        """Test best-effort denial log writes and reads back."""
        assert repository.log_access_denial("expired", token_id="t-1", client_ip="10.0.0.1", now=NOW)

        entries = repository.list_access_denials("t-1")
        assert len(entries) == 1
        assert entries[0]["reason"] == "expired"
        assert entries[0]["client_ip"] == "10.0.0.1"
