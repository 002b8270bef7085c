"""
Unit tests for the per-record lock registry.
"""

import threading
import time

import pytest

from token_policy_core.context.record_locks import RecordLockRegistry
from token_policy_core.exceptions import ErrorCode, StoreTimeoutError


class TestRecordLockRegistry:
    """Test per-record mutual exclusion."""

    def test_entries_dropped_after_release(self):
        registry = RecordLockRegistry()

        with registry.hold("token-1"):
            assert registry.active_ids() == ["token-1"]

        assert registry.active_ids() == []

    def test_same_record_is_serialized(self):
        """Test two holders of one id never overlap."""
        registry = RecordLockRegistry()
        inside = []
        overlaps = []

        def work():
            with registry.hold("token-1"):
                inside.append(1)
                if len(inside) > 1:
                    overlaps.append(True)
                time.sleep(0.02)
                inside.pop()

        threads = [threading.Thread(target=work) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlaps == []
        assert registry.active_ids() == []

    def test_distinct_records_do_not_contend(self):
        """Test holding one id does not block another."""
        registry = RecordLockRegistry(timeout_seconds=0.1)
        acquired = threading.Event()

        with registry.hold("token-1"):

            def other():
                with registry.hold("token-2"):
                    acquired.set()

            thread = threading.Thread(target=other)
            thread.start()
            thread.join()

        assert acquired.is_set()

    def test_timeout_raises_store_timeout(self):
        """Test a waiter gives up after the timeout and leaves no entry behind."""
        registry = RecordLockRegistry(timeout_seconds=0.05)
        errors = []

        def waiter():
            try:
                with registry.hold("token-1"):
                    pass
            except StoreTimeoutError as e:
                errors.append(e)

        with registry.hold("token-1"):
            thread = threading.Thread(target=waiter)
            thread.start()
            thread.join()

        assert len(errors) == 1
        assert errors[0].context["token_id"] == "token-1"
        assert errors[0].retryable is True
        assert errors[0].error_code == ErrorCode.LOCKED
        assert registry.active_ids() == []

    def test_lock_released_when_block_raises(self):
        registry = RecordLockRegistry(timeout_seconds=0.05)

        with pytest.raises(ValueError):
            with registry.hold("token-1"):
                raise ValueError("boom")

        with registry.hold("token-1"):
            pass
