"""
Per-record mutual exclusion.

Mutations of one token (usage, update, renew, delete) run one at a time;
distinct tokens never contend. Lock entries are reference counted and
dropped once no thread holds or waits on them, so the registry stays
proportional to the number of in-flight requests.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

from ..exceptions import ErrorCode, StoreTimeoutError


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class RecordLockRegistry:
    """Hands out one lock per record id."""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._entries: Dict[str, _LockEntry] = {}

    def _checkout(self, record_id: str) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(record_id)
            if entry is None:
                entry = self._entries[record_id] = _LockEntry()
            entry.users += 1
            return entry

    def _release(self, record_id: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(record_id, None)

    @contextmanager
    def hold(self, record_id: str) -> Iterator[None]:
        """
        Hold the lock for ``record_id`` for the duration of the block.

        Raises:
            StoreTimeoutError: If the lock is not acquired within the timeout
        """
        entry = self._checkout(record_id)
        try:
            if not entry.lock.acquire(timeout=self.timeout_seconds):
                raise StoreTimeoutError(
                    "Timed out waiting for token lock",
                    error_code=ErrorCode.LOCKED,
                    token_id=record_id,
                    timeout_seconds=self.timeout_seconds,
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._release(record_id, entry)

    def active_ids(self) -> List[str]:
        """Ids that currently have a holder or waiter."""
        with self._guard:
            return list(self._entries)
