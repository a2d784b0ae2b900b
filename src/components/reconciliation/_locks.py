"""
Per-key mutual exclusion for the reconciliation coordinator.

A table of `threading.Lock` objects keyed by payment id. Entries are
reference counted and dropped once no thread holds or waits on them, so the
table does not grow with the number of payments ever seen.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock


class LockTimeoutError(Exception):
    """Raised when a key lock could not be acquired in time."""

    def __init__(self, key: str, timeout: float) -> None:
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for lock on {key}")


@dataclass
class _Entry:
    lock: Lock = field(default_factory=Lock)
    users: int = 0


class KeyedLockTable:
    """
    Arena of lock handles keyed by string.

    Usage:
        with locks.hold(payment_id):
            ...  # exclusive for this payment id only
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._entries: dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the lock for `key` for the duration of the block.

        Released on every exit path, including exceptions.

        Raises:
            LockTimeoutError: timeout given and exceeded
        """
        entry = self._checkout(key)
        try:
            acquired = entry.lock.acquire(timeout=timeout if timeout is not None else -1)
            if not acquired:
                raise LockTimeoutError(key, timeout or 0.0)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._guard:
            return key in self._entries
