"""In-memory store implementation."""

import threading
from datetime import datetime

from ..exceptions import DuplicateKeyError
from ..record import IdempotencyRecord
from .base import Store


class MemoryStore(Store):
    """Thread-safe in-memory store for idempotency records.

    Note: This store does NOT persist across processes or restarts.
    Use SqlStore or RedisStore for multi-process scenarios.
    """

    def __init__(self) -> None:
        self._records: dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()

    def find_by_key(self, key: str) -> IdempotencyRecord | None:
        """Retrieve a record by key."""
        with self._lock:
            return self._records.get(key)

    def insert_if_absent(self, record: IdempotencyRecord) -> None:
        """Insert a record, failing if the key is taken."""
        with self._lock:
            if record.key in self._records:
                raise DuplicateKeyError(record.key)
            self._records[record.key] = record

    def complete(self, record: IdempotencyRecord) -> None:
        """Overwrite a pending claim."""
        with self._lock:
            self._records[record.key] = record

    def delete(self, key: str) -> None:
        """Delete a record."""
        with self._lock:
            self._records.pop(key, None)

    def delete_expired(self, before: datetime) -> int:
        """Delete records that expired before ``before``."""
        with self._lock:
            expired = [
                key
                for key, record in self._records.items()
                if record.expires_at < before
            ]
            for key in expired:
                del self._records[key]
            return len(expired)

    def clear(self) -> None:
        """Clear all records (useful for testing)."""
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
