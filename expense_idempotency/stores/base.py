"""Base store interface for idempotency records."""

from abc import ABC, abstractmethod
from datetime import datetime

from ..record import IdempotencyRecord


class Store(ABC):
    """Abstract base class for idempotency stores.

    Stores are responsible for:
    - Persisting idempotency records
    - Enforcing key uniqueness atomically at insert time
    - Purging expired records on request

    Stores do not judge expiry on lookup; the guard does, using its clock.
    """

    @abstractmethod
    def find_by_key(self, key: str) -> IdempotencyRecord | None:
        """Retrieve a record by key.

        Args:
            key: The idempotency key

        Returns:
            Record if found (expired or not), None otherwise

        Raises:
            StoreError: If the backend cannot be read
        """
        pass

    @abstractmethod
    def insert_if_absent(self, record: IdempotencyRecord) -> None:
        """Insert a record unless one with the same key exists.

        Args:
            record: The record to insert

        Raises:
            DuplicateKeyError: If a record with this key already exists
            StoreError: If the backend cannot be written
        """
        pass

    @abstractmethod
    def complete(self, record: IdempotencyRecord) -> None:
        """Overwrite a pending claim with its completed record.

        Args:
            record: The completed record (same key as the claim)
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a record.

        Args:
            key: The idempotency key
        """
        pass

    @abstractmethod
    def delete_expired(self, before: datetime) -> int:
        """Delete every record whose expiry is earlier than ``before``.

        Args:
            before: Cut-off instant

        Returns:
            Number of records deleted
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Delete all records (useful for testing)."""
        pass
