"""Redis-based store implementation with atomic inserts."""

import json
from datetime import datetime
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from ..exceptions import DuplicateKeyError, StoreError
from ..record import IdempotencyRecord
from .base import Store

if TYPE_CHECKING:
    from redis import Redis


class RedisStore(Store):
    """Redis-based store for idempotency records.

    Uniqueness comes from SET NX; Redis also expires each key natively
    at the record's ``expires_at``. An index sorted set lets
    ``delete_expired`` find records without scanning the keyspace.

    Args:
        client: Redis client instance
        prefix: Key prefix for namespacing (default: "idempotency:")
    """

    def __init__(self, client: "Redis", prefix: str = "idempotency:") -> None:
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        """Add prefix to key."""
        return f"{self.prefix}{key}"

    @property
    def _index_key(self) -> str:
        return f"{self.prefix}expiry-index"

    def find_by_key(self, key: str) -> IdempotencyRecord | None:
        """Retrieve a record from Redis."""
        try:
            data = self.client.get(self._key(key))
        except RedisError as e:
            raise StoreError(f"Redis lookup failed: {e}") from e

        if data is None:
            return None

        try:
            return IdempotencyRecord.from_dict(json.loads(data))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise StoreError(f"Corrupt idempotency record for key {key}") from e

    def insert_if_absent(self, record: IdempotencyRecord) -> None:
        """Insert with SET NX, expiring natively at ``expires_at``."""
        try:
            created = self.client.set(
                self._key(record.key),
                json.dumps(record.to_dict()),
                nx=True,
                exat=_epoch_seconds(record.expires_at),
            )
            if not created:
                raise DuplicateKeyError(record.key)
            self.client.zadd(
                self._index_key, {record.key: record.expires_at.timestamp()}
            )
        except RedisError as e:
            raise StoreError(f"Redis insert failed: {e}") from e

    def complete(self, record: IdempotencyRecord) -> None:
        """Overwrite a pending claim (XX: only if the claim still exists)."""
        try:
            self.client.set(
                self._key(record.key),
                json.dumps(record.to_dict()),
                xx=True,
                exat=_epoch_seconds(record.expires_at),
            )
            self.client.zadd(
                self._index_key, {record.key: record.expires_at.timestamp()}
            )
        except RedisError as e:
            raise StoreError(f"Redis update failed: {e}") from e

    def delete(self, key: str) -> None:
        """Delete a record from Redis."""
        try:
            self.client.delete(self._key(key))
            self.client.zrem(self._index_key, key)
        except RedisError as e:
            raise StoreError(f"Redis delete failed: {e}") from e

    def delete_expired(self, before: datetime) -> int:
        """Delete records indexed as expiring before ``before``."""
        try:
            keys = self.client.zrangebyscore(
                self._index_key, "-inf", f"({before.timestamp()}"
            )
            if not keys:
                return 0
            # Keys Redis already dropped via EXAT still count once via the index
            self.client.delete(*[self._key(_decode(k)) for k in keys])
            return int(self.client.zrem(self._index_key, *keys))
        except RedisError as e:
            raise StoreError(f"Redis sweep failed: {e}") from e

    def clear(self) -> None:
        """Clear all records with this prefix (useful for testing)."""
        pattern = f"{self.prefix}*"
        cursor = 0

        while True:
            cursor, keys = self.client.scan(cursor, match=pattern, count=100)
            if keys:
                self.client.delete(*keys)
            if cursor == 0:
                break


def _epoch_seconds(moment: datetime) -> int:
    # Round up so Redis never drops a record before the guard would
    return int(moment.timestamp()) + 1


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value
