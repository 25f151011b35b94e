"""Relational store implementation backed by SQLAlchemy."""

from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..db import IdempotencyRow
from ..exceptions import DuplicateKeyError, StoreError
from ..record import IdempotencyRecord
from ..utils import ensure_utc
from .base import Store


class SqlStore(Store):
    """SQL store for idempotency records.

    The primary key on ``idempotency_store.key`` is the uniqueness
    guarantee: concurrent first inserts for one key cannot both commit.
    Each call runs in its own short session.

    Args:
        session_factory: Factory returning new SQLAlchemy sessions
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def find_by_key(self, key: str) -> IdempotencyRecord | None:
        """Retrieve a record by key."""
        try:
            with self.session_factory() as session:
                row = session.get(IdempotencyRow, key)
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise StoreError(f"Idempotency lookup failed: {e}") from e

    def insert_if_absent(self, record: IdempotencyRecord) -> None:
        """Insert a record; a unique violation becomes DuplicateKeyError."""
        try:
            with self.session_factory() as session, session.begin():
                session.add(_to_row(record))
        except IntegrityError as e:
            raise DuplicateKeyError(record.key) from e
        except SQLAlchemyError as e:
            raise StoreError(f"Idempotency insert failed: {e}") from e

    def complete(self, record: IdempotencyRecord) -> None:
        """Overwrite a pending claim."""
        try:
            with self.session_factory() as session, session.begin():
                session.merge(_to_row(record))
        except SQLAlchemyError as e:
            raise StoreError(f"Idempotency update failed: {e}") from e

    def delete(self, key: str) -> None:
        """Delete a record."""
        try:
            with self.session_factory() as session, session.begin():
                session.execute(delete(IdempotencyRow).where(IdempotencyRow.key == key))
        except SQLAlchemyError as e:
            raise StoreError(f"Idempotency delete failed: {e}") from e

    def delete_expired(self, before: datetime) -> int:
        """Delete records that expired before ``before``."""
        try:
            with self.session_factory() as session, session.begin():
                result = session.execute(
                    delete(IdempotencyRow).where(IdempotencyRow.expires_at < before)
                )
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StoreError(f"Idempotency sweep failed: {e}") from e

    def clear(self) -> None:
        """Delete all records (useful for testing)."""
        with self.session_factory() as session, session.begin():
            session.execute(delete(IdempotencyRow))


def _to_row(record: IdempotencyRecord) -> IdempotencyRow:
    return IdempotencyRow(
        key=record.key,
        response=record.response,
        status_code=record.status_code,
        status=record.status,
        fingerprint=record.fingerprint,
        created_at=record.created_at,
        expires_at=record.expires_at,
    )


def _to_record(row: IdempotencyRow) -> IdempotencyRecord:
    return IdempotencyRecord(
        key=row.key,
        response=row.response,
        status_code=row.status_code,
        created_at=ensure_utc(row.created_at),
        expires_at=ensure_utc(row.expires_at),
        fingerprint=row.fingerprint,
        status=row.status,  # type: ignore[arg-type]
    )
