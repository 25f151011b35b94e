"""Expense idempotency core.

Makes retried "create expense" requests safe to replay, and keeps money
as exact decimals from the wire to the database and back.

Example:
    guard = IdempotencyGuard(MemoryStore())
    outcome = guard.guard(key, lambda: OperationResult({"id": "e1"}))
    outcome.status_code  # 201 first time, 200 on replay
"""

from .exceptions import (
    AmountValidationError,
    DuplicateKeyError,
    ExpenseValidationError,
    IdempotencyError,
    KeyValidationError,
    MalformedKeyError,
    MissingKeyError,
    PayloadMismatchError,
    RequestInProgressError,
    SerializationError,
    StoreError,
    ValidationError,
)
from .guard import IdempotencyGuard, OperationResult, Outcome, idempotent
from .money import AmountReason, MoneyCodec, ValidationResult
from .record import IdempotencyRecord
from .stores import MemoryStore, Store

__version__ = "0.1.0"

__all__ = [
    "IdempotencyGuard",
    "OperationResult",
    "Outcome",
    "idempotent",
    "IdempotencyRecord",
    "MoneyCodec",
    "AmountReason",
    "ValidationResult",
    "Store",
    "MemoryStore",
    "IdempotencyError",
    "KeyValidationError",
    "MissingKeyError",
    "MalformedKeyError",
    "PayloadMismatchError",
    "RequestInProgressError",
    "SerializationError",
    "StoreError",
    "DuplicateKeyError",
    "ValidationError",
    "AmountValidationError",
    "ExpenseValidationError",
]
