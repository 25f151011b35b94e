"""Exceptions for the expense idempotency core."""


class IdempotencyError(Exception):
    """Base exception for idempotency-related errors."""


class KeyValidationError(IdempotencyError):
    """Raise when an idempotency key is rejected before any lookup."""

    reason = "key_invalid"


class MissingKeyError(KeyValidationError):
    """Raise when no idempotency key was supplied."""

    reason = "key_required"

    def __init__(self) -> None:
        super().__init__("Idempotency-Key header is required")


class MalformedKeyError(KeyValidationError):
    """Raise when the idempotency key is not a canonical UUID."""

    reason = "key_malformed"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__("Idempotency-Key must be a canonical UUID")


class PayloadMismatchError(IdempotencyError):
    """Raise when a live key is replayed with a different payload."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(
            f"Idempotency key '{key}' was already used with a different payload"
        )


class RequestInProgressError(IdempotencyError):
    """Raise when another request holds a pending claim on the key."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"A request with idempotency key '{key}' is in progress")


class SerializationError(IdempotencyError):
    """Raise when a response body cannot be serialized for caching."""

    def __init__(self, value: object, reason: str) -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"Cannot serialize response: {reason}")


class StoreError(IdempotencyError):
    """Raise when a backing store fails (infrastructure failure)."""


class DuplicateKeyError(StoreError):
    """Raise when inserting a record whose key already exists."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Record already exists for key: {key}")


class ValidationError(Exception):
    """Base exception for rejected business input."""


class AmountValidationError(ValidationError):
    """Raise when a monetary amount fails validation."""

    def __init__(self, reason: object, message: str) -> None:
        self.reason = reason
        self.message = message
        super().__init__(message)


class ExpenseValidationError(ValidationError):
    """Raise when an expense payload fails validation.

    Attributes:
        errors: One FieldError per offending field, first violated rule only
    """

    def __init__(self, errors: list) -> None:
        self.errors = errors
        super().__init__("Invalid request data")
