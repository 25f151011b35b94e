"""Idempotency guard for side-effecting creation requests."""

import functools
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TypeVar

from .exceptions import (
    DuplicateKeyError,
    PayloadMismatchError,
    RequestInProgressError,
    SerializationError,
    StoreError,
)
from .key import fingerprint as payload_fingerprint
from .key import validate_key
from .record import IdempotencyRecord
from .stores import Store
from .utils import utcnow

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)

DEFAULT_TTL = timedelta(hours=24)
DEFAULT_CLAIM_TIMEOUT = timedelta(seconds=60)
PENDING_STATUS_CODE = 202


@dataclass(frozen=True)
class OperationResult:
    """What a protected operation hands back to the guard."""

    body: object
    status_code: int = 201

    @property
    def succeeded(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class Outcome:
    """The response the guard emits.

    Attributes:
        status_code: 201-class when created, 200 when replayed
        body: Parsed response body
        raw: Exact JSON text that was cached (or replayed)
        replayed: True if served from an existing record
    """

    status_code: int
    body: object
    raw: str
    replayed: bool = False

    @property
    def tag(self) -> str:
        if self.replayed:
            return "replay"
        return "created" if 200 <= self.status_code < 300 else "failed"


class IdempotencyGuard:
    """Deduplicates retried requests by client-supplied key.

    The pipeline for one call is strictly lookup, then operation, then
    cache write, then return. There is no in-process lock: the store's
    unique insert is the only point where concurrent requests meet.

    Args:
        store: Storage backend for idempotency records
        ttl: Lifetime of a cached response (default 24 hours)
        clock: Returns the current aware UTC datetime
        on_mismatch: Behavior when a live key arrives with a different
            payload fingerprint:
            - "replay": Return the original response (default)
            - "raise": Raise PayloadMismatchError
        claim_first: Insert a pending placeholder before running the
            operation, so that concurrent first attempts execute it once
        claim_timeout: Age after which a pending placeholder is treated
            as abandoned by a crashed process

    Example:
        guard = IdempotencyGuard(MemoryStore())
        outcome = guard.guard(key, lambda: OperationResult({"id": 1}))
    """

    def __init__(
        self,
        store: Store,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
        on_mismatch: str = "replay",
        claim_first: bool = False,
        claim_timeout: timedelta = DEFAULT_CLAIM_TIMEOUT,
    ) -> None:
        if on_mismatch not in ("replay", "raise"):
            raise ValueError(
                f"on_mismatch must be 'replay' or 'raise', got '{on_mismatch}'"
            )

        self.store = store
        self.ttl = ttl
        self.clock = clock
        self.on_mismatch = on_mismatch
        self.claim_first = claim_first
        self.claim_timeout = claim_timeout

    def guard(
        self,
        key: object,
        operation: Callable[[], OperationResult],
        fingerprint: str | None = None,
    ) -> Outcome:
        """Run ``operation`` at most once per live ``key``.

        Args:
            key: Client idempotency key (canonical UUID text)
            operation: Zero-argument callable performing the side effect
            fingerprint: Optional digest of the request payload

        Returns:
            Outcome tagged "created" (operation ran), "failed" (operation
            returned a non-2xx result, nothing cached) or "replay"

        Raises:
            MissingKeyError, MalformedKeyError: Before anything else runs
            PayloadMismatchError: Live key reused with another payload
                (only when on_mismatch="raise")
            RequestInProgressError: Another request holds a pending claim
            StoreError: Lookup or record write failed
            Exception: Whatever ``operation`` raises, unchanged
        """
        idem_key = validate_key(key)

        existing = self.store.find_by_key(idem_key)
        if existing is not None:
            now = self.clock()
            if existing.is_expired(now) or self._is_abandoned(existing, now):
                self._discard(idem_key)
            else:
                return self._replay(existing, fingerprint)

        if self.claim_first:
            return self._claim_and_run(idem_key, operation, fingerprint)
        return self._run_unclaimed(idem_key, operation, fingerprint)

    def purge_expired(self) -> int:
        """Delete every record already expired at the guard's current time."""
        count = self.store.delete_expired(self.clock())
        logger.info("Purged %d expired idempotency records", count)
        return count

    def _run_unclaimed(
        self,
        idem_key: str,
        operation: Callable[[], OperationResult],
        fingerprint: str | None,
    ) -> Outcome:
        result = operation()
        raw = _serialize_body(result.body)

        if not result.succeeded:
            # Only successes are cached; the key stays usable
            return Outcome(result.status_code, json.loads(raw), raw)

        record = self._build_record(idem_key, raw, result.status_code, fingerprint)
        try:
            self.store.insert_if_absent(record)
        except DuplicateKeyError:
            logger.warning(
                "Lost insert race for idempotency key %s; keeping own response",
                idem_key,
            )

        return Outcome(result.status_code, json.loads(raw), raw)

    def _claim_and_run(
        self,
        idem_key: str,
        operation: Callable[[], OperationResult],
        fingerprint: str | None,
    ) -> Outcome:
        now = self.clock()
        claim = IdempotencyRecord(
            key=idem_key,
            response=None,
            status_code=PENDING_STATUS_CODE,
            created_at=now,
            expires_at=now + self.ttl,
            fingerprint=fingerprint,
            status="pending",
        )
        try:
            self.store.insert_if_absent(claim)
        except DuplicateKeyError:
            existing = self.store.find_by_key(idem_key)
            if existing is None:
                # The winner failed and released its claim
                raise RequestInProgressError(idem_key) from None
            now = self.clock()
            if existing.is_expired(now) or self._is_abandoned(existing, now):
                # Dead record whose delete failed
                logger.warning(
                    "Dead idempotency record %s blocks the claim; running unclaimed",
                    idem_key,
                )
                return self._run_unclaimed(idem_key, operation, fingerprint)
            return self._replay(existing, fingerprint)

        try:
            result = operation()
            raw = _serialize_body(result.body)
        except Exception:
            self._discard(idem_key)
            raise

        if not result.succeeded:
            self._discard(idem_key)
            return Outcome(result.status_code, json.loads(raw), raw)

        self.store.complete(
            self._build_record(idem_key, raw, result.status_code, fingerprint)
        )
        return Outcome(result.status_code, json.loads(raw), raw)

    def _replay(
        self, existing: IdempotencyRecord, fingerprint: str | None
    ) -> Outcome:
        if existing.status == "pending" or existing.response is None:
            raise RequestInProgressError(existing.key)

        if (
            self.on_mismatch == "raise"
            and fingerprint is not None
            and existing.fingerprint is not None
            and fingerprint != existing.fingerprint
        ):
            raise PayloadMismatchError(existing.key)

        logger.info("Replaying cached response for idempotency key %s", existing.key)
        return Outcome(200, json.loads(existing.response), existing.response, True)

    def _build_record(
        self, idem_key: str, raw: str, status_code: int, fingerprint: str | None
    ) -> IdempotencyRecord:
        now = self.clock()
        return IdempotencyRecord(
            key=idem_key,
            response=raw,
            status_code=status_code,
            created_at=now,
            expires_at=now + self.ttl,
            fingerprint=fingerprint,
        )

    def _is_abandoned(self, record: IdempotencyRecord, now: datetime) -> bool:
        return record.status == "pending" and now - record.created_at > self.claim_timeout

    def _discard(self, idem_key: str) -> None:
        """Best-effort delete of a dead record."""
        try:
            self.store.delete(idem_key)
            logger.debug("Removed dead idempotency record %s", idem_key)
        except StoreError:
            logger.warning(
                "Could not remove idempotency record %s", idem_key, exc_info=True
            )


def idempotent(
    guard: IdempotencyGuard, fingerprint_payload: bool = False
) -> Callable[[F], F]:
    """Decorator to route a function through an IdempotencyGuard.

    The wrapped function takes a keyword-only ``idempotency_key`` that is
    consumed by the guard, and must return an OperationResult. The
    wrapper returns the guard's Outcome.

    Args:
        guard: The guard holding the store and policy
        fingerprint_payload: Fingerprint the call arguments so that
            the guard can detect payload drift

    Example:
        @idempotent(guard)
        def create_invoice(user_id, amount):
            return OperationResult({"invoice_id": 123})

        create_invoice(1, "9.99", idempotency_key=key)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: object, idempotency_key: object = None, **kwargs: object) -> Outcome:
            digest = None
            if fingerprint_payload:
                digest = payload_fingerprint({"args": list(args), "kwargs": kwargs})
            return guard.guard(
                idempotency_key, lambda: func(*args, **kwargs), fingerprint=digest
            )

        return wrapper  # type: ignore[return-value]

    return decorator


def _serialize_body(body: object) -> str:
    """Serialize a response body to its cached JSON text.

    Raises:
        SerializationError: If body is not JSON-serializable
    """
    try:
        return json.dumps(body)
    except (TypeError, ValueError) as e:
        raise SerializationError(body, str(e)) from e
