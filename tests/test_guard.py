"""Tests for the idempotency guard."""

import json
import threading
from datetime import timedelta

import pytest

from expense_idempotency import (
    IdempotencyGuard,
    MalformedKeyError,
    MemoryStore,
    MissingKeyError,
    OperationResult,
    PayloadMismatchError,
    RequestInProgressError,
    SerializationError,
    StoreError,
    idempotent,
)
from expense_idempotency.key import fingerprint
from expense_idempotency.record import IdempotencyRecord

KEY = "11111111-1111-4111-8111-111111111111"


class FailingStore(MemoryStore):
    """MemoryStore whose lookups or writes can be made to fail."""

    def __init__(self, fail_find=False, fail_insert=False, fail_delete=False):
        super().__init__()
        self.fail_find = fail_find
        self.fail_insert = fail_insert
        self.fail_delete = fail_delete
        self.inserts = 0

    def find_by_key(self, key):
        if self.fail_find:
            raise StoreError("store unreachable")
        return super().find_by_key(key)

    def insert_if_absent(self, record):
        self.inserts += 1
        if self.fail_insert:
            raise StoreError("store unreachable")
        super().insert_if_absent(record)

    def delete(self, key):
        if self.fail_delete:
            raise StoreError("store unreachable")
        super().delete(key)


def test_basic_idempotency(guard, store):
    """Test that the operation only runs once per key."""
    call_count = 0

    def create_invoice():
        nonlocal call_count
        call_count += 1
        return OperationResult({"invoice_id": 123, "amount": "100.00"})

    first = guard.guard(KEY, create_invoice)
    assert first.status_code == 201
    assert first.tag == "created"
    assert first.body == {"invoice_id": 123, "amount": "100.00"}
    assert call_count == 1

    second = guard.guard(KEY, create_invoice)
    assert second.status_code == 200
    assert second.tag == "replay"
    assert second.raw == first.raw
    assert second.body == first.body
    assert call_count == 1  # Not incremented

    assert len(store) == 1


def test_replay_ignores_new_result_shape(guard):
    """Test that a replay returns the cached body, not a fresh one."""
    guard.guard(KEY, lambda: OperationResult({"id": "first"}))

    outcome = guard.guard(KEY, lambda: OperationResult({"id": "second"}))

    assert outcome.body == {"id": "first"}


def test_key_is_case_insensitive(guard):
    """Test that upper- and lower-case spellings share one record."""
    guard.guard(KEY.upper(), lambda: OperationResult({"id": 1}))

    outcome = guard.guard(KEY, lambda: OperationResult({"id": 2}))

    assert outcome.replayed
    assert outcome.body == {"id": 1}


@pytest.mark.parametrize("key", [None, "", "   "])
def test_missing_key_rejected_before_operation(guard, key):
    """Test that a missing key never reaches the operation."""
    call_count = 0

    def operation():
        nonlocal call_count
        call_count += 1
        return OperationResult({})

    with pytest.raises(MissingKeyError) as exc_info:
        guard.guard(key, operation)

    assert exc_info.value.reason == "key_required"
    assert call_count == 0


@pytest.mark.parametrize(
    "key",
    [
        "not-a-uuid",
        "11111111111141118111111111111111",
        "11111111-1111-4111-8111-11111111111",
        "11111111-1111-4111-8111-1111111111111",
        "g1111111-1111-4111-8111-111111111111",
        " 11111111-1111-4111-8111-111111111111",
        "11111111-1111-4111-8111-111111111111\n",
        "{11111111-1111-4111-8111-111111111111}",
        12345,
    ],
)
def test_malformed_key_rejected_before_operation(clock, key):
    """Test that a malformed key never reaches the store or operation."""
    failing = FailingStore(fail_find=True)
    guard = IdempotencyGuard(failing, clock=clock)
    call_count = 0

    def operation():
        nonlocal call_count
        call_count += 1
        return OperationResult({})

    with pytest.raises(MalformedKeyError) as exc_info:
        guard.guard(key, operation)

    assert exc_info.value.reason == "key_malformed"
    assert call_count == 0


def test_failure_is_not_cached(guard, store):
    """Test that failures leave the key retryable."""
    call_count = 0

    def flaky():
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            raise ValueError("First call fails")
        return OperationResult({"success": True})

    with pytest.raises(ValueError):
        guard.guard(KEY, flaky)

    assert call_count == 1
    assert store.find_by_key(KEY) is None

    outcome = guard.guard(KEY, flaky)
    assert outcome.status_code == 201
    assert outcome.body == {"success": True}
    assert call_count == 2


def test_non_success_result_is_not_cached(guard, store):
    """Test that a non-2xx result is returned but not recorded."""
    outcome = guard.guard(KEY, lambda: OperationResult({"error": "nope"}, status_code=422))

    assert outcome.status_code == 422
    assert outcome.tag == "failed"
    assert store.find_by_key(KEY) is None


def test_expired_record_runs_operation_again(guard, store, clock):
    """Test that records expire after the TTL."""
    call_count = 0

    def operation():
        nonlocal call_count
        call_count += 1
        return OperationResult({"run": call_count})

    guard.guard(KEY, operation)
    clock.advance(hours=23, minutes=59)
    assert guard.guard(KEY, operation).replayed
    assert call_count == 1

    clock.advance(minutes=2)
    outcome = guard.guard(KEY, operation)

    assert call_count == 2
    assert outcome.status_code == 201
    assert outcome.body == {"run": 2}
    # The new record replaces the dead one
    assert json.loads(store.find_by_key(KEY).response) == {"run": 2}


def test_record_timestamps(guard, store, clock):
    """Test that records expire exactly 24 hours after creation."""
    guard.guard(KEY, lambda: OperationResult({"id": 1}))

    record = store.find_by_key(KEY)
    assert record.created_at == clock.now
    assert record.expires_at == clock.now + timedelta(hours=24)
    assert record.status_code == 201
    assert record.status == "completed"


def test_custom_ttl(store, clock):
    """Test that the TTL is configurable."""
    guard = IdempotencyGuard(store, ttl=timedelta(minutes=5), clock=clock)
    guard.guard(KEY, lambda: OperationResult({"id": 1}))

    clock.advance(minutes=6)

    assert not guard.guard(KEY, lambda: OperationResult({"id": 2})).replayed


def test_expired_record_delete_failure_is_ignored(clock):
    """Test that removing an expired record is best-effort."""
    failing = FailingStore(fail_delete=True)
    guard = IdempotencyGuard(failing, clock=clock)
    guard.guard(KEY, lambda: OperationResult({"id": 1}))
    clock.advance(hours=25)

    outcome = guard.guard(KEY, lambda: OperationResult({"id": 2}))

    # Insert loses against the undeleted dead record, the caller still succeeds
    assert outcome.status_code == 201
    assert outcome.body == {"id": 2}


def test_claim_mode_expired_record_delete_failure_runs_operation(clock):
    """Test that an undeletable expired record is never replayed in claim mode."""
    failing = FailingStore(fail_delete=True)
    guard = IdempotencyGuard(failing, clock=clock, claim_first=True)
    guard.guard(KEY, lambda: OperationResult({"id": 1}))
    clock.advance(hours=25)
    call_count = 0

    def operation():
        nonlocal call_count
        call_count += 1
        return OperationResult({"id": 2})

    outcome = guard.guard(KEY, operation)

    assert call_count == 1
    assert outcome.status_code == 201
    assert outcome.tag == "created"
    assert outcome.body == {"id": 2}


def test_lookup_failure_is_infrastructure_error(clock):
    """Test that a failing lookup raises StoreError before the operation."""
    guard = IdempotencyGuard(FailingStore(fail_find=True), clock=clock)
    call_count = 0

    def operation():
        nonlocal call_count
        call_count += 1
        return OperationResult({})

    with pytest.raises(StoreError):
        guard.guard(KEY, operation)

    assert call_count == 0


def test_write_failure_is_infrastructure_error(clock):
    """Test that a non-duplicate write failure surfaces as StoreError."""
    guard = IdempotencyGuard(FailingStore(fail_insert=True), clock=clock)

    with pytest.raises(StoreError):
        guard.guard(KEY, lambda: OperationResult({"id": 1}))


def test_replay_writes_nothing(clock):
    """Test that replays do not touch the store's write path."""
    failing = FailingStore()
    guard = IdempotencyGuard(failing, clock=clock)
    guard.guard(KEY, lambda: OperationResult({"id": 1}))
    guard.guard(KEY, lambda: OperationResult({"id": 1}))
    guard.guard(KEY, lambda: OperationResult({"id": 1}))

    assert failing.inserts == 1


def test_unserializable_body_raises(guard, store):
    """Test that bodies which cannot be replayed byte-for-byte are refused."""
    with pytest.raises(SerializationError):
        guard.guard(KEY, lambda: OperationResult({"callback": lambda: None}))

    assert store.find_by_key(KEY) is None


def test_payload_mismatch_replays_by_default(guard):
    """Test that a reused key with a new payload still gets the first response."""
    guard.guard(KEY, lambda: OperationResult({"id": 1}), fingerprint=fingerprint({"a": 1}))

    outcome = guard.guard(
        KEY, lambda: OperationResult({"id": 2}), fingerprint=fingerprint({"a": 2})
    )

    assert outcome.replayed
    assert outcome.body == {"id": 1}


def test_payload_mismatch_raises_when_configured(store, clock):
    """Test that on_mismatch='raise' rejects a reused key with a new payload."""
    guard = IdempotencyGuard(store, clock=clock, on_mismatch="raise")
    guard.guard(KEY, lambda: OperationResult({"id": 1}), fingerprint=fingerprint({"a": 1}))

    with pytest.raises(PayloadMismatchError):
        guard.guard(
            KEY, lambda: OperationResult({"id": 2}), fingerprint=fingerprint({"a": 2})
        )

    # The same payload still replays
    outcome = guard.guard(
        KEY, lambda: OperationResult({"id": 2}), fingerprint=fingerprint({"a": 1})
    )
    assert outcome.body == {"id": 1}


def test_invalid_on_mismatch(store):
    """Test that unknown policies are rejected at construction."""
    with pytest.raises(ValueError):
        IdempotencyGuard(store, on_mismatch="merge")


def test_purge_expired(guard, store, clock):
    """Test that purge_expired removes only dead records."""
    guard.guard(KEY, lambda: OperationResult({"id": 1}))
    clock.advance(hours=12)
    guard.guard("22222222-2222-4222-8222-222222222222", lambda: OperationResult({"id": 2}))
    clock.advance(hours=13)

    assert guard.purge_expired() == 1
    assert store.find_by_key(KEY) is None
    assert len(store) == 1


def test_concurrent_first_use_default_mode(store, clock):
    """Test the guarantee for racing first attempts without a claim.

    Both requests pass the lookup before either writes, so both run the
    operation and both get 201; exactly one record survives.
    """
    guard = IdempotencyGuard(store, clock=clock)
    barrier = threading.Barrier(2)
    executions = []
    outcomes = []

    def operation():
        barrier.wait(timeout=5)
        executions.append(threading.get_ident())
        return OperationResult({"thread": threading.get_ident()})

    def request():
        outcomes.append(guard.guard(KEY, operation))

    threads = [threading.Thread(target=request) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(executions) == 2
    assert [o.status_code for o in outcomes] == [201, 201]
    assert len(store) == 1

    # Later retries replay whichever response won the insert
    replay = guard.guard(KEY, operation)
    assert replay.replayed
    assert replay.raw in [o.raw for o in outcomes]


def test_concurrent_first_use_claim_mode(store, clock):
    """Test that claim_first runs the operation once under a race."""
    guard = IdempotencyGuard(store, clock=clock, claim_first=True)
    started = threading.Event()
    release = threading.Event()
    executions = 0

    def operation():
        nonlocal executions
        executions += 1
        started.set()
        release.wait(timeout=5)
        return OperationResult({"id": 1})

    results = []
    winner = threading.Thread(target=lambda: results.append(guard.guard(KEY, operation)))
    winner.start()
    started.wait(timeout=5)

    with pytest.raises(RequestInProgressError):
        guard.guard(KEY, operation)

    release.set()
    winner.join()

    assert executions == 1
    assert results[0].status_code == 201

    replay = guard.guard(KEY, operation)
    assert replay.replayed
    assert replay.raw == results[0].raw
    assert executions == 1


def test_claim_mode_failure_releases_key(store, clock):
    """Test that a failed claimed operation leaves the key retryable."""
    guard = IdempotencyGuard(store, clock=clock, claim_first=True)

    def failing():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        guard.guard(KEY, failing)

    assert store.find_by_key(KEY) is None
    assert guard.guard(KEY, lambda: OperationResult({"id": 1})).status_code == 201


def test_claim_mode_abandoned_claim_is_taken_over(store, clock):
    """Test that a stale pending claim from a crashed worker is replaced."""
    guard = IdempotencyGuard(
        store, clock=clock, claim_first=True, claim_timeout=timedelta(seconds=30)
    )
    store.insert_if_absent(
        IdempotencyRecord(
            key=KEY,
            response=None,
            status_code=202,
            created_at=clock.now,
            expires_at=clock.now + timedelta(hours=24),
            status="pending",
        )
    )

    with pytest.raises(RequestInProgressError):
        guard.guard(KEY, lambda: OperationResult({"id": 1}))

    clock.advance(seconds=31)
    outcome = guard.guard(KEY, lambda: OperationResult({"id": 1}))

    assert outcome.status_code == 201
    assert store.find_by_key(KEY).status == "completed"


def test_idempotent_decorator(guard):
    """Test the decorator form of the guard."""
    call_count = 0

    @idempotent(guard)
    def create_invoice(user_id, amount):
        nonlocal call_count
        call_count += 1
        return OperationResult({"user_id": user_id, "amount": amount})

    first = create_invoice(1, "100.00", idempotency_key=KEY)
    second = create_invoice(1, "100.00", idempotency_key=KEY)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.body == {"user_id": 1, "amount": "100.00"}
    assert call_count == 1
    assert create_invoice.__name__ == "create_invoice"


def test_idempotent_decorator_with_fingerprint(store, clock):
    """Test that the decorator can fingerprint arguments."""
    guard = IdempotencyGuard(store, clock=clock, on_mismatch="raise")

    @idempotent(guard, fingerprint_payload=True)
    def create_invoice(user_id, amount):
        return OperationResult({"user_id": user_id, "amount": amount})

    create_invoice(1, "100.00", idempotency_key=KEY)

    with pytest.raises(PayloadMismatchError):
        create_invoice(1, "200.00", idempotency_key=KEY)


def test_idempotent_decorator_requires_key(guard):
    """Test that the decorator rejects calls without a key."""

    @idempotent(guard)
    def create_invoice():
        return OperationResult({})

    with pytest.raises(MissingKeyError):
        create_invoice()
