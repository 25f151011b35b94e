"""Examples of using different storage backends."""

import uuid

from expense_idempotency import IdempotencyGuard, OperationResult
from expense_idempotency.db import create_schema, make_engine, make_session_factory
from expense_idempotency.stores import MemoryStore, SqlStore


def create_invoice():
    print("  → Creating invoice")
    return OperationResult({"invoice_id": 123, "amount": "100.00"})


# Example 1: MemoryStore (single process only)
print("=" * 60)
print("Example 1: MemoryStore (in-memory, single process)")
print("=" * 60)

guard = IdempotencyGuard(MemoryStore())
key = str(uuid.uuid4())
print(f"First call: {guard.guard(key, create_invoice)}")
print(f"Second call: {guard.guard(key, create_invoice)}")
print()

# Example 2: SqlStore (unique key enforced by the database)
print("=" * 60)
print("Example 2: SqlStore (SQLite file, survives restarts)")
print("=" * 60)

engine = make_engine("sqlite:////tmp/idempotency_demo.db")
create_schema(engine)
guard = IdempotencyGuard(SqlStore(make_session_factory(engine)))
key = str(uuid.uuid4())
print(f"First call: {guard.guard(key, create_invoice)}")
print(f"Second call: {guard.guard(key, create_invoice)}")
print()

# Example 3: RedisStore (distributed, multi-server safe)
print("=" * 60)
print("Example 3: RedisStore (distributed, multi-server safe)")
print("=" * 60)

try:
    import redis

    from expense_idempotency.stores import RedisStore

    client = redis.Redis(host="localhost", port=6379, db=0)
    client.ping()

    guard = IdempotencyGuard(RedisStore(client))
    key = str(uuid.uuid4())
    print(f"First call: {guard.guard(key, create_invoice)}")
    print(f"Second call: {guard.guard(key, create_invoice)}")
except redis.exceptions.ConnectionError:
    print("Redis server not running, skipping")
