"""Storage backends for idempotency records."""

from .base import Store
from .memory import MemoryStore

__all__ = ["Store", "MemoryStore", "SqlStore", "RedisStore"]


def __getattr__(name: str) -> type:
    if name == "RedisStore":
        from .redis import RedisStore

        return RedisStore
    if name == "SqlStore":
        from .sql import SqlStore

        return SqlStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
