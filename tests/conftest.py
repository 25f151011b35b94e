"""Shared test fixtures."""

import logging
from datetime import datetime, timedelta, timezone

import pytest
import structlog

from expense_idempotency import IdempotencyGuard, MemoryStore
from expense_idempotency.db import create_schema, make_engine, make_session_factory
from expense_idempotency.expenses import ExpenseService
from expense_idempotency.handler import ExpenseHandler
from expense_idempotency.money import MoneyCodec
from expense_idempotency.repository import MemoryExpenseRepository


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def guard(store, clock):
    return IdempotencyGuard(store, clock=clock)


@pytest.fixture
def session_factory():
    """In-memory SQLite database with all tables created."""
    engine = make_engine("sqlite://")
    create_schema(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def expense_repository():
    return MemoryExpenseRepository()


@pytest.fixture
def service(expense_repository, clock):
    return ExpenseService(expense_repository, MoneyCodec(), clock=clock)


@pytest.fixture
def handler(guard, service):
    return ExpenseHandler(guard, service)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging so handlers never outlive a test's stdout."""
    root = logging.getLogger()
    level = root.level
    yield
    for h in root.handlers[:]:
        if isinstance(h.formatter, structlog.stdlib.ProcessorFormatter):
            root.removeHandler(h)
    root.setLevel(level)
    structlog.reset_defaults()
