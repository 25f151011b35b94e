"""Persistence for expenses."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import ExpenseRow
from .exceptions import StoreError
from .expenses import Expense
from .utils import ensure_utc


class ExpenseRepository(ABC):
    """Abstract base class for expense persistence."""

    @abstractmethod
    def add(self, expense: Expense) -> None:
        pass

    @abstractmethod
    def list(self, category: str | None = None, by_date: bool = False) -> list[Expense]:
        """Return expenses, newest created first.

        Args:
            category: Only this category, if given
            by_date: Order by expense date (newest first) before creation time
        """
        pass

    @abstractmethod
    def categories(self) -> list[str]:
        """Distinct categories in use, alphabetically."""
        pass


class MemoryExpenseRepository(ExpenseRepository):
    """Thread-safe in-memory expense repository (tests, demos)."""

    def __init__(self) -> None:
        self._expenses: list[Expense] = []
        self._lock = threading.Lock()

    def add(self, expense: Expense) -> None:
        with self._lock:
            self._expenses.append(expense)

    def list(self, category: str | None = None, by_date: bool = False) -> list[Expense]:
        with self._lock:
            selected = [e for e in self._expenses if category is None or e.category == category]
        selected.sort(key=lambda e: e.created_at, reverse=True)
        if by_date:
            # sort is stable, so creation order breaks date ties
            selected.sort(key=lambda e: e.date, reverse=True)
        return selected

    def categories(self) -> list[str]:
        with self._lock:
            return sorted({e.category for e in self._expenses})

    def __len__(self) -> int:
        with self._lock:
            return len(self._expenses)


class SqlExpenseRepository(ExpenseRepository):
    """Expense repository backed by SQLAlchemy.

    Args:
        session_factory: Factory returning new SQLAlchemy sessions
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def add(self, expense: Expense) -> None:
        try:
            with self.session_factory() as session, session.begin():
                session.add(_to_row(expense))
        except SQLAlchemyError as e:
            raise StoreError(f"Expense insert failed: {e}") from e

    def list(self, category: str | None = None, by_date: bool = False) -> list[Expense]:
        stmt = select(ExpenseRow)
        if category is not None:
            stmt = stmt.where(ExpenseRow.category == category)
        if by_date:
            stmt = stmt.order_by(ExpenseRow.date.desc(), ExpenseRow.created_at.desc())
        else:
            stmt = stmt.order_by(ExpenseRow.created_at.desc())
        try:
            with self.session_factory() as session:
                return [_to_entity(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise StoreError(f"Expense query failed: {e}") from e

    def categories(self) -> list[str]:
        stmt = select(ExpenseRow.category).distinct().order_by(ExpenseRow.category)
        try:
            with self.session_factory() as session:
                return list(session.scalars(stmt))
        except SQLAlchemyError as e:
            raise StoreError(f"Category query failed: {e}") from e


def _to_row(expense: Expense) -> ExpenseRow:
    return ExpenseRow(
        id=expense.id,
        amount=expense.amount,
        category=expense.category,
        description=expense.description,
        date=expense.date,
        created_at=expense.created_at,
        updated_at=expense.updated_at,
    )


def _to_entity(row: ExpenseRow) -> Expense:
    return Expense(
        id=row.id,
        amount=row.amount,
        category=row.category,
        description=row.description,
        date=row.date,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )
