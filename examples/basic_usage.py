"""Basic usage examples for the expense idempotency core."""

import uuid

from expense_idempotency import IdempotencyGuard, MemoryStore, MoneyCodec, OperationResult
from expense_idempotency.expenses import ExpenseService
from expense_idempotency.handler import ExpenseHandler
from expense_idempotency.repository import MemoryExpenseRepository

# Example 1: Guard any side-effecting operation
guard = IdempotencyGuard(MemoryStore())


def charge_card():
    print("💳 Charging card")
    return OperationResult({"charge_id": "ch_123", "amount": "25.00"})


# Example 2: The full create-expense flow
handler = ExpenseHandler(
    IdempotencyGuard(MemoryStore()),
    ExpenseService(MemoryExpenseRepository()),
)
lunch = {"amount": "99.99", "category": "Food", "description": "Lunch", "date": "2026-01-15"}


if __name__ == "__main__":
    print("=" * 60)
    print("Example 1: Guarding an operation")
    print("=" * 60)

    key = str(uuid.uuid4())
    first = guard.guard(key, charge_card)
    print(f"{first.status_code} {first.tag}: {first.body}")

    print("Retrying with the same key...")
    second = guard.guard(key, charge_card)
    print(f"{second.status_code} {second.tag}: {second.body}")
    print("Notice: the card was charged once!\n")

    print("=" * 60)
    print("Example 2: Creating an expense")
    print("=" * 60)

    key = str(uuid.uuid4())
    print(handler.create_expense(key, lunch))
    print("Double-submit...")
    print(handler.create_expense(key, lunch))
    print(f"Expenses stored: {len(handler.service.list_expenses())}\n")

    print("Missing key:")
    print(handler.create_expense(None, lunch))
    print()

    print("=" * 60)
    print("Example 3: Money codec")
    print("=" * 60)

    codec = MoneyCodec()
    for raw in ("5", "0.00", "-1.00", "1.234", "10000001"):
        result = codec.validate(raw)
        if result.valid:
            print(f"{raw!r} -> {codec.to_display_string(codec.to_exact_decimal(raw))}")
        else:
            print(f"{raw!r} rejected: {result.reason.value} ({result.message})")
