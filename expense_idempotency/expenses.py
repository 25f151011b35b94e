"""Expense entity, payload validation and service."""

import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from .exceptions import ExpenseValidationError
from .money import MoneyCodec, sum_amounts, to_display_string
from .utils import utcnow

logger = logging.getLogger(__name__)

ALLOWED_CATEGORIES = (
    "Food",
    "Transport",
    "Entertainment",
    "Utilities",
    "Healthcare",
    "Shopping",
    "Other",
)
ALLOWED_FIELDS = ("amount", "category", "description", "date")
SORT_DATE_DESC = "date_desc"

DESCRIPTION_MIN_LENGTH = 3
DESCRIPTION_MAX_LENGTH = 500
EARLIEST_DATE = date(2000, 1, 1)

_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)
_SUSPICIOUS_PATTERN = re.compile(r"<script|javascript:|onerror=|onclick=", re.IGNORECASE)


@dataclass
class Expense:
    id: str
    amount: Decimal
    category: str
    description: str
    date: date
    created_at: datetime
    updated_at: datetime

    def to_response(self) -> dict[str, str]:
        """Wire form: the amount as a two-decimal string, never a number."""
        return {
            "id": self.id,
            "amount": to_display_string(self.amount),
            "category": self.category,
            "description": self.description,
            "date": self.date.isoformat(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class ExpenseDraft:
    """A validated creation payload."""

    amount: Decimal
    category: str
    description: str
    date: date


@dataclass(frozen=True)
class FieldError:
    field: str
    reason: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "reason": self.reason, "message": self.message}


@dataclass(frozen=True)
class CategorySummary:
    category: str
    total: Decimal
    count: int

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category,
            "total": to_display_string(self.total),
            "count": self.count,
        }


def validate_expense_payload(
    body: object, codec: MoneyCodec, today: date
) -> ExpenseDraft:
    """Validate a creation body, reporting the first failed rule per field.

    Args:
        body: Decoded JSON request body
        codec: Money codec holding the amount ceiling
        today: Latest permitted expense date

    Returns:
        ExpenseDraft with trimmed text and an exact Decimal amount

    Raises:
        ExpenseValidationError: With one FieldError per invalid field
    """
    if not isinstance(body, dict):
        raise ExpenseValidationError(
            [FieldError("body", "required", "Request body is required")]
        )

    errors: list[FieldError] = []

    amount = codec.validate(body.get("amount"))
    if not amount.valid:
        errors.append(FieldError("amount", amount.reason.value, amount.message))

    category_error = _check_category(body.get("category"))
    if category_error:
        errors.append(category_error)

    description_error = _check_description(body.get("description"))
    if description_error:
        errors.append(description_error)

    expense_date, date_error = _check_date(body.get("date"), today)
    if date_error:
        errors.append(date_error)

    extra = [k for k in body if k not in ALLOWED_FIELDS]
    if extra:
        errors.append(
            FieldError(
                ",".join(str(k) for k in extra),
                "unexpected_field",
                f"Unexpected fields: {', '.join(str(k) for k in extra)}",
            )
        )

    if errors:
        raise ExpenseValidationError(errors)

    return ExpenseDraft(
        amount=codec.to_exact_decimal(body["amount"]),
        category=body["category"].strip(),
        description=body["description"].strip(),
        date=expense_date,  # type: ignore[arg-type]
    )


def validate_list_query(category: object = None, sort: object = None) -> None:
    """Check filter/sort parameters for listing expenses."""
    errors: list[FieldError] = []
    if category is not None:
        if not isinstance(category, str):
            errors.append(FieldError("category", "invalid_type", "Category must be a string"))
        elif category not in ALLOWED_CATEGORIES:
            errors.append(_category_choice_error())
    if sort is not None and sort != SORT_DATE_DESC:
        errors.append(
            FieldError("sort", "invalid_choice", f'Sort must be "{SORT_DATE_DESC}" or omitted')
        )
    if errors:
        raise ExpenseValidationError(errors)


def _check_category(value: object) -> FieldError | None:
    if value is None or value == "":
        return FieldError("category", "required", "Category is required")
    if not isinstance(value, str):
        return FieldError("category", "invalid_type", "Category must be a string")
    trimmed = value.strip()
    if trimmed == "":
        return FieldError("category", "empty", "Category cannot be empty")
    if trimmed not in ALLOWED_CATEGORIES:
        return _category_choice_error()
    return None


def _category_choice_error() -> FieldError:
    return FieldError(
        "category",
        "invalid_choice",
        f"Category must be one of: {', '.join(ALLOWED_CATEGORIES)}",
    )


def _check_description(value: object) -> FieldError | None:
    if value is None or value == "":
        return FieldError("description", "required", "Description is required")
    if not isinstance(value, str):
        return FieldError("description", "invalid_type", "Description must be a string")
    trimmed = value.strip()
    if trimmed == "":
        return FieldError("description", "empty", "Description cannot be empty")
    if len(trimmed) < DESCRIPTION_MIN_LENGTH:
        return FieldError(
            "description",
            "too_short",
            f"Description must be at least {DESCRIPTION_MIN_LENGTH} characters",
        )
    if len(trimmed) > DESCRIPTION_MAX_LENGTH:
        return FieldError(
            "description",
            "too_long",
            f"Description must be {DESCRIPTION_MAX_LENGTH} characters or less",
        )
    if _SUSPICIOUS_PATTERN.search(trimmed):
        return FieldError(
            "description", "invalid_content", "Description contains invalid characters"
        )
    return None


def _check_date(value: object, today: date) -> tuple[date | None, FieldError | None]:
    if value is None or value == "":
        return None, FieldError("date", "required", "Date is required")
    if not isinstance(value, str):
        return None, FieldError(
            "date", "invalid_type", "Date must be a string in YYYY-MM-DD format"
        )
    if not _DATE_PATTERN.fullmatch(value):
        return None, FieldError("date", "invalid_format", "Date must be in YYYY-MM-DD format")
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        return None, FieldError(
            "date", "invalid_date", f"Date is invalid ({value} does not exist)"
        )
    if parsed > today:
        return None, FieldError("date", "in_future", "Date cannot be in the future")
    if parsed < EARLIEST_DATE:
        return None, FieldError(
            "date", "too_old", f"Date cannot be before year {EARLIEST_DATE.year}"
        )
    return parsed, None


class ExpenseService:
    """Business operations on expenses.

    Args:
        repository: Expense persistence (ExpenseRepository)
        codec: Money codec for amount validation
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        repository,
        codec: MoneyCodec | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.codec = codec or MoneyCodec()
        self.clock = clock

    def validate(self, body: object) -> ExpenseDraft:
        return validate_expense_payload(body, self.codec, self.clock().date())

    def create_expense(self, draft: ExpenseDraft) -> Expense:
        now = self.clock()
        expense = Expense(
            id=str(uuid.uuid4()),
            amount=draft.amount,
            category=draft.category,
            description=draft.description,
            date=draft.date,
            created_at=now,
            updated_at=now,
        )
        self.repository.add(expense)
        logger.info("Created expense %s (%s %s)", expense.id, expense.category, expense.amount)
        return expense

    def list_expenses(self, category: str | None = None, sort: str | None = None) -> list[Expense]:
        """List expenses, newest first by date when sort is "date_desc".

        Ties (and the unsorted listing) fall back to creation time, newest
        first, so the order is stable.
        """
        validate_list_query(category, sort)
        return self.repository.list(category=category, by_date=sort == SORT_DATE_DESC)

    def categories(self) -> list[str]:
        return self.repository.categories()

    def summary(self) -> list[CategorySummary]:
        """Totals per category, highest first, summed in exact decimal."""
        grouped: dict[str, list[Decimal]] = {}
        for expense in self.repository.list():
            grouped.setdefault(expense.category, []).append(expense.amount)

        summaries = [
            CategorySummary(category, sum_amounts(amounts), len(amounts))
            for category, amounts in grouped.items()
        ]
        summaries.sort(key=lambda s: (-s.total, s.category))
        return summaries

    def total(self, category: str | None = None) -> Decimal:
        return sum_amounts(e.amount for e in self.repository.list(category=category))
