"""Exact-decimal handling of monetary amounts.

Amounts cross the wire as strings such as ``"99.99"`` and live inside the
process as ``Decimal`` values with exactly two fractional digits. Nothing
in this module converts an amount to ``float``.
"""

import enum
import re
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .exceptions import AmountValidationError

CENT = Decimal("0.01")

# Column capacity: NUMERIC(12, 2)
STRUCTURAL_CEILING = Decimal("9999999999.99")
DEFAULT_CEILING = Decimal("10000000")

_AMOUNT_PATTERN = re.compile(r"\d+(\.\d{1,2})?", re.ASCII)
_EXCESS_DECIMALS_PATTERN = re.compile(r"\d+\.\d{3,}", re.ASCII)


class AmountReason(str, enum.Enum):
    """Why an amount was rejected, in the order rules are checked."""

    REQUIRED = "required"
    INVALID_TYPE = "invalid_type"
    INVALID_FORMAT = "invalid_format"
    TOO_MANY_DECIMALS = "too_many_decimals"
    NOT_POSITIVE = "not_positive"
    TOO_LARGE = "too_large"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    value: str | None = None
    reason: AmountReason | None = None
    message: str | None = None

    def raise_for_error(self) -> str:
        """Return the validated string or raise AmountValidationError."""
        if not self.valid:
            raise AmountValidationError(self.reason, self.message or "")
        return self.value  # type: ignore[return-value]


class MoneyCodec:
    """Validates and converts amounts at the system boundary.

    Args:
        ceiling: Business maximum; the structural maximum still applies
            when this is looser
    """

    def __init__(self, ceiling: Decimal = DEFAULT_CEILING) -> None:
        if not isinstance(ceiling, Decimal):
            ceiling = Decimal(str(ceiling))
        self.ceiling = min(ceiling, STRUCTURAL_CEILING)

    def validate(self, raw: object) -> ValidationResult:
        """Check an amount string, reporting the first violated rule."""
        if raw is None or (isinstance(raw, str) and raw.strip() == ""):
            return _reject(AmountReason.REQUIRED, "Amount is required")

        if not isinstance(raw, str):
            return _reject(
                AmountReason.INVALID_TYPE, "Amount must be a string for precision"
            )

        if not _AMOUNT_PATTERN.fullmatch(raw):
            if _EXCESS_DECIMALS_PATTERN.fullmatch(raw):
                return _reject(
                    AmountReason.TOO_MANY_DECIMALS,
                    "Amount must have at most 2 decimal places",
                )
            return _reject(
                AmountReason.INVALID_FORMAT,
                "Amount must be a positive number with maximum 2 decimal places "
                "(e.g., 123.45)",
            )

        value = Decimal(raw)
        if value <= 0:
            return _reject(AmountReason.NOT_POSITIVE, "Amount must be greater than 0")

        if value > self.ceiling:
            return _reject(
                AmountReason.TOO_LARGE, f"Amount cannot exceed {self.ceiling:,}"
            )

        return ValidationResult(valid=True, value=raw)

    def to_exact_decimal(self, raw: object) -> Decimal:
        """Convert a valid amount string to a scale-2 Decimal.

        Raises:
            AmountValidationError: If the string fails validation
        """
        validated = self.validate(raw).raise_for_error()
        # At most two fractional digits, so quantizing never rounds
        return Decimal(validated).quantize(CENT)

    def to_display_string(self, value: Decimal | int) -> str:
        """Render with exactly two fractional digits and no symbol."""
        return to_display_string(value)

    def sum_amounts(self, values: Iterable[Decimal]) -> Decimal:
        return sum_amounts(values)


def to_display_string(value: Decimal | int) -> str:
    """Render an amount as e.g. ``"5.00"``, rounding half away from zero."""
    if isinstance(value, float) or not isinstance(value, (Decimal, int)):
        raise TypeError(f"Amounts must be Decimal, got {type(value).__name__}")
    quantized = Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    return format(quantized, "f")


def sum_amounts(values: Iterable[Decimal]) -> Decimal:
    """Add amounts in exact decimal arithmetic."""
    total = Decimal("0.00")
    for value in values:
        if isinstance(value, float):
            raise TypeError("Amounts must be Decimal, got float")
        total += value
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def _reject(reason: AmountReason, message: str) -> ValidationResult:
    return ValidationResult(valid=False, reason=reason, message=message)
