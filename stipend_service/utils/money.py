"""Fixed-point money helpers (two fractional digits, half-up rounding)"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """
    Convert a number or numeric string to a Decimal quantized to cents.

    Floats go through str() first so 0.1 becomes 0.10, not its binary expansion.

    Raises:
        ValueError: value is not numeric or not finite
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        try:
            amount = Decimal(value)
        except (InvalidOperation, TypeError) as e:
            raise ValueError(f"not a monetary amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"not a monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal | None) -> str:
    """Render with exactly two fractional digits; None renders blank"""
    if value is None:
        return ""
    return f"{to_money(value):.2f}"


def divide_money(value: Decimal, parts: int) -> Decimal:
    return to_money(to_money(value) / Decimal(parts))
