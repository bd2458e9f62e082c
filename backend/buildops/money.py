# Overview: Decimal helpers for dollar amounts stored in Numeric columns.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any, *, field: str = "amount") -> Decimal:
    """
    Coerce API/DB input to Decimal.

    Floats go through str() so 0.1 stays 0.1. Raises ValueError on junk.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field} must be a number") from None


def quantize_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Any, percent: Any) -> Decimal:
    """(percent / 100) * amount, rounded half-up to cents."""
    return quantize_money(to_decimal(amount) * to_decimal(percent) / Decimal(100))


def money_to_json(value: Optional[Decimal]) -> Optional[float]:
    if value is None:
        return None
    return float(quantize_money(value))


def quantize_percent(value: Any) -> Decimal:
    """Percent to the two places a Numeric(5,2) column keeps, half-up."""
    return to_decimal(value, field="percent").quantize(CENT, rounding=ROUND_HALF_UP)
