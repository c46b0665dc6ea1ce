# Overview: Decimal coercion helpers for money, quantities and percentages.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


ZERO = Decimal("0")

# Balances closer to zero than this are treated as settled
EPSILON = Decimal("0.0001")

MONEY_PLACES = Decimal("0.01")
QTY_PLACES = Decimal("0.001")

# Largest amount accepted on a single payment / posting
MAX_AMOUNT = Decimal("9999999999.99")


def to_decimal(value: Any, default: Decimal | None = ZERO) -> Decimal | None:
    """
    Coerce numbers and numeric strings to Decimal.

    Floats go through str() so 9.9 stays 9.9 rather than its binary expansion.
    Booleans are rejected (bool is an int subclass).
    """
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return default
        try:
            return Decimal(stripped)
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}")
    raise ValueError(f"not a number: {value!r}")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def quantize_qty(value: Decimal) -> Decimal:
    return value.quantize(QTY_PLACES, rounding=ROUND_HALF_UP)


def is_zero(value: Decimal) -> bool:
    return abs(value) < EPSILON


def as_float(value: Decimal | None) -> float | None:
    """JSON-friendly view of a Decimal column."""
    if value is None:
        return None
    return float(value)
