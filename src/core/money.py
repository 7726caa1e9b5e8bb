"""Decimal money helpers shared by coupon, checkout and invoice code."""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Convert a database/JSON number (float, int, str or None) to Decimal.

    Floats go through ``str`` so that 19.99 stays 19.99.
    """
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return ZERO
    return Decimal(str(value))


def round_money(value: Any) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def floor_money(value: Any) -> Decimal:
    """Truncate to cents so a computed discount never exceeds its exact value."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_DOWN)


def to_minor_units(value: Any) -> int:
    """Convert a major-unit amount to integer minor units (cents/paise) for Stripe."""
    return int((to_decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_json_number(value: Any) -> float:
    """Serialize a money value for JSON/PostgREST numeric columns."""
    return float(round_money(value))
