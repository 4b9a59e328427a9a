"""Whole-rupee money helpers shared by all calculators."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Union

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, floats, strings and None into a Decimal (None → 0)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_rupee(value: Number) -> Decimal:
    """Round half-up to the nearest whole rupee (no paise retained)."""
    return to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def percent_of(base: Number, rate: Number) -> Decimal:
    """``base × rate%`` rounded to whole rupees."""
    return round_rupee(to_decimal(base) * to_decimal(rate) / HUNDRED)


def clamp_zero(value: Number) -> Decimal:
    value = to_decimal(value)
    return value if value > ZERO else ZERO


def as_number(value: Decimal) -> int:
    """JSON-friendly whole-rupee integer for JSONB breakdown blobs."""
    return int(round_rupee(value))
