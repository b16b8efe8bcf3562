# envelopes/services/money.py
#
# Money helpers
# Amounts are Decimals with two-digit cent precision. Anything that divides
# (proportional splits) works in integer cents and converts back.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Two amounts within this tolerance are considered equal
TOLERANCE = CENT


def to_money(value: Any) -> Decimal:
    """Coerce int/float/str/Decimal into a Decimal rounded to cents."""
    if value is None:
        return ZERO
    if isinstance(value, float):
        # go through str() so 0.1 stays 0.1
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Any) -> int:
    return int((to_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def differs(a: Any, b: Any) -> bool:
    """True if two amounts differ by more than one cent."""
    return abs(to_money(a) - to_money(b)) > TOLERANCE


def fmt(value: Any) -> str:
    return f"${to_money(value):,.2f}"
