"""Decimal helpers for currency amounts.

Every monetary value in the ledger is a ``Decimal`` rounded to cents
with ROUND_HALF_UP, so 50.025 becomes 50.03 rather than banker's 50.02.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from src.core.constants import MONEY_PLACES


def to_decimal(value: Decimal | float | int | str) -> Decimal:
    """Convert *value* to ``Decimal`` without binary-float artifacts.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")``
    instead of its full binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Decimal | float | int | str) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
