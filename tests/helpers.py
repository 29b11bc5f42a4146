"""Dates and builders shared by unit and integration tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from src.core.types import PriceBar

# Mon 2024-01-08 .. Fri 2024-01-12; Sat 2024-01-13
MONDAY = date(2024, 1, 8)
TUESDAY = date(2024, 1, 9)
WEDNESDAY = date(2024, 1, 10)
THURSDAY = date(2024, 1, 11)
SATURDAY = date(2024, 1, 13)


def make_bar(
    instrument_id: str,
    trade_date: date,
    open_: str,
    high: str,
    low: str,
    close: str,
    volume: int = 1_000_000,
) -> PriceBar:
    """Build a bar from string prices so tests read like the numbers they use."""
    return PriceBar(
        instrument_id=instrument_id,
        trade_date=trade_date,
        open=Decimal(open_),
        high=Decimal(high),
        low=Decimal(low),
        close=Decimal(close),
        adjusted_close=Decimal(close),
        volume=volume,
    )
