"""Unrealized profit-and-loss and mark-to-market for positions.

Realized P&L on sells is not tracked: a SELL leaves average cost
unchanged and only the remaining position's unrealized P&L is kept.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

from src.core.constants import ZERO
from src.core.logging import get_logger
from src.core.money import round_money
from src.core.types import Position

log = get_logger(__name__)


class PnLCalculator:
    """Stateless calculator for position valuation."""

    @staticmethod
    def current_value(price: Decimal, quantity: int) -> Decimal:
        return round_money(price * quantity)

    @staticmethod
    def unrealized_pnl(current_value: Decimal, average_cost: Decimal, quantity: int) -> Decimal:
        """``current_value - average_cost * quantity``."""
        return round_money(current_value - average_cost * quantity)

    def mark(self, position: Position, price: Decimal) -> Position:
        """Return *position* valued at *price*; quantity and cost are untouched."""
        value = self.current_value(price, position.quantity)
        return replace(
            position,
            current_value=value,
            unrealized_pnl=self.unrealized_pnl(value, position.average_cost, position.quantity),
        )

    @staticmethod
    def pnl_pct(position: Position) -> float:
        """Unrealized P&L as a percentage of cost basis (0 when basis is 0)."""
        basis = position.cost_basis
        if basis <= ZERO:
            return 0.0
        return float(position.unrealized_pnl / basis * 100)

    @staticmethod
    def total_value(positions: list[Position]) -> Decimal:
        """Sum of ``current_value`` across *positions*."""
        total = sum((p.current_value for p in positions), ZERO)
        log.debug("positions_valued", n_positions=len(positions), total=str(total))
        return total
