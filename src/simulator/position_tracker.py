"""Position lifecycle on fill: open, add to, reduce and close.

Average cost is a quantity-weighted blend on BUY fills (rounded to
cents, half-up) and unchanged on SELL fills.  Positions are valued at
the execution price at fill time; :meth:`OrderEngine.revalue_positions`
later marks them to the latest close.
"""

from __future__ import annotations

from decimal import Decimal

from src.core.exceptions import LedgerIntegrityError
from src.core.logging import get_logger
from src.core.money import round_money
from src.core.types import OrderSide, Position
from src.simulator.pnl_calculator import PnLCalculator

log = get_logger(__name__)


class PositionTracker:
    """Pure position arithmetic; persistence is the caller's responsibility."""

    def __init__(self, pnl_calculator: PnLCalculator | None = None) -> None:
        self._pnl = pnl_calculator or PnLCalculator()

    # ── Public API ──────────────────────────────────────────────

    def apply_fill(
        self,
        position: Position | None,
        *,
        account_id: str,
        instrument_id: str,
        side: OrderSide,
        quantity: int,
        price: Decimal,
    ) -> Position | None:
        """Return the position that results from a fill.

        Args:
            position: The stored position, or ``None`` if none is held.
            account_id: Owning account.
            instrument_id: Instrument traded.
            side: Fill side.
            quantity: Shares filled (> 0).
            price: Execution price (already rounded).

        Returns:
            The updated position, or ``None`` when the fill closes it.

        Raises:
            LedgerIntegrityError: SELL against a missing position or for
                more shares than are held.
        """
        if side == OrderSide.BUY:
            if position is None:
                return self.open_position(account_id, instrument_id, quantity, price)
            return self.add_to_position(position, quantity, price)

        if position is None:
            msg = f"SELL settled against missing position {account_id}/{instrument_id}"
            raise LedgerIntegrityError(
                msg,
                context={"account_id": account_id, "instrument_id": instrument_id},
            )
        return self.reduce_position(position, quantity, price)

    def open_position(
        self,
        account_id: str,
        instrument_id: str,
        quantity: int,
        price: Decimal,
    ) -> Position:
        """Create a brand-new position from a first BUY fill.

        Raises:
            ValueError: If *quantity* or *price* is non-positive.
        """
        if quantity <= 0:
            msg = f"open_position quantity must be positive, got {quantity}"
            raise ValueError(msg)
        if price <= 0:
            msg = f"open_position price must be positive, got {price}"
            raise ValueError(msg)

        position = self._pnl.mark(
            Position(
                account_id=account_id,
                instrument_id=instrument_id,
                quantity=quantity,
                average_cost=price,
            ),
            price,
        )
        log.info(
            "position_opened",
            account_id=account_id,
            instrument_id=instrument_id,
            quantity=quantity,
            price=str(price),
        )
        return position

    def add_to_position(
        self,
        position: Position,
        quantity: int,
        price: Decimal,
    ) -> Position:
        """Add to an existing position, recalculating the weighted-average cost.

        Raises:
            ValueError: If *quantity* or *price* is non-positive.
        """
        if quantity <= 0:
            msg = f"add_to_position quantity must be positive, got {quantity}"
            raise ValueError(msg)
        if price <= 0:
            msg = f"add_to_position price must be positive, got {price}"
            raise ValueError(msg)

        new_qty = position.quantity + quantity
        new_avg = round_money(
            (position.average_cost * position.quantity + price * quantity) / new_qty,
        )

        updated = self._pnl.mark(
            Position(
                account_id=position.account_id,
                instrument_id=position.instrument_id,
                quantity=new_qty,
                average_cost=new_avg,
            ),
            price,
        )
        log.info(
            "position_added",
            account_id=position.account_id,
            instrument_id=position.instrument_id,
            added_qty=quantity,
            price=str(price),
            new_average_cost=str(new_avg),
            total_quantity=new_qty,
        )
        return updated

    def reduce_position(
        self,
        position: Position,
        quantity: int,
        price: Decimal,
    ) -> Position | None:
        """Reduce (or close) an existing position; average cost is kept.

        Returns:
            The reduced position, or ``None`` once the quantity hits zero.

        Raises:
            ValueError: If *quantity* is non-positive.
            LedgerIntegrityError: If *quantity* exceeds the held amount.
        """
        if quantity <= 0:
            msg = f"reduce_position quantity must be positive, got {quantity}"
            raise ValueError(msg)
        if quantity > position.quantity:
            msg = (
                f"Cannot reduce {position.instrument_id} by {quantity}; "
                f"only {position.quantity} held"
            )
            raise LedgerIntegrityError(
                msg,
                context={
                    "account_id": position.account_id,
                    "instrument_id": position.instrument_id,
                    "held": position.quantity,
                    "requested": quantity,
                },
            )

        remaining = position.quantity - quantity
        if remaining == 0:
            log.info(
                "position_closed",
                account_id=position.account_id,
                instrument_id=position.instrument_id,
                sold_qty=quantity,
                price=str(price),
            )
            return None

        updated = self._pnl.mark(
            Position(
                account_id=position.account_id,
                instrument_id=position.instrument_id,
                quantity=remaining,
                average_cost=position.average_cost,
            ),
            price,
        )
        log.info(
            "position_reduced",
            account_id=position.account_id,
            instrument_id=position.instrument_id,
            sold_qty=quantity,
            price=str(price),
            remaining_quantity=remaining,
        )
        return updated
