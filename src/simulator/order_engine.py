"""Order execution engine. Validates orders and fills them against daily bars.

Placement performs a pre-trade check against the latest bar and the
ledger, then stores the order as PENDING.  Processing a PENDING order
against a trading day determines the execution price::

    MARKET BUY   price = open * (1 + slippage_rate)
    MARKET SELL  price = open * (1 - slippage_rate)
    LIMIT  BUY   price = limit   iff low  <= limit
    LIMIT  SELL  price = limit   iff high >= limit

rounded to cents (half-up).  Commission model::

    commission = max(price * quantity * commission_rate, min_commission)

Settlement writes cash, position, trade and order status inside one
ledger transaction.  A BUY whose actual cost would take cash below zero
is rejected at fill time even if the placement estimate passed.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal

from uuid_extensions import uuid7

from config.settings import Settings, get_settings
from src.core.constants import (
    DEFAULT_COMMISSION_RATE,
    DEFAULT_MIN_COMMISSION,
    DEFAULT_SLIPPAGE_RATE,
    ZERO,
)
from src.core.interfaces import LedgerStore, MarketDataStore
from src.core.logging import get_logger
from src.core.money import round_money
from src.core.types import (
    FillOutcome,
    FillResult,
    Order,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    PriceBar,
    RejectionReason,
    Trade,
)
from src.simulator.pnl_calculator import PnLCalculator
from src.simulator.position_tracker import PositionTracker

log = get_logger(__name__)


# ── Cost Model ──────────────────────────────────────────────────


@dataclass(frozen=True)
class CostModel:
    """Commission and slippage parameters."""

    commission_rate: Decimal = DEFAULT_COMMISSION_RATE
    min_commission: Decimal = DEFAULT_MIN_COMMISSION
    slippage_rate: Decimal = DEFAULT_SLIPPAGE_RATE

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> CostModel:
        s = settings or get_settings()
        return cls(
            commission_rate=s.commission_rate,
            min_commission=s.min_commission,
            slippage_rate=s.slippage_rate,
        )

    def commission(self, subtotal: Decimal) -> Decimal:
        """``max(subtotal * rate, minimum)`` rounded to cents."""
        return round_money(max(subtotal * self.commission_rate, self.min_commission))

    def slipped(self, price: Decimal, side: OrderSide) -> Decimal:
        """Move *price* against the trader: up for BUY, down for SELL."""
        if side == OrderSide.BUY:
            return price * (1 + self.slippage_rate)
        return price * (1 - self.slippage_rate)


# ── Order Engine ────────────────────────────────────────────────


class OrderEngine:
    """Places, fills and cancels orders; revalues positions.

    The engine is the only writer of account cash, positions and order
    status.  Fills for the same account are serialized with a
    per-account lock; ledger writes for one fill share a transaction.

    Args:
        market_data: Source of daily bars.
        ledger: Account/position/order/trade storage.
        cost_model: Commission and slippage. Defaults to settings.
        position_tracker: Position arithmetic. Defaults to a fresh instance.
        pnl_calculator: Valuation math. Defaults to a fresh instance.
    """

    def __init__(
        self,
        market_data: MarketDataStore,
        ledger: LedgerStore,
        cost_model: CostModel | None = None,
        position_tracker: PositionTracker | None = None,
        pnl_calculator: PnLCalculator | None = None,
    ) -> None:
        self._market = market_data
        self._ledger = ledger
        self._costs = cost_model or CostModel.from_settings()
        self._pnl = pnl_calculator or PnLCalculator()
        self._tracker = position_tracker or PositionTracker(self._pnl)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def cost_model(self) -> CostModel:
        return self._costs

    # ── Order Construction ──────────────────────────────────────

    @staticmethod
    def new_order(
        account_id: str,
        instrument_id: str,
        order_type: OrderType,
        side: OrderSide,
        quantity: int,
        order_date: date,
        limit_price: Decimal | None = None,
    ) -> Order:
        """Build a PENDING order with a fresh ID."""
        return Order(
            order_id=str(uuid7()),
            account_id=account_id,
            instrument_id=instrument_id,
            order_type=order_type,
            side=side,
            quantity=quantity,
            order_date=order_date,
            limit_price=limit_price,
        )

    # ── Public API ──────────────────────────────────────────────

    def calculate_commission(self, subtotal: Decimal) -> Decimal:
        return self._costs.commission(subtotal)

    def place_order(self, order: Order) -> OrderResult:
        """Validate *order* and persist it as PENDING.

        Validation failures are returned, not raised.  The BUY
        affordability check is an estimate (limit price or latest close);
        the fill may still be rejected if the actual price is higher.

        Raises:
            StorageError: If the ledger or market data store fails.
        """
        if order.quantity <= 0:
            return self._reject(order, RejectionReason.INVALID_QUANTITY, f"Invalid quantity: {order.quantity}")

        with self._account_lock(order.account_id):
            account = self._ledger.get_account(order.account_id)
            if account is None:
                return self._reject(
                    order,
                    RejectionReason.ACCOUNT_NOT_FOUND,
                    f"Account not found: {order.account_id}",
                )

            if order.side == OrderSide.BUY:
                latest = self._market.get_latest_bar(order.instrument_id)
                if latest is None:
                    return self._reject(
                        order,
                        RejectionReason.NO_MARKET_DATA,
                        f"No market data available for instrument {order.instrument_id}",
                    )
                estimate_price = (
                    order.limit_price
                    if order.order_type == OrderType.LIMIT and order.limit_price is not None
                    else latest.close
                )
                estimated_cost = estimate_price * order.quantity
                total_cost = estimated_cost + self._costs.commission(estimated_cost)
                if account.current_cash < total_cost:
                    return self._reject(
                        order,
                        RejectionReason.INSUFFICIENT_FUNDS,
                        f"Insufficient cash. Need: ${total_cost:.2f}, Have: ${account.current_cash:.2f}",
                    )
            else:
                position = self._ledger.get_position(order.account_id, order.instrument_id)
                held = position.quantity if position is not None else 0
                available = held - self._reserved_shares(order.account_id, order.instrument_id)
                if available < order.quantity:
                    return self._reject(
                        order,
                        RejectionReason.INSUFFICIENT_SHARES,
                        f"Insufficient shares. Need: {order.quantity}, Available: {available}",
                    )

            pending = replace(
                order,
                order_id=order.order_id or str(uuid7()),
                status=OrderStatus.PENDING,
                filled_quantity=0,
                filled_price=None,
                filled_date=None,
            )
            self._ledger.create_order(pending)

        log.info(
            "order_placed",
            order_id=pending.order_id,
            account_id=pending.account_id,
            instrument_id=pending.instrument_id,
            order_type=pending.order_type.value,
            side=pending.side.value,
            quantity=pending.quantity,
            limit_price=str(pending.limit_price) if pending.limit_price is not None else None,
        )
        return OrderResult.accept(pending, "Order placed")

    def determine_execution_price(self, order: Order, bar: PriceBar) -> Decimal | None:
        """Execution price for *order* on *bar*'s day, or ``None`` if it does not fill."""
        price: Decimal | None = None
        if order.order_type == OrderType.MARKET:
            price = self._costs.slipped(bar.open, order.side)
        elif order.limit_price is not None:
            if order.side == OrderSide.BUY and bar.low <= order.limit_price:
                price = order.limit_price
            elif order.side == OrderSide.SELL and bar.high >= order.limit_price:
                price = order.limit_price
        return round_money(price) if price is not None else None

    def execute_order(self, order: Order, execution_date: date) -> FillResult:
        """Try to fill a PENDING order on *execution_date*.

        Returns:
            ``FILLED`` with the trade; ``NOT_FILLED`` when the date
            precedes the order date, there is no bar for the day, or the
            limit was not reached (order stays PENDING); ``REJECTED`` when settlement would make cash
            negative.

        Raises:
            LedgerIntegrityError: SELL settling against a missing position.
            StorageError: Persistence failed; no partial update survives.
        """
        with self._account_lock(order.account_id):
            current = self._ledger.get_order(order.order_id)
            if current is None:
                return self._not_filled(order, RejectionReason.ORDER_NOT_FOUND, f"Unknown order {order.order_id}")
            if not current.is_pending:
                return self._not_filled(
                    current,
                    RejectionReason.ORDER_NOT_PENDING,
                    f"Order is {current.status.value}",
                )
            if execution_date < current.order_date:
                return self._not_filled(
                    current,
                    RejectionReason.BEFORE_ORDER_DATE,
                    f"Order placed {current.order_date.isoformat()}, cannot fill on {execution_date.isoformat()}",
                )

            bar = self._market.get_bar(current.instrument_id, execution_date)
            if bar is None:
                return self._not_filled(
                    current,
                    RejectionReason.NON_TRADING_DAY,
                    f"No bar for {execution_date.isoformat()}",
                )

            price = self.determine_execution_price(current, bar)
            if price is None:
                return self._not_filled(
                    current,
                    RejectionReason.LIMIT_NOT_REACHED,
                    f"Limit {current.limit_price} not reached on {execution_date.isoformat()}",
                )

            return self._settle(current, price, execution_date)

    def execute_pending_orders(self, account_id: str, execution_date: date) -> list[FillResult]:
        """Process every PENDING order placed on or before *execution_date*.

        Orders are handled independently; one rejection does not affect
        the others.
        """
        pending = self._ledger.find_pending_orders(account_id, execution_date)
        results = [self.execute_order(order, execution_date) for order in pending]
        log.info(
            "pending_orders_executed",
            account_id=account_id,
            date=execution_date.isoformat(),
            n_pending=len(pending),
            n_filled=sum(1 for r in results if r.outcome == FillOutcome.FILLED),
            n_rejected=sum(1 for r in results if r.outcome == FillOutcome.REJECTED),
        )
        return results

    def revalue_positions(self, account_id: str) -> list[Position]:
        """Mark every open position to its instrument's latest close.

        Positions without any bar keep their stored values.  Cash and
        quantities are never touched, so repeated calls are idempotent.
        """
        with self._account_lock(account_id):
            held = self._ledger.list_positions(account_id)
            marked: list[Position] = []
            for position in held:
                latest = self._market.get_latest_bar(position.instrument_id)
                marked.append(position if latest is None else self._pnl.mark(position, latest.close))

            with self._ledger.transaction():
                for before, after in zip(held, marked):
                    if after != before:
                        self._ledger.upsert_position(after)

        log.debug("positions_revalued", account_id=account_id, n_positions=len(marked))
        return marked

    def cancel_order(self, order_id: str) -> OrderResult:
        """Cancel a PENDING order at the user's request."""
        order = self._ledger.get_order(order_id)
        if order is None:
            return OrderResult.reject(RejectionReason.ORDER_NOT_FOUND, f"Unknown order {order_id}")

        with self._account_lock(order.account_id):
            order = self._ledger.get_order(order_id) or order
            if not order.is_pending:
                return OrderResult.reject(
                    RejectionReason.ORDER_NOT_PENDING,
                    f"Order is {order.status.value}",
                    order=order,
                )
            self._ledger.update_order_fill(order_id, OrderStatus.CANCELLED, 0, None, None)

        cancelled = replace(order, status=OrderStatus.CANCELLED)
        log.info("order_cancelled", order_id=order_id, account_id=order.account_id)
        return OrderResult.accept(cancelled, "Order cancelled")

    # ── Settlement ──────────────────────────────────────────────

    def _settle(self, order: Order, price: Decimal, execution_date: date) -> FillResult:
        subtotal = price * order.quantity
        commission = self._costs.commission(subtotal)
        if order.side == OrderSide.BUY:
            total = subtotal + commission
        else:
            total = subtotal - commission

        with self._ledger.transaction():
            account = self._ledger.get_account(order.account_id)
            if account is None:
                return self._reject_fill(
                    order,
                    execution_date,
                    RejectionReason.ACCOUNT_NOT_FOUND,
                    f"Account not found: {order.account_id}",
                )

            if order.side == OrderSide.BUY:
                new_cash = account.current_cash - total
                if new_cash < ZERO:
                    return self._reject_fill(
                        order,
                        execution_date,
                        RejectionReason.NEGATIVE_CASH_GUARD,
                        f"Fill would leave cash at ${new_cash:.2f}",
                    )
            else:
                new_cash = account.current_cash + total

            position = self._ledger.get_position(order.account_id, order.instrument_id)
            updated = self._tracker.apply_fill(
                position,
                account_id=order.account_id,
                instrument_id=order.instrument_id,
                side=order.side,
                quantity=order.quantity,
                price=price,
            )

            self._ledger.set_cash(order.account_id, new_cash)
            if updated is None:
                self._ledger.delete_position(order.account_id, order.instrument_id)
            else:
                self._ledger.upsert_position(updated)

            trade = Trade(
                trade_id=str(uuid7()),
                order_id=order.order_id,
                account_id=order.account_id,
                instrument_id=order.instrument_id,
                side=order.side,
                quantity=order.quantity,
                price=price,
                commission=commission,
                total_amount=total,
                trade_date=execution_date,
            )
            self._ledger.create_trade(trade)
            self._ledger.update_order_fill(
                order.order_id, OrderStatus.FILLED, order.quantity, price, execution_date,
            )

        filled = replace(
            order,
            status=OrderStatus.FILLED,
            filled_quantity=order.quantity,
            filled_price=price,
            filled_date=execution_date,
        )
        log.info(
            "order_filled",
            order_id=order.order_id,
            trade_id=trade.trade_id,
            side=order.side.value,
            quantity=order.quantity,
            price=str(price),
            commission=str(commission),
            total_amount=str(total),
            cash_after=str(new_cash),
        )
        return FillResult(outcome=FillOutcome.FILLED, order=filled, trade=trade)

    # ── Internal ────────────────────────────────────────────────

    def _reserved_shares(self, account_id: str, instrument_id: str) -> int:
        """Shares already committed to this account's PENDING SELL orders."""
        return sum(
            o.quantity
            for o in self._ledger.find_pending_orders(account_id, date.max)
            if o.instrument_id == instrument_id and o.side == OrderSide.SELL
        )

    def _account_lock(self, account_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[account_id] = lock
            return lock

    def _reject_fill(
        self,
        order: Order,
        execution_date: date,
        reason: RejectionReason,
        message: str,
    ) -> FillResult:
        self._ledger.update_order_fill(order.order_id, OrderStatus.REJECTED, 0, None, execution_date)
        rejected = replace(
            order,
            status=OrderStatus.REJECTED,
            filled_quantity=0,
            filled_price=None,
            filled_date=execution_date,
        )
        log.warning(
            "order_rejected_at_fill",
            order_id=order.order_id,
            account_id=order.account_id,
            reason=reason.value,
            detail=message,
        )
        return FillResult(outcome=FillOutcome.REJECTED, order=rejected, reason=reason, message=message)

    @staticmethod
    def _reject(order: Order, reason: RejectionReason, message: str) -> OrderResult:
        log.info(
            "order_rejected",
            account_id=order.account_id,
            instrument_id=order.instrument_id,
            side=order.side.value,
            quantity=order.quantity,
            reason=reason.value,
            detail=message,
        )
        return OrderResult.reject(reason, message)

    @staticmethod
    def _not_filled(order: Order, reason: RejectionReason, message: str) -> FillResult:
        log.debug(
            "order_not_filled",
            order_id=order.order_id,
            reason=reason.value,
            detail=message,
        )
        return FillResult(outcome=FillOutcome.NOT_FILLED, order=order, reason=reason, message=message)
