"""System-wide shared types, the single source of truth for all data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from src.core.constants import ZERO


# ── Enums ────────────────────────────────────────────────────────

class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


class RejectionReason(str, Enum):
    """Why an order was refused or left unfilled.

    Soft outcomes leave the order PENDING so it may fill on a later
    date: ``NON_TRADING_DAY``, ``LIMIT_NOT_REACHED`` and
    ``BEFORE_ORDER_DATE``.
    """

    INVALID_QUANTITY = "INVALID_QUANTITY"
    NO_MARKET_DATA = "NO_MARKET_DATA"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_SHARES = "INSUFFICIENT_SHARES"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    NON_TRADING_DAY = "NON_TRADING_DAY"
    LIMIT_NOT_REACHED = "LIMIT_NOT_REACHED"
    BEFORE_ORDER_DATE = "BEFORE_ORDER_DATE"
    NEGATIVE_CASH_GUARD = "NEGATIVE_CASH_GUARD"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ORDER_NOT_PENDING = "ORDER_NOT_PENDING"


class FillOutcome(str, Enum):
    FILLED = "FILLED"
    NOT_FILLED = "NOT_FILLED"
    REJECTED = "REJECTED"


# ── Market Data Types ────────────────────────────────────────────

@dataclass(frozen=True)
class Instrument:
    """A tradable ticker."""

    instrument_id: str
    ticker: str
    name: str

    def __post_init__(self) -> None:
        if not self.ticker.strip():
            msg = "Instrument ticker must not be empty"
            raise ValueError(msg)


@dataclass(frozen=True)
class PriceBar:
    """One trading day of OHLCV data for an instrument."""

    instrument_id: str
    trade_date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    adjusted_close: Decimal
    volume: int

    def __post_init__(self) -> None:
        if self.trade_date.weekday() >= 5:
            msg = f"PriceBar cannot fall on a weekend: {self.trade_date.isoformat()}"
            raise ValueError(msg)
        if self.low > min(self.open, self.close):
            msg = f"PriceBar low {self.low} above min(open, close) on {self.trade_date}"
            raise ValueError(msg)
        if self.high < max(self.open, self.close):
            msg = f"PriceBar high {self.high} below max(open, close) on {self.trade_date}"
            raise ValueError(msg)
        if self.low < 0:
            msg = f"PriceBar low cannot be negative: {self.low}"
            raise ValueError(msg)
        if self.volume < 0:
            msg = f"volume cannot be negative: {self.volume}"
            raise ValueError(msg)


# ── Ledger Types ─────────────────────────────────────────────────

@dataclass(frozen=True)
class Account:
    """Simulated brokerage account holding cash."""

    account_id: str
    name: str
    initial_cash: Decimal
    current_cash: Decimal
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Order:
    """A request to buy or sell an instrument.

    ``limit_price`` must be set (and positive) for LIMIT orders and
    absent for MARKET orders.  Quantity is checked at placement time so
    that an invalid quantity surfaces as a rejection rather than a
    construction error.
    """

    order_id: str
    account_id: str
    instrument_id: str
    order_type: OrderType
    side: OrderSide
    quantity: int
    order_date: date
    limit_price: Decimal | None = None
    status: OrderStatus = OrderStatus.PENDING
    filled_quantity: int = 0
    filled_price: Decimal | None = None
    filled_date: date | None = None

    def __post_init__(self) -> None:
        if self.order_type == OrderType.LIMIT:
            if self.limit_price is None:
                msg = "LIMIT orders require a limit_price"
                raise ValueError(msg)
            if self.limit_price <= 0:
                msg = f"limit_price must be positive, got {self.limit_price}"
                raise ValueError(msg)
        elif self.limit_price is not None:
            msg = "MARKET orders must not carry a limit_price"
            raise ValueError(msg)

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING


@dataclass(frozen=True)
class Position:
    """Shares of one instrument held by one account."""

    account_id: str
    instrument_id: str
    quantity: int
    average_cost: Decimal
    current_value: Decimal = ZERO
    unrealized_pnl: Decimal = ZERO

    def __post_init__(self) -> None:
        if self.quantity < 0:
            msg = f"Position quantity cannot be negative, got {self.quantity}"
            raise ValueError(msg)

    @property
    def cost_basis(self) -> Decimal:
        return self.average_cost * self.quantity


@dataclass(frozen=True)
class Trade:
    """Immutable record of a single fill."""

    trade_id: str
    order_id: str
    account_id: str
    instrument_id: str
    side: OrderSide
    quantity: int
    price: Decimal
    commission: Decimal
    total_amount: Decimal
    trade_date: date

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            msg = f"Trade quantity must be positive, got {self.quantity}"
            raise ValueError(msg)
        if self.price <= 0:
            msg = f"Trade price must be positive, got {self.price}"
            raise ValueError(msg)
        if self.commission < 0:
            msg = f"Trade commission must be non-negative, got {self.commission}"
            raise ValueError(msg)
        if not self.trade_id:
            msg = "Trade trade_id must not be empty"
            raise ValueError(msg)
        if not self.order_id:
            msg = "Trade order_id must not be empty"
            raise ValueError(msg)


# ── Results ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class OrderResult:
    """Outcome of placing or cancelling an order."""

    accepted: bool
    order: Order | None = None
    reason: RejectionReason | None = None
    message: str = ""

    @classmethod
    def accept(cls, order: Order, message: str = "") -> OrderResult:
        return cls(accepted=True, order=order, message=message)

    @classmethod
    def reject(
        cls,
        reason: RejectionReason,
        message: str,
        order: Order | None = None,
    ) -> OrderResult:
        return cls(accepted=False, order=order, reason=reason, message=message)


@dataclass(frozen=True)
class FillResult:
    """Outcome of processing one order against one trading day."""

    outcome: FillOutcome
    order: Order
    trade: Trade | None = None
    reason: RejectionReason | None = None
    message: str = ""

    @property
    def filled(self) -> bool:
        return self.outcome == FillOutcome.FILLED


# ── Portfolio Views ──────────────────────────────────────────────

@dataclass(frozen=True)
class PositionView:
    """Display-ready row for one holding."""

    ticker: str
    quantity: int
    average_cost: Decimal
    current_price: Decimal
    current_value: Decimal
    unrealized_pnl: Decimal
    pnl_pct: float


@dataclass(frozen=True)
class AccountSummary:
    """Cash, holdings and totals for an account."""

    account_id: str
    name: str
    cash: Decimal
    positions_value: Decimal
    initial_cash: Decimal
    positions: list[PositionView] = field(default_factory=list)

    @property
    def total_value(self) -> Decimal:
        """Total account value = cash + sum of all position values."""
        return self.cash + self.positions_value

    @property
    def total_return_pct(self) -> float:
        if self.initial_cash <= 0:
            return 0.0
        return float((self.total_value / self.initial_cash - 1) * 100)

    def to_text(self) -> str:
        """Plain-text summary for terminal output."""
        lines = [
            f"[Account: {self.name}]",
            f"Cash: ${self.cash:,.2f}",
            f"Portfolio: ${self.positions_value:,.2f}",
            f"Total: ${self.total_value:,.2f} ({self.total_return_pct:+.2f}% from initial)",
        ]
        if self.positions:
            lines.append("Positions:")
            for pos in self.positions:
                lines.append(
                    f"  {pos.ticker}: qty={pos.quantity} avg=${pos.average_cost:.2f} "
                    f"cur=${pos.current_price:.2f} value=${pos.current_value:.2f} "
                    f"pnl=${pos.unrealized_pnl:.2f} ({pos.pnl_pct:+.2f}%)"
                )
        else:
            lines.append("Positions: None")
        return "\n".join(lines)
