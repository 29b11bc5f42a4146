"""Abstract base classes. All storage backends must implement these interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import AbstractContextManager
from datetime import date
from decimal import Decimal

from src.core.types import (
    Account,
    Instrument,
    Order,
    OrderStatus,
    Position,
    PriceBar,
    Trade,
)


class MarketDataStore(ABC):
    """Read/write access to instruments and their daily bars."""

    # ── Instruments ─────────────────────────────────────────────

    @abstractmethod
    def add_instrument(self, instrument: Instrument) -> Instrument:
        """Register *instrument*; tickers are unique."""
        ...

    @abstractmethod
    def get_instrument(self, instrument_id: str) -> Instrument | None:
        ...

    @abstractmethod
    def get_instrument_by_ticker(self, ticker: str) -> Instrument | None:
        ...

    @abstractmethod
    def list_instruments(self) -> list[Instrument]:
        """All instruments ordered by ticker."""
        ...

    # ── Bars ────────────────────────────────────────────────────

    @abstractmethod
    def get_bar(self, instrument_id: str, trade_date: date) -> PriceBar | None:
        ...

    @abstractmethod
    def get_latest_bar(self, instrument_id: str) -> PriceBar | None:
        """Return the bar with the greatest trade date, if any."""
        ...

    @abstractmethod
    def get_bars_in_range(
        self, instrument_id: str, start: date, end: date,
    ) -> list[PriceBar]:
        """Return bars with ``start <= trade_date <= end`` in ascending order."""
        ...

    @abstractmethod
    def bulk_replace(self, instrument_id: str, bars: Sequence[PriceBar]) -> int:
        """Delete every bar for *instrument_id*, then insert *bars*.

        Returns the number of bars written.
        """
        ...

    @abstractmethod
    def count_bars(self, instrument_id: str) -> int:
        ...


class LedgerStore(ABC):
    """Read/write access to accounts, positions, orders and trades.

    Mutations issued inside :meth:`transaction` are applied together or
    not at all.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Open an atomic unit of work.

        Nested calls join the outer transaction.  If the block raises,
        every mutation made inside it is discarded and the exception
        propagates.
        """
        ...

    # ── Accounts ────────────────────────────────────────────────

    @abstractmethod
    def create_account(self, account: Account) -> str:
        ...

    @abstractmethod
    def get_account(self, account_id: str) -> Account | None:
        ...

    @abstractmethod
    def list_accounts(self) -> list[Account]:
        """All accounts ordered by account_id."""
        ...

    @abstractmethod
    def set_cash(self, account_id: str, new_cash: Decimal) -> None:
        ...

    # ── Positions ───────────────────────────────────────────────

    @abstractmethod
    def get_position(self, account_id: str, instrument_id: str) -> Position | None:
        ...

    @abstractmethod
    def list_positions(self, account_id: str) -> list[Position]:
        ...

    @abstractmethod
    def upsert_position(self, position: Position) -> None:
        ...

    @abstractmethod
    def delete_position(self, account_id: str, instrument_id: str) -> None:
        ...

    # ── Orders ──────────────────────────────────────────────────

    @abstractmethod
    def create_order(self, order: Order) -> str:
        ...

    @abstractmethod
    def get_order(self, order_id: str) -> Order | None:
        ...

    @abstractmethod
    def list_orders(self, account_id: str) -> list[Order]:
        """All orders for the account, newest order date first."""
        ...

    @abstractmethod
    def update_order_fill(
        self,
        order_id: str,
        status: OrderStatus,
        filled_quantity: int,
        filled_price: Decimal | None,
        filled_date: date | None,
    ) -> None:
        ...

    @abstractmethod
    def find_pending_orders(self, account_id: str, as_of: date) -> list[Order]:
        """PENDING orders with ``order_date <= as_of``, oldest first."""
        ...

    # ── Trades ──────────────────────────────────────────────────

    @abstractmethod
    def create_trade(self, trade: Trade) -> str:
        ...

    @abstractmethod
    def list_trades(
        self,
        account_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Trade]:
        """Trades for the account, newest first, optionally within a date range."""
        ...

