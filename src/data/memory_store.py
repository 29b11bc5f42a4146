"""In-process implementations of the market-data and ledger stores.

Used by the test-suite and for throwaway simulations.  All stored
values are frozen dataclasses, so snapshots only need shallow copies of
the containers.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from decimal import Decimal

from src.core.exceptions import StorageError
from src.core.interfaces import LedgerStore, MarketDataStore
from src.core.logging import get_logger
from src.core.types import (
    Account,
    Instrument,
    Order,
    OrderStatus,
    Position,
    PriceBar,
    Trade,
)

log = get_logger(__name__)


# ── Market Data ─────────────────────────────────────────────────


class InMemoryMarketDataStore(MarketDataStore):
    """Dict-backed bar storage keyed by (instrument_id, trade_date)."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instruments: dict[str, Instrument] = {}
        self._bars: dict[str, dict[date, PriceBar]] = {}

    def add_instrument(self, instrument: Instrument) -> Instrument:
        with self._lock:
            if self.get_instrument_by_ticker(instrument.ticker) is not None:
                msg = f"Ticker already registered: {instrument.ticker}"
                raise StorageError(msg, context={"ticker": instrument.ticker})
            self._instruments[instrument.instrument_id] = instrument
            return instrument

    def get_instrument(self, instrument_id: str) -> Instrument | None:
        with self._lock:
            return self._instruments.get(instrument_id)

    def get_instrument_by_ticker(self, ticker: str) -> Instrument | None:
        with self._lock:
            for instrument in self._instruments.values():
                if instrument.ticker == ticker:
                    return instrument
            return None

    def list_instruments(self) -> list[Instrument]:
        with self._lock:
            return sorted(self._instruments.values(), key=lambda i: i.ticker)

    def get_bar(self, instrument_id: str, trade_date: date) -> PriceBar | None:
        with self._lock:
            return self._bars.get(instrument_id, {}).get(trade_date)

    def get_latest_bar(self, instrument_id: str) -> PriceBar | None:
        with self._lock:
            series = self._bars.get(instrument_id)
            if not series:
                return None
            return series[max(series)]

    def get_bars_in_range(
        self, instrument_id: str, start: date, end: date,
    ) -> list[PriceBar]:
        with self._lock:
            series = self._bars.get(instrument_id, {})
            return [series[d] for d in sorted(series) if start <= d <= end]

    def bulk_replace(self, instrument_id: str, bars: Sequence[PriceBar]) -> int:
        series: dict[date, PriceBar] = {}
        for bar in bars:
            if bar.instrument_id != instrument_id:
                msg = f"Bar for {bar.instrument_id} passed to bulk_replace({instrument_id})"
                raise StorageError(msg)
            series[bar.trade_date] = bar
        with self._lock:
            self._bars[instrument_id] = series
        return len(series)

    def count_bars(self, instrument_id: str) -> int:
        with self._lock:
            return len(self._bars.get(instrument_id, {}))


# ── Ledger ──────────────────────────────────────────────────────


class InMemoryLedgerStore(LedgerStore):
    """Dict-backed ledger with snapshot/restore transactions."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._accounts: dict[str, Account] = {}
        self._positions: dict[tuple[str, str], Position] = {}
        self._orders: dict[str, Order] = {}
        self._trades: list[Trade] = []

    # ── Transactions ────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshot = (
                dict(self._accounts),
                dict(self._positions),
                dict(self._orders),
                list(self._trades),
            )
            self._depth = 1
            try:
                yield
            except BaseException:
                self._accounts, self._positions, self._orders, self._trades = snapshot
                log.warning("ledger_transaction_rolled_back")
                raise
            finally:
                self._depth = 0

    # ── Accounts ────────────────────────────────────────────────

    def create_account(self, account: Account) -> str:
        with self._lock:
            if account.account_id in self._accounts:
                msg = f"Duplicate account_id: {account.account_id}"
                raise StorageError(msg)
            self._accounts[account.account_id] = account
            return account.account_id

    def get_account(self, account_id: str) -> Account | None:
        with self._lock:
            return self._accounts.get(account_id)

    def list_accounts(self) -> list[Account]:
        with self._lock:
            return sorted(self._accounts.values(), key=lambda a: a.account_id)

    def set_cash(self, account_id: str, new_cash: Decimal) -> None:
        with self._lock:
            account = self._require_account(account_id)
            self._accounts[account_id] = replace(account, current_cash=new_cash)

    # ── Positions ───────────────────────────────────────────────

    def get_position(self, account_id: str, instrument_id: str) -> Position | None:
        with self._lock:
            return self._positions.get((account_id, instrument_id))

    def list_positions(self, account_id: str) -> list[Position]:
        with self._lock:
            return [p for (acct, _), p in self._positions.items() if acct == account_id]

    def upsert_position(self, position: Position) -> None:
        with self._lock:
            self._positions[(position.account_id, position.instrument_id)] = position

    def delete_position(self, account_id: str, instrument_id: str) -> None:
        with self._lock:
            self._positions.pop((account_id, instrument_id), None)

    # ── Orders ──────────────────────────────────────────────────

    def create_order(self, order: Order) -> str:
        with self._lock:
            if order.order_id in self._orders:
                msg = f"Duplicate order_id: {order.order_id}"
                raise StorageError(msg)
            self._orders[order.order_id] = order
            return order.order_id

    def get_order(self, order_id: str) -> Order | None:
        with self._lock:
            return self._orders.get(order_id)

    def list_orders(self, account_id: str) -> list[Order]:
        with self._lock:
            orders = [o for o in self._orders.values() if o.account_id == account_id]
        # dict preserves insertion order, so the stable sort keeps newest-created first
        return sorted(reversed(orders), key=lambda o: o.order_date, reverse=True)

    def update_order_fill(
        self,
        order_id: str,
        status: OrderStatus,
        filled_quantity: int,
        filled_price: Decimal | None,
        filled_date: date | None,
    ) -> None:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                msg = f"Unknown order_id: {order_id}"
                raise StorageError(msg)
            self._orders[order_id] = replace(
                order,
                status=status,
                filled_quantity=filled_quantity,
                filled_price=filled_price,
                filled_date=filled_date,
            )

    def find_pending_orders(self, account_id: str, as_of: date) -> list[Order]:
        with self._lock:
            pending = [
                o for o in self._orders.values()
                if o.account_id == account_id
                and o.status == OrderStatus.PENDING
                and o.order_date <= as_of
            ]
        return sorted(pending, key=lambda o: o.order_date)

    # ── Trades ──────────────────────────────────────────────────

    def create_trade(self, trade: Trade) -> str:
        with self._lock:
            if any(t.order_id == trade.order_id for t in self._trades):
                msg = f"Order {trade.order_id} already has a trade"
                raise StorageError(msg, context={"order_id": trade.order_id})
            self._trades.append(trade)
            return trade.trade_id

    def list_trades(
        self,
        account_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Trade]:
        with self._lock:
            trades = [
                t for t in self._trades
                if t.account_id == account_id
                and (start is None or t.trade_date >= start)
                and (end is None or t.trade_date <= end)
            ]
        return sorted(reversed(trades), key=lambda t: t.trade_date, reverse=True)

    # ── Internal ────────────────────────────────────────────────

    def _require_account(self, account_id: str) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            msg = f"Unknown account_id: {account_id}"
            raise StorageError(msg, context={"account_id": account_id})
        return account
