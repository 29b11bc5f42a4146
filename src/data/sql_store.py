"""SQLAlchemy Core implementations of the market-data and ledger stores.

Every public method runs in its own ``engine.begin()`` transaction
unless :meth:`SqlLedgerStore.transaction` is open on the current
thread, in which case it joins that transaction.  Driver errors are
re-raised as :class:`StorageError`.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from src.core.exceptions import StorageError
from src.core.interfaces import LedgerStore, MarketDataStore
from src.core.logging import get_logger
from src.core.types import (
    Account,
    Instrument,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    PriceBar,
    Trade,
)
from src.data.db import accounts, instruments, orders, positions, price_bars, trades

log = get_logger(__name__)


class _SqlBase:
    """Connection handling shared by both stores."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._local = threading.local()

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        conn: Connection | None = getattr(self._local, "conn", None)
        if conn is not None:
            yield conn
            return
        try:
            with self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            log.error("storage_operation_failed", error=str(exc))
            raise StorageError(str(exc)) from exc

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            yield
            return
        try:
            with self._engine.begin() as conn:
                self._local.conn = conn
                try:
                    yield
                finally:
                    self._local.conn = None
        except SQLAlchemyError as exc:
            log.error("storage_transaction_failed", error=str(exc))
            raise StorageError(str(exc)) from exc


# ── Market Data ─────────────────────────────────────────────────


class SqlMarketDataStore(_SqlBase, MarketDataStore):
    """Bars and instruments in the ``price_bars`` / ``instruments`` tables."""

    def add_instrument(self, instrument: Instrument) -> Instrument:
        with self._connect() as conn:
            conn.execute(
                insert(instruments).values(
                    instrument_id=instrument.instrument_id,
                    ticker=instrument.ticker,
                    name=instrument.name,
                ),
            )
        return instrument

    def get_instrument(self, instrument_id: str) -> Instrument | None:
        with self._connect() as conn:
            row = conn.execute(
                select(instruments).where(instruments.c.instrument_id == instrument_id),
            ).first()
        return _row_to_instrument(row) if row else None

    def get_instrument_by_ticker(self, ticker: str) -> Instrument | None:
        with self._connect() as conn:
            row = conn.execute(
                select(instruments).where(instruments.c.ticker == ticker),
            ).first()
        return _row_to_instrument(row) if row else None

    def list_instruments(self) -> list[Instrument]:
        with self._connect() as conn:
            rows = conn.execute(select(instruments).order_by(instruments.c.ticker)).all()
        return [_row_to_instrument(r) for r in rows]

    def get_bar(self, instrument_id: str, trade_date: date) -> PriceBar | None:
        with self._connect() as conn:
            row = conn.execute(
                select(price_bars).where(
                    and_(
                        price_bars.c.instrument_id == instrument_id,
                        price_bars.c.trade_date == trade_date,
                    ),
                ),
            ).first()
        return _row_to_bar(row) if row else None

    def get_latest_bar(self, instrument_id: str) -> PriceBar | None:
        with self._connect() as conn:
            row = conn.execute(
                select(price_bars)
                .where(price_bars.c.instrument_id == instrument_id)
                .order_by(price_bars.c.trade_date.desc())
                .limit(1),
            ).first()
        return _row_to_bar(row) if row else None

    def get_bars_in_range(
        self, instrument_id: str, start: date, end: date,
    ) -> list[PriceBar]:
        with self._connect() as conn:
            rows = conn.execute(
                select(price_bars)
                .where(
                    and_(
                        price_bars.c.instrument_id == instrument_id,
                        price_bars.c.trade_date >= start,
                        price_bars.c.trade_date <= end,
                    ),
                )
                .order_by(price_bars.c.trade_date),
            ).all()
        return [_row_to_bar(r) for r in rows]

    def bulk_replace(self, instrument_id: str, bars: Sequence[PriceBar]) -> int:
        for b in bars:
            if b.instrument_id != instrument_id:
                msg = f"Bar for {b.instrument_id} passed to bulk_replace({instrument_id})"
                raise StorageError(msg)
        rows = [
            {
                "instrument_id": instrument_id,
                "trade_date": b.trade_date,
                "open": b.open,
                "high": b.high,
                "low": b.low,
                "close": b.close,
                "adjusted_close": b.adjusted_close,
                "volume": b.volume,
            }
            for b in bars
        ]
        # One transaction: readers never see a half-replaced series.
        with self.transaction(), self._connect() as conn:
            conn.execute(delete(price_bars).where(price_bars.c.instrument_id == instrument_id))
            if rows:
                conn.execute(insert(price_bars), rows)
        return len(rows)

    def count_bars(self, instrument_id: str) -> int:
        with self._connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(price_bars)
                .where(price_bars.c.instrument_id == instrument_id),
            ).scalar_one()
        return int(count)


# ── Ledger ──────────────────────────────────────────────────────


class SqlLedgerStore(_SqlBase, LedgerStore):
    """Accounts, positions, orders and trades in SQL tables."""

    # ── Accounts ────────────────────────────────────────────────

    def create_account(self, account: Account) -> str:
        with self._connect() as conn:
            conn.execute(
                insert(accounts).values(
                    account_id=account.account_id,
                    name=account.name,
                    initial_cash=account.initial_cash,
                    current_cash=account.current_cash,
                    created_at=account.created_at,
                ),
            )
        return account.account_id

    def get_account(self, account_id: str) -> Account | None:
        with self._connect() as conn:
            row = conn.execute(
                select(accounts).where(accounts.c.account_id == account_id),
            ).first()
        return _row_to_account(row) if row is not None else None

    def list_accounts(self) -> list[Account]:
        with self._connect() as conn:
            rows = conn.execute(select(accounts).order_by(accounts.c.account_id)).all()
        return [_row_to_account(row) for row in rows]

    def set_cash(self, account_id: str, new_cash: Decimal) -> None:
        with self._connect() as conn:
            result = conn.execute(
                update(accounts)
                .where(accounts.c.account_id == account_id)
                .values(current_cash=new_cash),
            )
            if result.rowcount == 0:
                msg = f"Unknown account_id: {account_id}"
                raise StorageError(msg, context={"account_id": account_id})

    # ── Positions ───────────────────────────────────────────────

    def get_position(self, account_id: str, instrument_id: str) -> Position | None:
        with self._connect() as conn:
            row = conn.execute(
                select(positions).where(
                    and_(
                        positions.c.account_id == account_id,
                        positions.c.instrument_id == instrument_id,
                    ),
                ),
            ).first()
        return _row_to_position(row) if row else None

    def list_positions(self, account_id: str) -> list[Position]:
        with self._connect() as conn:
            rows = conn.execute(
                select(positions).where(positions.c.account_id == account_id),
            ).all()
        return [_row_to_position(r) for r in rows]

    def upsert_position(self, position: Position) -> None:
        values = {
            "quantity": position.quantity,
            "average_cost": position.average_cost,
            "current_value": position.current_value,
            "unrealized_pnl": position.unrealized_pnl,
        }
        key = and_(
            positions.c.account_id == position.account_id,
            positions.c.instrument_id == position.instrument_id,
        )
        with self._connect() as conn:
            result = conn.execute(update(positions).where(key).values(**values))
            if result.rowcount == 0:
                conn.execute(
                    insert(positions).values(
                        account_id=position.account_id,
                        instrument_id=position.instrument_id,
                        **values,
                    ),
                )

    def delete_position(self, account_id: str, instrument_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                delete(positions).where(
                    and_(
                        positions.c.account_id == account_id,
                        positions.c.instrument_id == instrument_id,
                    ),
                ),
            )

    # ── Orders ──────────────────────────────────────────────────

    def create_order(self, order: Order) -> str:
        with self._connect() as conn:
            conn.execute(
                insert(orders).values(
                    order_id=order.order_id,
                    account_id=order.account_id,
                    instrument_id=order.instrument_id,
                    order_type=order.order_type.value,
                    side=order.side.value,
                    quantity=order.quantity,
                    limit_price=order.limit_price,
                    status=order.status.value,
                    filled_quantity=order.filled_quantity,
                    filled_price=order.filled_price,
                    order_date=order.order_date,
                    filled_date=order.filled_date,
                ),
            )
        return order.order_id

    def get_order(self, order_id: str) -> Order | None:
        with self._connect() as conn:
            row = conn.execute(select(orders).where(orders.c.order_id == order_id)).first()
        return _row_to_order(row) if row else None

    def list_orders(self, account_id: str) -> list[Order]:
        with self._connect() as conn:
            rows = conn.execute(
                select(orders)
                .where(orders.c.account_id == account_id)
                .order_by(orders.c.order_date.desc(), orders.c.order_id.desc()),
            ).all()
        return [_row_to_order(r) for r in rows]

    def update_order_fill(
        self,
        order_id: str,
        status: OrderStatus,
        filled_quantity: int,
        filled_price: Decimal | None,
        filled_date: date | None,
    ) -> None:
        with self._connect() as conn:
            result = conn.execute(
                update(orders)
                .where(orders.c.order_id == order_id)
                .values(
                    status=status.value,
                    filled_quantity=filled_quantity,
                    filled_price=filled_price,
                    filled_date=filled_date,
                ),
            )
            if result.rowcount == 0:
                msg = f"Unknown order_id: {order_id}"
                raise StorageError(msg, context={"order_id": order_id})

    def find_pending_orders(self, account_id: str, as_of: date) -> list[Order]:
        with self._connect() as conn:
            rows = conn.execute(
                select(orders)
                .where(
                    and_(
                        orders.c.account_id == account_id,
                        orders.c.status == OrderStatus.PENDING.value,
                        orders.c.order_date <= as_of,
                    ),
                )
                .order_by(orders.c.order_date, orders.c.order_id),
            ).all()
        return [_row_to_order(r) for r in rows]

    # ── Trades ──────────────────────────────────────────────────

    def create_trade(self, trade: Trade) -> str:
        with self._connect() as conn:
            conn.execute(
                insert(trades).values(
                    trade_id=trade.trade_id,
                    order_id=trade.order_id,
                    account_id=trade.account_id,
                    instrument_id=trade.instrument_id,
                    side=trade.side.value,
                    quantity=trade.quantity,
                    price=trade.price,
                    commission=trade.commission,
                    total_amount=trade.total_amount,
                    trade_date=trade.trade_date,
                ),
            )
        return trade.trade_id

    def list_trades(
        self,
        account_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Trade]:
        conditions: list[Any] = [trades.c.account_id == account_id]
        if start is not None:
            conditions.append(trades.c.trade_date >= start)
        if end is not None:
            conditions.append(trades.c.trade_date <= end)
        with self._connect() as conn:
            rows = conn.execute(
                select(trades)
                .where(and_(*conditions))
                .order_by(trades.c.trade_date.desc(), trades.c.trade_id.desc()),
            ).all()
        return [
            Trade(
                trade_id=r.trade_id,
                order_id=r.order_id,
                account_id=r.account_id,
                instrument_id=r.instrument_id,
                side=OrderSide(r.side),
                quantity=r.quantity,
                price=r.price,
                commission=r.commission,
                total_amount=r.total_amount,
                trade_date=r.trade_date,
            )
            for r in rows
        ]


# ── Row Mapping ─────────────────────────────────────────────────


def _row_to_instrument(row: Row[Any]) -> Instrument:
    return Instrument(instrument_id=row.instrument_id, ticker=row.ticker, name=row.name)


def _row_to_bar(row: Row[Any]) -> PriceBar:
    return PriceBar(
        instrument_id=row.instrument_id,
        trade_date=row.trade_date,
        open=row.open,
        high=row.high,
        low=row.low,
        close=row.close,
        adjusted_close=row.adjusted_close,
        volume=row.volume,
    )


def _row_to_account(row: Row[Any]) -> Account:
    created_at: datetime = row.created_at
    # SQLite drops the offset
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Account(
        account_id=row.account_id,
        name=row.name,
        initial_cash=row.initial_cash,
        current_cash=row.current_cash,
        created_at=created_at,
    )


def _row_to_position(row: Row[Any]) -> Position:
    return Position(
        account_id=row.account_id,
        instrument_id=row.instrument_id,
        quantity=row.quantity,
        average_cost=row.average_cost,
        current_value=row.current_value,
        unrealized_pnl=row.unrealized_pnl,
    )


def _row_to_order(row: Row[Any]) -> Order:
    return Order(
        order_id=row.order_id,
        account_id=row.account_id,
        instrument_id=row.instrument_id,
        order_type=OrderType(row.order_type),
        side=OrderSide(row.side),
        quantity=row.quantity,
        order_date=row.order_date,
        limit_price=row.limit_price,
        status=OrderStatus(row.status),
        filled_quantity=row.filled_quantity,
        filled_price=row.filled_price,
        filled_date=row.filled_date,
    )
