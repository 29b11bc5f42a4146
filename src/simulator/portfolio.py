"""Portfolio service: account lifecycle and read-side views.

Typical lifecycle::

    service = PortfolioService(market_data, ledger, engine)
    account = service.open_account("Alice")
    engine.place_order(OrderEngine.new_order(account.account_id, ...))
    engine.execute_pending_orders(account.account_id, today)
    print(service.get_summary(account.account_id).to_text())
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from uuid_extensions import uuid7

from config.settings import get_settings
from src.core.exceptions import AccountNotFoundError
from src.core.interfaces import LedgerStore, MarketDataStore
from src.core.logging import get_logger
from src.core.money import round_money, to_decimal
from src.core.types import Account, AccountSummary, Order, PositionView, Trade
from src.simulator.order_engine import OrderEngine
from src.simulator.pnl_calculator import PnLCalculator

log = get_logger(__name__)


class PortfolioService:
    """Opens accounts and assembles summaries and histories.

    Args:
        market_data: Source of instruments and bars (for tickers and prices).
        ledger: Account/position/order/trade storage.
        engine: Used to revalue positions before a summary is built.
        pnl_calculator: Valuation math. Defaults to a fresh instance.
    """

    def __init__(
        self,
        market_data: MarketDataStore,
        ledger: LedgerStore,
        engine: OrderEngine,
        pnl_calculator: PnLCalculator | None = None,
    ) -> None:
        self._market = market_data
        self._ledger = ledger
        self._engine = engine
        self._pnl = pnl_calculator or PnLCalculator()

    # ── Accounts ────────────────────────────────────────────────

    def open_account(self, name: str, initial_cash: Decimal | float | None = None) -> Account:
        """Create an account funded with *initial_cash* (settings default if omitted).

        Raises:
            ValueError: If *name* is blank or *initial_cash* is negative.
        """
        if not name.strip():
            msg = "Account name must not be empty"
            raise ValueError(msg)
        cash = round_money(
            to_decimal(initial_cash) if initial_cash is not None else get_settings().default_initial_cash,
        )
        if cash < 0:
            msg = f"initial_cash must be non-negative, got {cash}"
            raise ValueError(msg)

        account = Account(
            account_id=str(uuid7()),
            name=name.strip(),
            initial_cash=cash,
            current_cash=cash,
        )
        self._ledger.create_account(account)
        log.info("account_opened", account_id=account.account_id, name=account.name, initial_cash=str(cash))
        return account

    def get_account(self, account_id: str) -> Account:
        """Return the stored account.

        Raises:
            AccountNotFoundError: If *account_id* is unknown.
        """
        account = self._ledger.get_account(account_id)
        if account is None:
            msg = f"Account not found: {account_id}"
            raise AccountNotFoundError(msg, context={"account_id": account_id})
        return account

    def list_accounts(self) -> list[Account]:
        """Every account, oldest first."""
        return self._ledger.list_accounts()

    # ── Views ───────────────────────────────────────────────────

    def get_summary(self, account_id: str) -> AccountSummary:
        """Revalue positions to the latest close, then summarize the account.

        Raises:
            AccountNotFoundError: If *account_id* is unknown.
        """
        account = self.get_account(account_id)
        positions = self._engine.revalue_positions(account_id)

        views: list[PositionView] = []
        for position in positions:
            instrument = self._market.get_instrument(position.instrument_id)
            latest = self._market.get_latest_bar(position.instrument_id)
            views.append(
                PositionView(
                    ticker=instrument.ticker if instrument else position.instrument_id,
                    quantity=position.quantity,
                    average_cost=position.average_cost,
                    current_price=latest.close if latest else position.average_cost,
                    current_value=position.current_value,
                    unrealized_pnl=position.unrealized_pnl,
                    pnl_pct=self._pnl.pnl_pct(position),
                ),
            )
        views.sort(key=lambda v: v.ticker)

        summary = AccountSummary(
            account_id=account.account_id,
            name=account.name,
            cash=account.current_cash,
            positions_value=self._pnl.total_value(positions),
            initial_cash=account.initial_cash,
            positions=views,
        )
        log.debug(
            "account_summarized",
            account_id=account_id,
            cash=str(summary.cash),
            positions_value=str(summary.positions_value),
            total_value=str(summary.total_value),
        )
        return summary

    def order_history(self, account_id: str) -> list[Order]:
        """All orders for the account, newest first."""
        self.get_account(account_id)
        return self._ledger.list_orders(account_id)

    def trade_history(
        self,
        account_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Trade]:
        """Trades for the account, newest first, optionally within ``[start, end]``."""
        self.get_account(account_id)
        return self._ledger.list_trades(account_id, start, end)
