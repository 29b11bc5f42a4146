"""Shared fixtures: in-memory stores, an engine wired to them, and an order factory."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from src.core.types import Account, Instrument, OrderSide, OrderType
from src.data.memory_store import InMemoryLedgerStore, InMemoryMarketDataStore
from src.simulator.order_engine import CostModel, OrderEngine
from src.simulator.portfolio import PortfolioService
from tests.helpers import MONDAY


def pytest_configure(config: pytest.Config) -> None:
    """Register local markers used in the suite."""
    config.addinivalue_line("markers", "integration: end-to-end scenarios")


# ── Stores ───────────────────────────────────────────────────────

@pytest.fixture
def market() -> InMemoryMarketDataStore:
    return InMemoryMarketDataStore()


@pytest.fixture
def ledger() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def instrument(market: InMemoryMarketDataStore) -> Instrument:
    return market.add_instrument(Instrument(instrument_id="inst-aapl", ticker="AAPL", name="Apple Inc."))


@pytest.fixture
def account(ledger: InMemoryLedgerStore) -> Account:
    acct = Account(
        account_id="acct-1",
        name="Test Account",
        initial_cash=Decimal("10000.00"),
        current_cash=Decimal("10000.00"),
    )
    ledger.create_account(acct)
    return acct


# ── Engine ───────────────────────────────────────────────────────

@pytest.fixture
def cost_model() -> CostModel:
    return CostModel(
        commission_rate=Decimal("0.001"),
        min_commission=Decimal("1.00"),
        slippage_rate=Decimal("0.0005"),
    )


@pytest.fixture
def engine(
    market: InMemoryMarketDataStore,
    ledger: InMemoryLedgerStore,
    cost_model: CostModel,
) -> OrderEngine:
    return OrderEngine(market, ledger, cost_model)


@pytest.fixture
def service(
    market: InMemoryMarketDataStore,
    ledger: InMemoryLedgerStore,
    engine: OrderEngine,
) -> PortfolioService:
    return PortfolioService(market, ledger, engine)


@pytest.fixture
def order_factory(account: Account, instrument: Instrument):
    """Build orders for the default account/instrument."""

    def _make(
        side: OrderSide,
        quantity: int,
        *,
        order_type: OrderType = OrderType.MARKET,
        limit_price: str | None = None,
        order_date: date = MONDAY,
    ):
        return OrderEngine.new_order(
            account_id=account.account_id,
            instrument_id=instrument.instrument_id,
            order_type=order_type,
            side=side,
            quantity=quantity,
            order_date=order_date,
            limit_price=Decimal(limit_price) if limit_price is not None else None,
        )

    return _make
