"""Tests for the order execution engine."""

from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from src.core.exceptions import LedgerIntegrityError
from src.core.types import (
    FillOutcome,
    OrderSide,
    OrderStatus,
    OrderType,
    RejectionReason,
)
from src.data.memory_store import InMemoryLedgerStore, InMemoryMarketDataStore
from src.simulator.order_engine import CostModel, OrderEngine
from tests.helpers import MONDAY, SATURDAY, TUESDAY, WEDNESDAY, make_bar


@pytest.fixture
def monday_bar(market: InMemoryMarketDataStore, instrument):
    bar = make_bar(instrument.instrument_id, MONDAY, "100.00", "102.00", "98.00", "101.00")
    market.bulk_replace(instrument.instrument_id, [bar])
    return bar


def _add_bar(market: InMemoryMarketDataStore, bar) -> None:
    existing = market.get_bars_in_range(bar.instrument_id, bar.trade_date.replace(year=2000), bar.trade_date)
    market.bulk_replace(bar.instrument_id, [*existing, bar])


# ── Commission & Pricing ─────────────────────────────────────────


class TestCommission:
    @pytest.mark.parametrize(
        ("subtotal", "expected"),
        [
            ("500.00", "1.00"),
            ("1000.00", "1.00"),
            ("1005.00", "1.01"),
            ("1234.56", "1.23"),
            ("5000.00", "5.00"),
        ],
    )
    def test_commission_rate_with_floor(self, engine: OrderEngine, subtotal: str, expected: str) -> None:
        assert engine.calculate_commission(Decimal(subtotal)) == Decimal(expected)

    def test_cost_model_from_settings_uses_defaults(self) -> None:
        model = CostModel.from_settings()
        assert model.commission_rate == Decimal("0.001")
        assert model.min_commission == Decimal("1.00")
        assert model.slippage_rate == Decimal("0.0005")


class TestExecutionPrice:
    def test_market_buy_pays_slippage(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        order = order_factory(OrderSide.BUY, 10)
        assert engine.determine_execution_price(order, monday_bar) == Decimal("100.05")

    def test_market_sell_gives_up_slippage(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        order = order_factory(OrderSide.SELL, 10)
        assert engine.determine_execution_price(order, monday_bar) == Decimal("99.95")

    def test_limit_buy_at_exact_low_fills(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        order = order_factory(OrderSide.BUY, 1, order_type=OrderType.LIMIT, limit_price="98.00")
        assert engine.determine_execution_price(order, monday_bar) == Decimal("98.00")

    def test_limit_buy_below_low_does_not_fill(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        order = order_factory(OrderSide.BUY, 1, order_type=OrderType.LIMIT, limit_price="97.99")
        assert engine.determine_execution_price(order, monday_bar) is None

    def test_limit_sell_at_exact_high_fills(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        order = order_factory(OrderSide.SELL, 1, order_type=OrderType.LIMIT, limit_price="102.00")
        assert engine.determine_execution_price(order, monday_bar) == Decimal("102.00")

    def test_limit_sell_above_high_does_not_fill(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        order = order_factory(OrderSide.SELL, 1, order_type=OrderType.LIMIT, limit_price="102.01")
        assert engine.determine_execution_price(order, monday_bar) is None


# ── Placement ────────────────────────────────────────────────────


class TestPlaceOrder:
    def test_valid_buy_is_persisted_pending(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar,
    ) -> None:
        result = engine.place_order(order_factory(OrderSide.BUY, 10))
        assert result.accepted
        assert result.order is not None
        assert result.order.status == OrderStatus.PENDING
        stored = ledger.get_order(result.order.order_id)
        assert stored == result.order

    @pytest.mark.parametrize("quantity", [0, -5])
    def test_non_positive_quantity_rejected(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar, quantity: int,
    ) -> None:
        result = engine.place_order(order_factory(OrderSide.BUY, quantity))
        assert not result.accepted
        assert result.reason == RejectionReason.INVALID_QUANTITY
        assert ledger.list_orders("acct-1") == []

    def test_unknown_account_rejected(self, engine: OrderEngine, instrument, monday_bar) -> None:
        order = OrderEngine.new_order("missing", instrument.instrument_id, OrderType.MARKET, OrderSide.BUY, 1, MONDAY)
        result = engine.place_order(order)
        assert result.reason == RejectionReason.ACCOUNT_NOT_FOUND

    def test_buy_without_market_data_rejected(self, engine: OrderEngine, order_factory) -> None:
        result = engine.place_order(order_factory(OrderSide.BUY, 1))
        assert result.reason == RejectionReason.NO_MARKET_DATA

    def test_buy_beyond_cash_rejected(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar,
    ) -> None:
        # 100 * 101.00 + 10.10 commission > 10,000
        result = engine.place_order(order_factory(OrderSide.BUY, 100))
        assert result.reason == RejectionReason.INSUFFICIENT_FUNDS
        assert "Need: $10110.10" in result.message
        assert ledger.list_orders("acct-1") == []

    def test_limit_buy_estimate_uses_limit_price(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        # At the 101.00 close this would not be affordable; at 50.00 it is.
        order = order_factory(OrderSide.BUY, 150, order_type=OrderType.LIMIT, limit_price="50.00")
        assert engine.place_order(order).accepted

    def test_sell_without_position_rejected(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        result = engine.place_order(order_factory(OrderSide.SELL, 1))
        assert result.reason == RejectionReason.INSUFFICIENT_SHARES

    def test_sell_more_than_held_rejected(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        buy = engine.place_order(order_factory(OrderSide.BUY, 5)).order
        engine.execute_order(buy, MONDAY)
        result = engine.place_order(order_factory(OrderSide.SELL, 6))
        assert result.reason == RejectionReason.INSUFFICIENT_SHARES
        assert "Available: 5" in result.message

    def test_second_sell_of_same_shares_rejected(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar,
    ) -> None:
        engine.execute_order(engine.place_order(order_factory(OrderSide.BUY, 10)).order, MONDAY)
        first = engine.place_order(order_factory(OrderSide.SELL, 10))
        second = engine.place_order(order_factory(OrderSide.SELL, 10))

        assert first.accepted
        assert not second.accepted
        assert second.reason == RejectionReason.INSUFFICIENT_SHARES
        assert "Available: 0" in second.message
        assert [o.order_id for o in ledger.find_pending_orders("acct-1", MONDAY)] == [first.order.order_id]

    def test_partial_sells_share_the_position(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        engine.execute_order(engine.place_order(order_factory(OrderSide.BUY, 10)).order, MONDAY)
        assert engine.place_order(order_factory(OrderSide.SELL, 6)).accepted
        assert engine.place_order(order_factory(OrderSide.SELL, 4)).accepted
        assert engine.place_order(order_factory(OrderSide.SELL, 1)).reason == RejectionReason.INSUFFICIENT_SHARES

    def test_cancelled_sell_releases_shares(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        engine.execute_order(engine.place_order(order_factory(OrderSide.BUY, 10)).order, MONDAY)
        first = engine.place_order(order_factory(OrderSide.SELL, 10)).order
        engine.cancel_order(first.order_id)
        assert engine.place_order(order_factory(OrderSide.SELL, 10)).accepted


# ── Execution ────────────────────────────────────────────────────


class TestExecuteOrder:
    def test_market_buy_fill_updates_ledger(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar,
    ) -> None:
        order = engine.place_order(order_factory(OrderSide.BUY, 10)).order
        result = engine.execute_order(order, MONDAY)

        assert result.outcome == FillOutcome.FILLED
        trade = result.trade
        assert trade is not None
        assert trade.price == Decimal("100.05")
        assert trade.commission == Decimal("1.00")
        assert trade.total_amount == Decimal("1001.50")

        assert ledger.get_account("acct-1").current_cash == Decimal("8998.50")
        position = ledger.get_position("acct-1", order.instrument_id)
        assert position.quantity == 10
        assert position.average_cost == Decimal("100.05")
        assert position.current_value == Decimal("1000.50")
        assert position.unrealized_pnl == Decimal("0.00")

        stored = ledger.get_order(order.order_id)
        assert stored.status == OrderStatus.FILLED
        assert stored.filled_quantity == 10
        assert stored.filled_price == Decimal("100.05")
        assert stored.filled_date == MONDAY
        assert ledger.list_trades("acct-1") == [trade]

    def test_sell_closing_position_deletes_it(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, market, instrument, order_factory, monday_bar,
    ) -> None:
        buy = engine.place_order(order_factory(OrderSide.BUY, 10)).order
        engine.execute_order(buy, MONDAY)
        _add_bar(market, make_bar(instrument.instrument_id, TUESDAY, "110.00", "111.00", "109.00", "110.50"))

        sell = engine.place_order(order_factory(OrderSide.SELL, 10, order_date=TUESDAY)).order
        result = engine.execute_order(sell, TUESDAY)

        assert result.filled
        assert result.trade.price == Decimal("109.95")
        assert result.trade.commission == Decimal("1.10")
        assert result.trade.total_amount == Decimal("1098.40")
        assert ledger.get_account("acct-1").current_cash == Decimal("10096.90")
        assert ledger.get_position("acct-1", instrument.instrument_id) is None
        assert ledger.list_positions("acct-1") == []

    def test_second_buy_blends_average_cost(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, market, instrument, order_factory, monday_bar,
    ) -> None:
        engine.execute_order(engine.place_order(order_factory(OrderSide.BUY, 10)).order, MONDAY)
        _add_bar(market, make_bar(instrument.instrument_id, TUESDAY, "110.00", "111.00", "109.00", "110.50"))
        engine.execute_order(
            engine.place_order(order_factory(OrderSide.BUY, 5, order_date=TUESDAY)).order, TUESDAY,
        )

        position = ledger.get_position("acct-1", instrument.instrument_id)
        assert position.quantity == 15
        # (100.05 * 10 + 110.06 * 5) / 15 = 103.3866..
        assert position.average_cost == Decimal("103.39")
        assert position.current_value == Decimal("1650.90")
        assert position.unrealized_pnl == Decimal("100.05")

    def test_limit_not_reached_leaves_order_pending(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar,
    ) -> None:
        order = engine.place_order(
            order_factory(OrderSide.BUY, 10, order_type=OrderType.LIMIT, limit_price="97.00"),
        ).order
        result = engine.execute_order(order, MONDAY)

        assert result.outcome == FillOutcome.NOT_FILLED
        assert result.reason == RejectionReason.LIMIT_NOT_REACHED
        assert ledger.get_order(order.order_id).status == OrderStatus.PENDING
        assert ledger.get_account("acct-1").current_cash == Decimal("10000.00")
        assert ledger.list_trades("acct-1") == []

    def test_limit_buy_fills_at_limit_price(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar,
    ) -> None:
        order = engine.place_order(
            order_factory(OrderSide.BUY, 10, order_type=OrderType.LIMIT, limit_price="99.00"),
        ).order
        result = engine.execute_order(order, MONDAY)

        assert result.trade.price == Decimal("99.00")
        assert result.trade.total_amount == Decimal("991.00")
        assert ledger.get_account("acct-1").current_cash == Decimal("9009.00")

    def test_non_trading_day_is_not_filled(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar,
    ) -> None:
        order = engine.place_order(order_factory(OrderSide.BUY, 10)).order
        result = engine.execute_order(order, SATURDAY)
        assert result.outcome == FillOutcome.NOT_FILLED
        assert result.reason == RejectionReason.NON_TRADING_DAY
        assert ledger.get_order(order.order_id).is_pending

    def test_negative_cash_guard_rejects_at_fill(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, market, instrument, order_factory, monday_bar,
    ) -> None:
        # Estimate: 98 * 101.00 + 9.90 = 9907.90, affordable.
        order = engine.place_order(order_factory(OrderSide.BUY, 98)).order
        assert order is not None
        # Gap up: 98 * 105.05 + 10.29 = 10305.19, not affordable.
        _add_bar(market, make_bar(instrument.instrument_id, TUESDAY, "105.00", "106.00", "104.00", "105.50"))

        result = engine.execute_order(order, TUESDAY)

        assert result.outcome == FillOutcome.REJECTED
        assert result.reason == RejectionReason.NEGATIVE_CASH_GUARD
        stored = ledger.get_order(order.order_id)
        assert stored.status == OrderStatus.REJECTED
        assert stored.filled_quantity == 0
        assert stored.filled_price is None
        assert stored.filled_date == TUESDAY
        assert ledger.get_account("acct-1").current_cash == Decimal("10000.00")
        assert ledger.list_positions("acct-1") == []
        assert ledger.list_trades("acct-1") == []

    def test_filled_order_is_not_processed_again(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar,
    ) -> None:
        order = engine.place_order(order_factory(OrderSide.BUY, 10)).order
        engine.execute_order(order, MONDAY)
        again = engine.execute_order(order, MONDAY)

        assert again.outcome == FillOutcome.NOT_FILLED
        assert again.reason == RejectionReason.ORDER_NOT_PENDING
        assert len(ledger.list_trades("acct-1")) == 1
        assert ledger.get_account("acct-1").current_cash == Decimal("8998.50")

    def test_unpersisted_order_is_not_filled(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        result = engine.execute_order(order_factory(OrderSide.BUY, 1), MONDAY)
        assert result.reason == RejectionReason.ORDER_NOT_FOUND

    def test_sell_against_vanished_position_is_fatal(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, instrument, order_factory, monday_bar,
    ) -> None:
        engine.execute_order(engine.place_order(order_factory(OrderSide.BUY, 10)).order, MONDAY)
        sell = engine.place_order(order_factory(OrderSide.SELL, 10)).order
        ledger.delete_position("acct-1", instrument.instrument_id)

        cash_before = ledger.get_account("acct-1").current_cash
        with pytest.raises(LedgerIntegrityError):
            engine.execute_order(sell, MONDAY)
        assert ledger.get_order(sell.order_id).is_pending
        assert ledger.get_account("acct-1").current_cash == cash_before

    def test_date_before_order_date_is_not_filled(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, market, instrument, order_factory, monday_bar,
    ) -> None:
        _add_bar(market, make_bar(instrument.instrument_id, TUESDAY, "104.00", "106.00", "103.00", "105.00"))
        order = engine.place_order(order_factory(OrderSide.BUY, 10, order_date=TUESDAY)).order

        result = engine.execute_order(order, MONDAY)

        assert result.outcome == FillOutcome.NOT_FILLED
        assert result.reason == RejectionReason.BEFORE_ORDER_DATE
        assert ledger.get_order(order.order_id).is_pending
        assert ledger.list_trades("acct-1") == []
        assert ledger.get_account("acct-1").current_cash == Decimal("10000.00")
        assert engine.execute_order(order, TUESDAY).filled

    def test_concurrent_fills_of_one_order_settle_once(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar,
    ) -> None:
        order = engine.place_order(order_factory(OrderSide.BUY, 10)).order
        results = []

        def _fill() -> None:
            results.append(engine.execute_order(order, MONDAY))

        threads = [threading.Thread(target=_fill) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r.filled) == 1
        assert len(ledger.list_trades("acct-1")) == 1
        assert ledger.get_account("acct-1").current_cash == Decimal("8998.50")


class TestExecutePendingOrders:
    def test_only_orders_placed_on_or_before_date(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, market, instrument, order_factory, monday_bar,
    ) -> None:
        early = engine.place_order(order_factory(OrderSide.BUY, 1)).order
        late = engine.place_order(order_factory(OrderSide.BUY, 1, order_date=TUESDAY)).order

        results = engine.execute_pending_orders("acct-1", MONDAY)

        assert [r.order.order_id for r in results] == [early.order_id]
        assert ledger.get_order(late.order_id).is_pending

    def test_orders_are_independent(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, market, instrument, order_factory, monday_bar,
    ) -> None:
        limited = engine.place_order(
            order_factory(OrderSide.BUY, 1, order_type=OrderType.LIMIT, limit_price="90.00"),
        ).order
        market_order = engine.place_order(order_factory(OrderSide.BUY, 1)).order

        results = {r.order.order_id: r for r in engine.execute_pending_orders("acct-1", MONDAY)}

        assert results[limited.order_id].outcome == FillOutcome.NOT_FILLED
        assert results[market_order.order_id].outcome == FillOutcome.FILLED

    def test_only_one_sell_per_share_reaches_the_batch(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, market, instrument, order_factory, monday_bar,
    ) -> None:
        engine.execute_order(engine.place_order(order_factory(OrderSide.BUY, 10)).order, MONDAY)
        _add_bar(market, make_bar(instrument.instrument_id, TUESDAY, "110.00", "111.00", "109.00", "110.50"))
        sell = engine.place_order(order_factory(OrderSide.SELL, 10, order_date=TUESDAY)).order
        engine.place_order(order_factory(OrderSide.SELL, 10, order_date=TUESDAY))
        buy = engine.place_order(order_factory(OrderSide.BUY, 1, order_date=TUESDAY)).order

        results = {r.order.order_id: r for r in engine.execute_pending_orders("acct-1", TUESDAY)}

        assert set(results) == {sell.order_id, buy.order_id}
        assert results[sell.order_id].filled
        assert results[buy.order_id].filled
        assert ledger.find_pending_orders("acct-1", TUESDAY) == []

    def test_pending_limit_fills_on_later_day(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, market, instrument, order_factory, monday_bar,
    ) -> None:
        order = engine.place_order(
            order_factory(OrderSide.BUY, 1, order_type=OrderType.LIMIT, limit_price="95.00"),
        ).order
        engine.execute_pending_orders("acct-1", MONDAY)
        _add_bar(market, make_bar(instrument.instrument_id, WEDNESDAY, "96.00", "97.00", "94.50", "95.50"))

        results = engine.execute_pending_orders("acct-1", WEDNESDAY)

        assert results[0].filled
        assert ledger.get_order(order.order_id).filled_date == WEDNESDAY


class TestRevaluePositions:
    def test_marks_to_latest_close_idempotently(
        self, engine: OrderEngine, ledger: InMemoryLedgerStore, market, instrument, order_factory, monday_bar,
    ) -> None:
        engine.execute_order(engine.place_order(order_factory(OrderSide.BUY, 10)).order, MONDAY)
        _add_bar(market, make_bar(instrument.instrument_id, TUESDAY, "104.00", "106.00", "103.00", "105.00"))

        first = engine.revalue_positions("acct-1")
        second = engine.revalue_positions("acct-1")

        assert first == second
        position = ledger.get_position("acct-1", instrument.instrument_id)
        assert position.current_value == Decimal("1050.00")
        assert position.unrealized_pnl == Decimal("49.50")
        assert position.quantity == 10
        assert ledger.get_account("acct-1").current_cash == Decimal("8998.50")

    def test_no_positions_is_a_no_op(self, engine: OrderEngine) -> None:
        assert engine.revalue_positions("acct-1") == []


class TestCancelOrder:
    def test_cancel_pending(self, engine: OrderEngine, ledger: InMemoryLedgerStore, order_factory, monday_bar) -> None:
        order = engine.place_order(order_factory(OrderSide.BUY, 1)).order
        result = engine.cancel_order(order.order_id)
        assert result.accepted
        assert ledger.get_order(order.order_id).status == OrderStatus.CANCELLED
        assert engine.execute_pending_orders("acct-1", MONDAY) == []

    def test_cancel_twice_rejected(self, engine: OrderEngine, order_factory, monday_bar) -> None:
        order = engine.place_order(order_factory(OrderSide.BUY, 1)).order
        engine.cancel_order(order.order_id)
        assert engine.cancel_order(order.order_id).reason == RejectionReason.ORDER_NOT_PENDING

    def test_cancel_unknown(self, engine: OrderEngine) -> None:
        assert engine.cancel_order("nope").reason == RejectionReason.ORDER_NOT_FOUND
