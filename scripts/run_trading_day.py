#!/usr/bin/env python3
"""Process one trading day for an account and print its summary.

Usage:
    python scripts/run_trading_day.py --list-accounts
    python scripts/run_trading_day.py --open-account "Alice" --cash 10000
    python scripts/run_trading_day.py --account <id> --order BUY AAPL 10 --date 2024-06-28
    python scripts/run_trading_day.py --account <id> --order SELL AAPL 5 --limit 190.00
    python scripts/run_trading_day.py --account <id> --date 2024-07-01
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.core.exceptions import BourseError, InstrumentNotFoundError
from src.core.logging import get_logger, setup_logging
from src.core.types import FillOutcome, OrderSide, OrderType
from src.data.db import create_db_engine, init_schema
from src.data.sql_store import SqlLedgerStore, SqlMarketDataStore
from src.simulator.order_engine import CostModel, OrderEngine
from src.simulator.portfolio import PortfolioService

log = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="BOURSE trading day runner")
    parser.add_argument("--database-url", type=str, default=None, help="SQLAlchemy URL")
    who = parser.add_mutually_exclusive_group(required=True)
    who.add_argument("--account", type=str, help="Existing account ID")
    who.add_argument("--open-account", type=str, metavar="NAME", help="Open a new account")
    who.add_argument("--list-accounts", action="store_true", help="List existing accounts and exit")
    parser.add_argument("--cash", type=Decimal, default=None, help="Initial cash for --open-account")
    parser.add_argument(
        "--order",
        nargs=3,
        metavar=("SIDE", "TICKER", "QTY"),
        default=None,
        help="Place an order before processing, e.g. BUY AAPL 10",
    )
    parser.add_argument("--limit", type=Decimal, default=None, help="Limit price (makes --order a LIMIT order)")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=date.today(),
        help="Trading day to process (YYYY-MM-DD, default today)",
    )
    return parser.parse_args()


def main() -> int:
    setup_logging()
    args = parse_args()

    engine = create_db_engine(args.database_url)
    try:
        init_schema(engine)
        market = SqlMarketDataStore(engine)
        ledger = SqlLedgerStore(engine)
        order_engine = OrderEngine(market, ledger, CostModel.from_settings())
        service = PortfolioService(market, ledger, order_engine)

        if args.list_accounts:
            for acct in service.list_accounts():
                print(f"{acct.account_id}  {acct.name:<20} cash ${acct.current_cash:,.2f}")
            return 0

        if args.open_account:
            account = service.open_account(args.open_account, args.cash)
            print(f"Opened account {account.account_id}")
        else:
            account = service.get_account(args.account)

        if args.order:
            side_raw, ticker, qty_raw = args.order
            instrument = market.get_instrument_by_ticker(ticker.upper())
            if instrument is None:
                msg = f"Unknown ticker: {ticker}"
                raise InstrumentNotFoundError(msg, context={"ticker": ticker})
            order = OrderEngine.new_order(
                account_id=account.account_id,
                instrument_id=instrument.instrument_id,
                order_type=OrderType.LIMIT if args.limit is not None else OrderType.MARKET,
                side=OrderSide(side_raw.upper()),
                quantity=int(qty_raw),
                order_date=args.date,
                limit_price=args.limit,
            )
            result = order_engine.place_order(order)
            status = "accepted" if result.accepted else f"rejected ({result.reason.value})"
            print(f"Order {status}: {result.message}")

        for fill in order_engine.execute_pending_orders(account.account_id, args.date):
            if fill.outcome == FillOutcome.FILLED and fill.trade is not None:
                t = fill.trade
                print(
                    f"FILLED {t.side.value} {t.quantity} @ ${t.price:.2f} "
                    f"(commission ${t.commission:.2f}, total ${t.total_amount:.2f})",
                )
            else:
                print(f"{fill.outcome.value} {fill.order.order_id}: {fill.message}")

        print(service.get_summary(account.account_id).to_text())
    except BourseError as exc:
        log.error("trading_day_failed", error=str(exc), **exc.context)
        return 1
    except ValueError as exc:
        log.error("invalid_arguments", error=str(exc))
        return 2
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
