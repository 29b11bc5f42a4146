#!/usr/bin/env python3
"""Regenerate synthetic daily bars for every configured instrument.

Usage:
    python scripts/generate_market_data.py
    python scripts/generate_market_data.py --years 2 --seed 7
    python scripts/generate_market_data.py --end-date 2024-06-28
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import get_settings
from src.core.logging import get_logger, setup_logging
from src.data.db import create_db_engine, init_schema
from src.data.sql_store import SqlMarketDataStore
from src.simulator.price_generator import PriceSeriesGenerator, load_instrument_configs

log = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="BOURSE market data generator")
    parser.add_argument("--database-url", type=str, default=None, help="SQLAlchemy URL")
    parser.add_argument(
        "--instruments",
        type=Path,
        default=settings.instruments_file,
        help="YAML file with ticker, name, start_price, volatility, drift",
    )
    parser.add_argument("--seed", type=int, default=settings.market_data_seed)
    parser.add_argument("--years", type=int, default=settings.history_years)
    parser.add_argument(
        "--end-date",
        type=date.fromisoformat,
        default=date.today(),
        help="Last calendar day of the series (YYYY-MM-DD, default today)",
    )
    return parser.parse_args()


def main() -> int:
    setup_logging()
    args = parse_args()

    configs = load_instrument_configs(args.instruments)
    if not configs:
        log.error("no_instruments_configured", path=str(args.instruments))
        return 1

    engine = create_db_engine(args.database_url)
    try:
        init_schema(engine)
        store = SqlMarketDataStore(engine)
        generator = PriceSeriesGenerator(seed=args.seed)
        written = generator.generate_all(store, configs, args.end_date, args.years)
    finally:
        engine.dispose()

    for ticker, count in sorted(written.items()):
        print(f"{ticker:<6} {count:>6} bars")
    failed = len(configs) - len(written)
    print(f"Generated {sum(written.values())} bars for {len(written)} instruments ({failed} failed)")
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
