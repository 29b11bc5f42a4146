"""Synthetic daily OHLCV generator using geometric Brownian motion.

Per weekday the close follows::

    log_return = mu / 252 + sigma * sqrt(1 / 252) * z        z ~ N(0, 1)
    close      = prev_close * exp(log_return)
    open       = prev_close

High and low widen ``max/min(open, close)`` by ``|z2| * 2%`` and
``|z3| * 2%`` and are then clamped back around the body.  Volume is a
10M + U[0, 5M) base scaled by ``1 + 10 * |log_return|``.

Draws happen in a fixed order (z, z2, z3, volume) from a seeded
``numpy.random.Generator`` so identical seeds and parameters always
produce identical bars.
"""

from __future__ import annotations

import math
import zlib
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path

import numpy as np
import yaml
from uuid_extensions import uuid7

from src.core.constants import (
    BASE_VOLUME,
    DEFAULT_HISTORY_YEARS,
    DEFAULT_SEED,
    INTRADAY_RANGE,
    TRADING_DAYS_PER_YEAR,
    VOLUME_JITTER,
    VOLUME_MOVE_MULTIPLIER,
)
from src.core.exceptions import StorageError
from src.core.interfaces import MarketDataStore
from src.core.logging import get_logger
from src.core.money import round_money
from src.core.types import Instrument, PriceBar

log = get_logger(__name__)


# ── Instrument Parameters ───────────────────────────────────────


@dataclass(frozen=True)
class SeriesParams:
    """Generator inputs for one instrument (one row of ``instruments.yaml``)."""

    ticker: str
    name: str
    start_price: float
    volatility: float
    drift: float

    def __post_init__(self) -> None:
        _check_params(self.start_price, self.volatility)


def load_instrument_configs(path: str | Path) -> list[SeriesParams]:
    """Load generator parameters from an ``instruments.yaml`` file."""
    with Path(path).open(encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    entries = raw.get("instruments", []) if isinstance(raw, dict) else []
    configs: list[SeriesParams] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        configs.append(
            SeriesParams(
                ticker=str(entry["ticker"]),
                name=str(entry.get("name", entry["ticker"])),
                start_price=float(entry["start_price"]),
                volatility=float(entry["volatility"]),
                drift=float(entry.get("drift", 0.0)),
            ),
        )
    return configs


# ── Calendar Helpers ────────────────────────────────────────────


def trading_days(start: date, end: date) -> Iterator[date]:
    """Yield every Monday–Friday from *start* to *end* inclusive."""
    current = start
    while current <= end:
        if current.weekday() < 5:
            yield current
        current += timedelta(days=1)


def years_before(end: date, years: int) -> date:
    """Same calendar day *years* earlier (Feb 29 falls back to Feb 28)."""
    try:
        return end.replace(year=end.year - years)
    except ValueError:
        return end.replace(year=end.year - years, day=28)


def _check_params(start_price: float, volatility: float) -> None:
    if start_price <= 0:
        msg = f"start_price must be positive, got {start_price}"
        raise ValueError(msg)
    if not 0.0 <= volatility <= 1.0:
        msg = f"volatility must be within [0, 1], got {volatility}"
        raise ValueError(msg)


# ── Generator ───────────────────────────────────────────────────


class PriceSeriesGenerator:
    """Reproducible GBM bar generator.

    Args:
        seed: Base seed. Each call to :meth:`generate_series` starts a
            fresh ``numpy`` generator from this seed unless an explicit
            seed is passed.
    """

    def __init__(self, seed: int = DEFAULT_SEED) -> None:
        self._seed = seed

    @property
    def seed(self) -> int:
        return self._seed

    def seed_for(self, ticker: str) -> list[int]:
        """Per-instrument seed so a series does not depend on generation order."""
        return [self._seed, zlib.crc32(ticker.encode("utf-8"))]

    def generate_series(
        self,
        instrument_id: str,
        start: date,
        end: date,
        start_price: float,
        volatility: float,
        drift: float,
        *,
        seed: int | Sequence[int] | None = None,
    ) -> list[PriceBar]:
        """Generate one bar per weekday in ``[start, end]``.

        Args:
            instrument_id: Instrument the bars belong to.
            start: First calendar day (inclusive).
            end: Last calendar day (inclusive).
            start_price: Open of the first bar (> 0).
            volatility: Annualized sigma in ``[0, 1]``.
            drift: Annualized mu.
            seed: Overrides the generator's base seed for this call.

        Returns:
            Bars in ascending date order.

        Raises:
            ValueError: On a non-positive start price, volatility outside
                ``[0, 1]`` or ``start`` after ``end``.
        """
        _check_params(start_price, volatility)
        if start > end:
            msg = f"start {start.isoformat()} is after end {end.isoformat()}"
            raise ValueError(msg)

        rng = np.random.default_rng(self._seed if seed is None else seed)

        dt = 1.0 / TRADING_DAYS_PER_YEAR
        daily_drift = drift * dt
        daily_vol = volatility * math.sqrt(dt)

        bars: list[PriceBar] = []
        prev_close = float(start_price)

        for day in trading_days(start, end):
            shock = float(rng.standard_normal())
            log_return = daily_drift + daily_vol * shock
            close = prev_close * math.exp(log_return)
            open_ = prev_close

            high = max(open_, close) * (1.0 + abs(float(rng.standard_normal())) * INTRADAY_RANGE)
            low = min(open_, close) * (1.0 - abs(float(rng.standard_normal())) * INTRADAY_RANGE)
            high = max(high, open_, close)
            low = min(low, open_, close)

            base_volume = BASE_VOLUME + int(rng.integers(0, VOLUME_JITTER))
            volume = int(base_volume * (1.0 + abs(log_return) * VOLUME_MOVE_MULTIPLIER))

            o = round_money(open_)
            c = round_money(close)
            # Rounding can move the body past the wick by a cent.
            h = max(round_money(high), o, c)
            lo = min(round_money(low), o, c)

            bars.append(
                PriceBar(
                    instrument_id=instrument_id,
                    trade_date=day,
                    open=o,
                    high=h,
                    low=lo,
                    close=c,
                    adjusted_close=c,
                    volume=volume,
                ),
            )
            prev_close = close

        log.debug(
            "price_series_generated",
            instrument_id=instrument_id,
            start=start.isoformat(),
            end=end.isoformat(),
            n_bars=len(bars),
            last_close=str(bars[-1].close) if bars else None,
        )
        return bars

    def generate_and_store(
        self,
        store: MarketDataStore,
        instrument_id: str,
        start: date,
        end: date,
        start_price: float,
        volatility: float,
        drift: float,
        *,
        seed: int | Sequence[int] | None = None,
    ) -> list[PriceBar]:
        """Generate a series and replace the instrument's stored bars with it."""
        bars = self.generate_series(
            instrument_id, start, end, start_price, volatility, drift, seed=seed,
        )
        previous = store.count_bars(instrument_id)
        written = store.bulk_replace(instrument_id, bars)
        log.info(
            "price_series_stored",
            instrument_id=instrument_id,
            replaced=previous,
            written=written,
        )
        return bars

    def generate_all(
        self,
        store: MarketDataStore,
        configs: Sequence[SeriesParams],
        end_date: date,
        years: int = DEFAULT_HISTORY_YEARS,
    ) -> dict[str, int]:
        """Regenerate a rolling *years*-long history for every configured ticker.

        Instruments missing from *store* are registered first.  A failure
        for one ticker is logged and does not stop the others.

        Returns:
            Ticker → number of bars written, for the tickers that succeeded.
        """
        start_date = years_before(end_date, years)
        log.info(
            "market_data_generation_started",
            start=start_date.isoformat(),
            end=end_date.isoformat(),
            n_instruments=len(configs),
        )

        written: dict[str, int] = {}
        for cfg in configs:
            instrument = store.get_instrument_by_ticker(cfg.ticker)
            if instrument is None:
                instrument = store.add_instrument(
                    Instrument(instrument_id=str(uuid7()), ticker=cfg.ticker, name=cfg.name),
                )
            try:
                bars = self.generate_and_store(
                    store,
                    instrument.instrument_id,
                    start_date,
                    end_date,
                    cfg.start_price,
                    cfg.volatility,
                    cfg.drift,
                    seed=self.seed_for(cfg.ticker),
                )
            except (ValueError, StorageError) as exc:
                log.error("price_series_failed", ticker=cfg.ticker, error=str(exc))
                continue
            written[cfg.ticker] = len(bars)

        log.info(
            "market_data_generation_complete",
            n_succeeded=len(written),
            n_failed=len(configs) - len(written),
        )
        return written
