"""System-wide constants. All magic numbers and strings live here."""

from __future__ import annotations

from decimal import Decimal

# ── Money ────────────────────────────────────────────────────────
MONEY_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# ── Default Execution Costs ──────────────────────────────────────
DEFAULT_COMMISSION_RATE = Decimal("0.001")   # 0.1% of subtotal
DEFAULT_MIN_COMMISSION = Decimal("1.00")     # $1 floor
DEFAULT_SLIPPAGE_RATE = Decimal("0.0005")    # 0.05%, market orders only

# ── Accounts ─────────────────────────────────────────────────────
DEFAULT_INITIAL_CASH = Decimal("10000.00")

# ── Price Generation ─────────────────────────────────────────────
TRADING_DAYS_PER_YEAR = 252
INTRADAY_RANGE = 0.02               # 2% max widening unit for high/low
BASE_VOLUME = 10_000_000
VOLUME_JITTER = 5_000_000           # uniform [0, jitter)
VOLUME_MOVE_MULTIPLIER = 10
DEFAULT_SEED = 42
DEFAULT_HISTORY_YEARS = 10
