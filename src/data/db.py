"""SQL schema definitions and engine factory (SQLite by default)."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from config.settings import get_settings
from src.core.logging import get_logger

log = get_logger(__name__)

metadata = MetaData()

# Every money column holds cents.
_MONEY = Numeric(18, 2, asdecimal=True)

# ── Tables ───────────────────────────────────────────────────────

instruments = Table(
    "instruments",
    metadata,
    Column("instrument_id", String, primary_key=True),
    Column("ticker", String, nullable=False, unique=True),
    Column("name", String, nullable=False),
)

price_bars = Table(
    "price_bars",
    metadata,
    Column("instrument_id", String, ForeignKey("instruments.instrument_id"), primary_key=True),
    Column("trade_date", Date, primary_key=True),
    Column("open", _MONEY, nullable=False),
    Column("high", _MONEY, nullable=False),
    Column("low", _MONEY, nullable=False),
    Column("close", _MONEY, nullable=False),
    Column("adjusted_close", _MONEY, nullable=False),
    Column("volume", BigInteger, nullable=False),
)

accounts = Table(
    "accounts",
    metadata,
    Column("account_id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("initial_cash", _MONEY, nullable=False),
    Column("current_cash", _MONEY, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

positions = Table(
    "positions",
    metadata,
    Column("account_id", String, ForeignKey("accounts.account_id"), primary_key=True),
    Column("instrument_id", String, ForeignKey("instruments.instrument_id"), primary_key=True),
    Column("quantity", Integer, nullable=False),
    Column("average_cost", _MONEY, nullable=False),
    Column("current_value", _MONEY, nullable=False),
    Column("unrealized_pnl", _MONEY, nullable=False),
)

orders = Table(
    "orders",
    metadata,
    Column("order_id", String, primary_key=True),
    Column("account_id", String, ForeignKey("accounts.account_id"), nullable=False, index=True),
    Column("instrument_id", String, ForeignKey("instruments.instrument_id"), nullable=False),
    Column("order_type", String, nullable=False),
    Column("side", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("limit_price", _MONEY),
    Column("status", String, nullable=False, index=True),
    Column("filled_quantity", Integer, nullable=False, default=0),
    Column("filled_price", _MONEY),
    Column("order_date", Date, nullable=False),
    Column("filled_date", Date),
)

trades = Table(
    "trades",
    metadata,
    Column("trade_id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.order_id"), nullable=False, unique=True),
    Column("account_id", String, ForeignKey("accounts.account_id"), nullable=False, index=True),
    Column("instrument_id", String, ForeignKey("instruments.instrument_id"), nullable=False),
    Column("side", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("price", _MONEY, nullable=False),
    Column("commission", _MONEY, nullable=False),
    Column("total_amount", _MONEY, nullable=False),
    Column("trade_date", Date, nullable=False, index=True),
)


# ── Engine ───────────────────────────────────────────────────────


def create_db_engine(url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine for *url* (defaults to ``Settings.database_url``).

    In-memory SQLite URLs share one connection so every session sees the
    same database.
    """
    db_url = url or get_settings().database_url.get_secret_value()
    parsed = make_url(db_url)

    if parsed.get_backend_name() == "sqlite":
        database = parsed.database or ""
        if database in ("", ":memory:"):
            engine = create_engine(
                db_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(db_url)
    else:
        engine = create_engine(db_url, pool_pre_ping=True)

    log.info("database_engine_created", backend=parsed.get_backend_name(), database=parsed.database)
    return engine


def init_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    metadata.create_all(engine)
    log.info("schema_initialized", tables=sorted(metadata.tables))
