"""BOURSE global settings, loaded from environment variables via .env file."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.constants import (
    DEFAULT_COMMISSION_RATE,
    DEFAULT_HISTORY_YEARS,
    DEFAULT_INITIAL_CASH,
    DEFAULT_MIN_COMMISSION,
    DEFAULT_SEED,
    DEFAULT_SLIPPAGE_RATE,
)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
INSTRUMENTS_FILE = PROJECT_ROOT / "config" / "instruments.yaml"


class Settings(BaseSettings):
    """All configuration flows through this class. Never read env vars directly."""

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    bourse_env: Literal["dev", "test", "prod"] = "dev"

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = False

    # ── Persistence ──────────────────────────────────────────────
    database_url: SecretStr = SecretStr(f"sqlite:///{PROJECT_ROOT / 'data' / 'bourse.db'}")

    # ── Market Data Generation ───────────────────────────────────
    market_data_seed: int = DEFAULT_SEED
    history_years: int = DEFAULT_HISTORY_YEARS
    instruments_file: Path = INSTRUMENTS_FILE

    # ── Accounts & Execution Costs ───────────────────────────────
    default_initial_cash: Decimal = DEFAULT_INITIAL_CASH
    commission_rate: Decimal = DEFAULT_COMMISSION_RATE
    min_commission: Decimal = DEFAULT_MIN_COMMISSION
    slippage_rate: Decimal = DEFAULT_SLIPPAGE_RATE

    @field_validator("commission_rate", "min_commission", "slippage_rate", "default_initial_cash")
    @classmethod
    def _non_negative(cls, value: Decimal) -> Decimal:
        if value < 0:
            msg = f"must be non-negative, got {value}"
            raise ValueError(msg)
        return value

    @field_validator("history_years")
    @classmethod
    def _positive_years(cls, value: int) -> int:
        if value <= 0:
            msg = f"history_years must be positive, got {value}"
            raise ValueError(msg)
        return value


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Singleton settings loader; reads .env once and reuses it."""
    global _settings_instance  # noqa: PLW0603
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
