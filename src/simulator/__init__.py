"""Paper-trading simulator: price generation, order execution and portfolio accounting."""

from src.simulator.order_engine import CostModel, OrderEngine
from src.simulator.pnl_calculator import PnLCalculator
from src.simulator.portfolio import PortfolioService
from src.simulator.position_tracker import PositionTracker
from src.simulator.price_generator import PriceSeriesGenerator, SeriesParams

__all__ = [
    "CostModel",
    "OrderEngine",
    "PnLCalculator",
    "PortfolioService",
    "PositionTracker",
    "PriceSeriesGenerator",
    "SeriesParams",
]
