"""
Exchange package.

Backend-agnostic trading contract, the limit-order adapter and the backend
factory. Concrete backends (alpaca, binance, hyperliquid) are imported
lazily by the factory.
"""

from gridtrader.exchange.base import (
    Balance,
    GridTrader,
    GridTraderAdapter,
    LimitOrderRequest,
    OpenOrder,
    OrderResult,
    Position,
    Trader,
    as_grid_trader,
)
from gridtrader.exchange.factory import build_trader

__all__ = [
    "Balance",
    "GridTrader",
    "GridTraderAdapter",
    "LimitOrderRequest",
    "OpenOrder",
    "OrderResult",
    "Position",
    "Trader",
    "as_grid_trader",
    "build_trader",
]
