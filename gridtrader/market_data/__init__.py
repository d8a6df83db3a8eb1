"""
Market data package.

Kline retrieval and the indicators (ATR, EMA, RSI) used for grid bounds and
decision context.
"""

from gridtrader.market_data.provider import (
    BinanceKlineProvider,
    Kline,
    MarketDataProvider,
    MarketSnapshot,
    average_true_range,
    ema,
    rsi,
)

__all__ = [
    "BinanceKlineProvider",
    "Kline",
    "MarketDataProvider",
    "MarketSnapshot",
    "average_true_range",
    "ema",
    "rsi",
]
