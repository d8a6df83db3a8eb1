"""
Market data: klines, indicators and the snapshot fed to the decision service.

Indicators are plain-Python over kline closes; the kline source is the
public Binance futures REST endpoint.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from gridtrader.core.utils import to_float
from gridtrader.errors import ExchangeError

log = logging.getLogger("gridbot")

ATR_PERIOD = 14
EMA_PERIOD = 20
RSI_PERIOD = 14


@dataclass
class Kline:
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class MarketSnapshot:
    symbol: str
    price: float
    change_pct: float = 0.0
    ema20: float = 0.0
    rsi14: float = 0.0
    atr14: float = 0.0
    long_atr14: float = 0.0
    volume: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def average_true_range(klines: Sequence[Kline], period: int = ATR_PERIOD) -> float:
    """Simple mean of the last `period` true ranges. 0.0 with fewer than two klines."""
    if len(klines) < 2:
        return 0.0
    trs = []
    for prev, cur in zip(klines, klines[1:]):
        trs.append(max(
            cur.high - cur.low,
            abs(cur.high - prev.close),
            abs(cur.low - prev.close),
        ))
    window = trs[-period:]
    return sum(window) / len(window)


def ema(values: Sequence[float], period: int = EMA_PERIOD) -> float:
    if not values:
        return 0.0
    if len(values) < period:
        return sum(values) / len(values)
    k = 2 / (period + 1)
    out = sum(values[:period]) / period
    for v in values[period:]:
        out = v * k + out * (1 - k)
    return out


def rsi(values: Sequence[float], period: int = RSI_PERIOD) -> float:
    """Wilder RSI. Returns 50.0 when there is not enough data."""
    if len(values) <= period:
        return 50.0
    gains = 0.0
    losses = 0.0
    for prev, cur in zip(values[:period], values[1:period + 1]):
        delta = cur - prev
        if delta > 0:
            gains += delta
        else:
            losses -= delta
    avg_gain = gains / period
    avg_loss = losses / period
    for prev, cur in zip(values[period:], values[period + 1:]):
        delta = cur - prev
        avg_gain = (avg_gain * (period - 1) + max(delta, 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + max(-delta, 0.0)) / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


class MarketDataProvider(ABC):
    @abstractmethod
    async def get_klines(self, symbol: str, interval: str, limit: int) -> List[Kline]: ...

    @abstractmethod
    async def get_snapshot(self, symbol: str) -> MarketSnapshot: ...

    async def get_atr(self, symbol: str, interval: str, period: int = ATR_PERIOD) -> float:
        klines = await self.get_klines(symbol, interval, max(period + 1, 20))
        return average_true_range(klines, period)

    async def close(self) -> None:
        """Release network resources."""


class BinanceKlineProvider(MarketDataProvider):
    def __init__(
        self,
        base_url: str = "https://fapi.binance.com",
        short_interval: str = "5m",
        long_interval: str = "4h",
        limit: int = 50,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.short_interval = short_interval
        self.long_interval = long_interval
        self.limit = limit
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def get_klines(self, symbol: str, interval: str, limit: int) -> List[Kline]:
        url = f"{self.base_url}/fapi/v1/klines"
        try:
            resp = await self.client.get(url, params={"symbol": symbol, "interval": interval, "limit": limit})
        except httpx.HTTPError as e:
            raise ExchangeError(f"klines {symbol} {interval} failed: {e}") from e
        if resp.status_code != 200:
            raise ExchangeError(f"klines {symbol} {interval}: status {resp.status_code}", resp.status_code)
        rows = resp.json()
        return [
            Kline(
                open_time=int(r[0]),
                open=to_float(r[1]),
                high=to_float(r[2]),
                low=to_float(r[3]),
                close=to_float(r[4]),
                volume=to_float(r[5]),
            )
            for r in rows
        ]

    async def get_snapshot(self, symbol: str) -> MarketSnapshot:
        short = await self.get_klines(symbol, self.short_interval, self.limit)
        if not short:
            raise ExchangeError(f"no klines for {symbol}")
        long = await self.get_klines(symbol, self.long_interval, self.limit)
        closes = [k.close for k in short]
        first = short[0].open or closes[0]
        snap = MarketSnapshot(
            symbol=symbol,
            price=closes[-1],
            change_pct=(closes[-1] - first) / first * 100 if first else 0.0,
            ema20=ema(closes),
            rsi14=rsi(closes),
            atr14=average_true_range(short),
            long_atr14=average_true_range(long),
            volume=short[-1].volume,
        )
        log.debug(json.dumps({"event": "market_snapshot", **snap.to_dict()}))
        return snap
