"""
Tests for indicators and the Binance kline provider.
"""

import httpx
import pytest

from gridtrader.errors import ExchangeError
from gridtrader.market_data.provider import (
    BinanceKlineProvider,
    Kline,
    average_true_range,
    ema,
    rsi,
)


def k(high, low, close, open_=None, volume=1.0, t=0):
    return Kline(open_time=t, open=open_ if open_ is not None else close, high=high, low=low, close=close,
                 volume=volume)


class TestIndicators:
    def test_atr_needs_two_klines(self):
        assert average_true_range([]) == 0.0
        assert average_true_range([k(101, 99, 100)]) == 0.0

    def test_atr_uses_gaps(self):
        klines = [k(101, 99, 100), k(104, 102, 103), k(103, 97, 98)]
        # TRs: max(2, 4, 2) = 4, max(6, 0, 6) = 6
        assert average_true_range(klines) == pytest.approx(5.0)

    def test_atr_window(self):
        klines = [k(101, 99, 100)] + [k(110, 100, 105)] + [k(106, 104, 105)] * 3
        assert average_true_range(klines, period=2) == pytest.approx(2.0)

    def test_ema_short_series_is_mean(self):
        assert ema([1.0, 2.0, 3.0], period=20) == pytest.approx(2.0)
        assert ema([]) == 0.0

    def test_ema_constant_series(self):
        assert ema([5.0] * 30, period=20) == pytest.approx(5.0)

    def test_rsi_bounds(self):
        assert rsi([1.0] * 5) == 50.0
        assert rsi([float(i) for i in range(30)]) == 100.0
        assert rsi([float(30 - i) for i in range(30)]) == pytest.approx(0.0)

    def test_rsi_mixed(self):
        values = [100, 101, 100, 101, 100, 101, 100, 101, 100, 101, 100, 101, 100, 101, 100, 101]
        assert 40.0 < rsi([float(v) for v in values]) < 60.0


def kline_rows(n, start=100.0):
    rows = []
    for i in range(n):
        c = start + i
        rows.append([i * 60_000, str(c - 0.5), str(c + 1), str(c - 1), str(c), "10"])
    return rows


class TestBinanceKlineProvider:
    """REST kline source."""

    @pytest.mark.asyncio
    async def test_snapshot(self):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            return httpx.Response(200, json=kline_rows(20))

        provider = BinanceKlineProvider(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        snap = await provider.get_snapshot("BTCUSDT")

        assert snap.price == pytest.approx(119.0)
        assert snap.change_pct == pytest.approx((119.0 - 99.5) / 99.5 * 100)
        assert snap.atr14 > 0
        assert snap.rsi14 == 100.0
        assert [p["interval"] for p in seen] == ["5m", "4h"]
        assert seen[0]["symbol"] == "BTCUSDT"
        assert snap.to_dict()["symbol"] == "BTCUSDT"

    @pytest.mark.asyncio
    async def test_get_atr(self):
        provider = BinanceKlineProvider(client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=kline_rows(20)))
        ))
        # every bar: high - low = 2, gaps to previous close = 2 / 0
        assert await provider.get_atr("BTCUSDT", "4h") == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_error_status(self):
        provider = BinanceKlineProvider(client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(500, text="oops"))
        ))
        with pytest.raises(ExchangeError):
            await provider.get_klines("BTCUSDT", "5m", 10)

    @pytest.mark.asyncio
    async def test_empty_klines_rejected(self):
        provider = BinanceKlineProvider(client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[]))
        ))
        with pytest.raises(ExchangeError):
            await provider.get_snapshot("BTCUSDT")
