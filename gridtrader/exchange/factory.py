"""
Backend selection. The only place that knows concrete trader classes.
"""

from __future__ import annotations

import json
import logging

from gridtrader.config.config import Settings
from gridtrader.errors import ConfigError
from gridtrader.exchange.base import GridTrader, as_grid_trader

log = logging.getLogger("gridbot")


def build_trader(settings: Settings) -> GridTrader:
    exchange = settings.exchange
    if exchange == "alpaca":
        from gridtrader.exchange.alpaca import AlpacaTrader

        trader = AlpacaTrader(
            settings.api_key or "",
            settings.api_secret or "",
            paper=settings.paper,
            base_url=settings.base_url,
            timeout=settings.http_timeout,
        )
    elif exchange == "binance":
        from gridtrader.exchange.binance import BinanceFuturesTrader

        trader = BinanceFuturesTrader(
            settings.api_key or "",
            settings.api_secret or "",
            testnet=settings.paper,
            base_url=settings.base_url,
            timeout=settings.http_timeout,
        )
    elif exchange == "hyperliquid":
        from hyperliquid.exchange import Exchange
        from hyperliquid.info import Info
        from hyperliquid.utils import constants

        from gridtrader.exchange.hyperliquid import HyperliquidTrader

        base_url = settings.base_url or (constants.TESTNET_API_URL if settings.paper else constants.MAINNET_API_URL)
        account = settings.resolve_account()
        info = Info(base_url, skip_ws=True)
        hl_exchange = Exchange(settings.resolve_signer(), base_url, account_address=account)
        trader = HyperliquidTrader(info, hl_exchange, account, timeout=settings.exchange_timeout)
    else:
        raise ConfigError(f"unknown exchange {exchange!r}")

    log.info(json.dumps({"event": "trader_built", "exchange": exchange, "paper": settings.paper}))
    return as_grid_trader(trader)
