"""
Builds the per-cycle GridContext from market data, the state snapshot and
account data.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from gridtrader.config.config import GridConfig
from gridtrader.core.utils import call_with_timeout
from gridtrader.decision.models import GridContext
from gridtrader.errors import ExchangeError
from gridtrader.exchange.base import GridTrader
from gridtrader.market_data.provider import MarketDataProvider
from gridtrader.state.grid_state import GridStateStore

log = logging.getLogger("gridbot")


class GridContextBuilder:
    def __init__(
        self,
        config: GridConfig,
        store: GridStateStore,
        trader: GridTrader,
        market_data: Optional[MarketDataProvider] = None,
        exchange_timeout: float = 30.0,
    ) -> None:
        self.config = config
        self.store = store
        self.trader = trader
        self.market_data = market_data
        self.exchange_timeout = exchange_timeout

    async def build(self) -> GridContext:
        """
        Market data and price are prerequisites and propagate on failure.
        Balance and positions are best effort.
        """
        symbol = self.config.symbol
        market = None
        if self.market_data is not None:
            market = await call_with_timeout(
                self.market_data.get_snapshot(symbol), self.exchange_timeout, "market_snapshot", symbol
            )
        if market is not None and market.price > 0:
            price = market.price
        else:
            price = await call_with_timeout(
                self.trader.get_market_price(symbol), self.exchange_timeout, "get_market_price", symbol
            )

        ctx = GridContext(
            symbol=symbol,
            current_price=price,
            grid=self.store.snapshot(),
            market=market,
            grid_count=self.config.grid_count,
            total_investment=self.config.total_investment,
            leverage=self.config.leverage,
            distribution=self.config.distribution,
            stop_loss_pct=self.config.stop_loss_pct,
        )

        try:
            balance = await call_with_timeout(self.trader.get_balance(), self.exchange_timeout, "get_balance")
            ctx.total_equity = balance.equity
            ctx.available_balance = balance.available
            ctx.unrealized_pnl = balance.unrealized_pnl
        except ExchangeError as e:
            log.warning(json.dumps({"event": "context_balance_failed", "symbol": symbol, "err": str(e)}))

        try:
            positions = await call_with_timeout(self.trader.get_positions(), self.exchange_timeout, "get_positions")
            for pos in positions:
                if pos.symbol == symbol:
                    ctx.current_position = pos.quantity
        except ExchangeError as e:
            log.warning(json.dumps({"event": "context_positions_failed", "symbol": symbol, "err": str(e)}))

        return ctx
