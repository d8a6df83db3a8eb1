"""
Pytest configuration and shared fixtures.

FakeTrader is an in-memory GridTrader: resting orders live in a dict, fills
are simulated by removing an order from it.
"""

from typing import Dict, List, Optional

import pytest

from gridtrader.config.config import GridConfig
from gridtrader.errors import ExchangeError
from gridtrader.exchange.base import (
    Balance,
    GridTrader,
    LimitOrderRequest,
    OpenOrder,
    OrderResult,
    Position,
)
from gridtrader.risk.risk import RiskLimiter
from gridtrader.state.grid_state import GridStateStore
from gridtrader.strategy.grid_calculator import GridCalculator


class FakeTrader(GridTrader):
    name = "fake"

    def __init__(self, price: float = 100.0) -> None:
        self.price = price
        self.balance = Balance(equity=1000.0, cash=1000.0, buying_power=1000.0, available=1000.0)
        self.positions: List[Position] = []
        self.open_orders: Dict[str, OpenOrder] = {}
        self.placed: List[LimitOrderRequest] = []
        self.cancelled: List[str] = []
        self.cancel_all_calls = 0
        self.closes: List[tuple] = []
        self.leverage_calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self._next_oid = 0

    def _maybe_fail(self, op: str) -> None:
        exc = self.fail.get(op)
        if exc is not None:
            raise exc

    def fill(self, order_id: str) -> None:
        """Simulate a fill: the order leaves the book."""
        self.open_orders.pop(order_id, None)

    async def get_market_price(self, symbol: str) -> float:
        self._maybe_fail("price")
        return self.price

    async def get_balance(self) -> Balance:
        self._maybe_fail("balance")
        return self.balance

    async def get_positions(self) -> List[Position]:
        self._maybe_fail("positions")
        return list(self.positions)

    async def get_open_orders(self, symbol: str) -> List[OpenOrder]:
        self._maybe_fail("open_orders")
        return list(self.open_orders.values())

    async def place_limit_order(self, req: LimitOrderRequest) -> OrderResult:
        self._maybe_fail("place")
        self._next_oid += 1
        oid = f"oid-{self._next_oid}"
        self.placed.append(req)
        self.open_orders[oid] = OpenOrder(order_id=oid, symbol=req.symbol, side=req.side,
                                          quantity=req.quantity, price=req.price, client_id=req.client_id)
        return OrderResult(order_id=oid, symbol=req.symbol, client_id=req.client_id, status="new")

    async def place_order(self, symbol, side, quantity, order_type="market", price=None) -> OrderResult:
        self._maybe_fail("place")
        self._next_oid += 1
        return OrderResult(order_id=f"oid-{self._next_oid}", symbol=symbol)

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        self._maybe_fail("cancel")
        if order_id not in self.open_orders:
            raise ExchangeError(f"unknown order {order_id}", 400)
        del self.open_orders[order_id]
        self.cancelled.append(order_id)

    async def cancel_all_orders(self, symbol: str) -> None:
        self._maybe_fail("cancel_all")
        self.cancel_all_calls += 1
        self.open_orders.clear()

    async def close_long(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        self._maybe_fail("close")
        self.closes.append(("long", symbol, quantity))
        return OrderResult(order_id="close-long", symbol=symbol)

    async def close_short(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        self._maybe_fail("close")
        self.closes.append(("short", symbol, quantity))
        return OrderResult(order_id="close-short", symbol=symbol)

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        self._maybe_fail("leverage")
        self.leverage_calls.append((symbol, leverage))


def uniform_config(**overrides) -> GridConfig:
    """Manual 90..110 band, 5 levels, uniform weights, 1000 invested at 1x."""
    params = dict(
        symbol="BTCUSDT",
        grid_count=5,
        total_investment=1000.0,
        leverage=1,
        upper_price=110.0,
        lower_price=90.0,
        use_atr_bounds=False,
        distribution="uniform",
        stop_loss_pct=5.0,
        use_maker_only=True,
    )
    params.update(overrides)
    return GridConfig(**params)


@pytest.fixture
def grid_config() -> GridConfig:
    return uniform_config()


@pytest.fixture
def trader() -> FakeTrader:
    return FakeTrader(price=100.0)


@pytest.fixture
def store(grid_config) -> GridStateStore:
    s = GridStateStore(grid_config)
    s.install_geometry(GridCalculator(grid_config).compute(100.0))
    return s


@pytest.fixture
def risk(grid_config, store) -> RiskLimiter:
    return RiskLimiter(grid_config, store)


def make_store(config: Optional[GridConfig] = None, price: float = 100.0) -> GridStateStore:
    config = config or uniform_config()
    s = GridStateStore(config)
    s.install_geometry(GridCalculator(config).compute(price))
    return s
