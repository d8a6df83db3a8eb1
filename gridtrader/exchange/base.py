"""
Trading backend contract.

The grid engine talks to exchanges only through these types. Backends are
chosen once at construction (see factory.build_trader); the engine never
inspects the concrete class.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

log = logging.getLogger("gridbot")


@dataclass
class Balance:
    equity: float = 0.0
    cash: float = 0.0
    buying_power: float = 0.0
    available: float = 0.0
    unrealized_pnl: float = 0.0


@dataclass
class Position:
    symbol: str
    quantity: float  # signed: > 0 long, < 0 short
    entry_price: float = 0.0
    mark_price: float = 0.0
    unrealized_pnl: float = 0.0
    market_value: float = 0.0
    leverage: float = 0.0

    @property
    def side(self) -> str:
        return "long" if self.quantity >= 0 else "short"

    @property
    def notional(self) -> float:
        """|qty| x mark price, falling back to entry price when the mark is unknown."""
        px = self.mark_price if self.mark_price > 0 else self.entry_price
        return abs(self.quantity) * px


@dataclass
class OpenOrder:
    order_id: str
    symbol: str = ""
    side: str = ""
    quantity: float = 0.0
    price: float = 0.0
    status: str = "open"
    type: str = "limit"
    client_id: str = ""


@dataclass
class LimitOrderRequest:
    symbol: str
    side: str  # "buy" | "sell"
    price: float
    quantity: float
    leverage: int = 1
    post_only: bool = False
    reduce_only: bool = False
    client_id: str = ""


@dataclass
class OrderResult:
    order_id: str
    symbol: str = ""
    client_id: str = ""
    status: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


class Trader(ABC):
    """Generic trading primitives every backend offers."""

    name: str = "trader"

    @abstractmethod
    async def get_market_price(self, symbol: str) -> float: ...

    @abstractmethod
    async def get_balance(self) -> Balance: ...

    @abstractmethod
    async def get_positions(self) -> List[Position]: ...

    @abstractmethod
    async def get_open_orders(self, symbol: str) -> List[OpenOrder]: ...

    @abstractmethod
    async def place_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        order_type: str = "market",
        price: Optional[float] = None,
    ) -> OrderResult: ...

    @abstractmethod
    async def cancel_order(self, symbol: str, order_id: str) -> None: ...

    @abstractmethod
    async def cancel_all_orders(self, symbol: str) -> None: ...

    @abstractmethod
    async def close_long(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        """Sell to reduce a long. quantity 0 closes the whole position."""

    @abstractmethod
    async def close_short(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        """Buy to reduce a short. quantity 0 closes the whole position."""

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> None: ...

    async def close(self) -> None:
        """Release network resources."""


class GridTrader(Trader):
    """Backend with native limit-order support (post-only, client id)."""

    @abstractmethod
    async def place_limit_order(self, req: LimitOrderRequest) -> OrderResult: ...


class GridTraderAdapter(GridTrader):
    """
    Lift a plain Trader into a GridTrader.

    Limit orders go through the generic place_order primitive; post-only and
    client ids are not expressible there and are dropped.
    """

    def __init__(self, trader: Trader) -> None:
        self.trader = trader
        self.name = f"{trader.name}-adapter"

    async def place_limit_order(self, req: LimitOrderRequest) -> OrderResult:
        if req.post_only or req.client_id:
            log.debug(json.dumps({
                "event": "adapter_flags_dropped",
                "backend": self.trader.name,
                "post_only": req.post_only,
                "client_id": req.client_id,
            }))
        result = await self.trader.place_order(req.symbol, req.side, req.quantity, "limit", req.price)
        if not result.client_id:
            result.client_id = req.client_id
        return result

    async def get_market_price(self, symbol: str) -> float:
        return await self.trader.get_market_price(symbol)

    async def get_balance(self) -> Balance:
        return await self.trader.get_balance()

    async def get_positions(self) -> List[Position]:
        return await self.trader.get_positions()

    async def get_open_orders(self, symbol: str) -> List[OpenOrder]:
        return await self.trader.get_open_orders(symbol)

    async def place_order(self, symbol, side, quantity, order_type="market", price=None) -> OrderResult:
        return await self.trader.place_order(symbol, side, quantity, order_type, price)

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        await self.trader.cancel_order(symbol, order_id)

    async def cancel_all_orders(self, symbol: str) -> None:
        await self.trader.cancel_all_orders(symbol)

    async def close_long(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        return await self.trader.close_long(symbol, quantity)

    async def close_short(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        return await self.trader.close_short(symbol, quantity)

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        await self.trader.set_leverage(symbol, leverage)

    async def close(self) -> None:
        await self.trader.close()


def as_grid_trader(trader: Trader) -> GridTrader:
    """Return trader unchanged if it already places limit orders natively, else wrap it."""
    if isinstance(trader, GridTrader):
        return trader
    return GridTraderAdapter(trader)
