"""
Decision payloads exchanged with the decision-generation service.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from gridtrader.core.utils import to_float
from gridtrader.market_data.provider import MarketSnapshot
from gridtrader.state.grid_state import GridSnapshot


class GridAction(str, Enum):
    PLACE_BUY_LIMIT = "place_buy_limit"
    PLACE_SELL_LIMIT = "place_sell_limit"
    CANCEL_ORDER = "cancel_order"
    CANCEL_ALL_ORDERS = "cancel_all_orders"
    PAUSE_GRID = "pause_grid"
    RESUME_GRID = "resume_grid"
    ADJUST_GRID = "adjust_grid"
    HOLD = "hold"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "GridAction":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return default


def _parse_index(value: Any) -> int:
    """Integral level index or -1; fractional and non-finite values are rejected."""
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return -1
    if not math.isfinite(number) or not number.is_integer():
        return -1
    return int(number)


@dataclass
class Decision:
    action: str
    symbol: str = ""
    level_index: int = -1
    price: float = 0.0
    quantity: float = 0.0
    order_id: str = ""
    reasoning: str = ""
    confidence: float = 0.0

    @property
    def kind(self) -> GridAction:
        return GridAction.parse(self.action)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Decision":
        """Accepts snake_case or camelCase keys; unknown keys are ignored."""
        return cls(
            action=str(_pick(data, "action", default="")),
            symbol=str(_pick(data, "symbol", default="")),
            level_index=_parse_index(_pick(data, "level_index", "levelIndex", default=-1)),
            price=to_float(_pick(data, "price")),
            quantity=to_float(_pick(data, "quantity", "qty")),
            order_id=str(_pick(data, "order_id", "orderID", "orderId", default="")),
            reasoning=str(_pick(data, "reasoning", default="")),
            confidence=to_float(_pick(data, "confidence")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FullDecision:
    decisions: List[Decision] = field(default_factory=list)
    system_prompt: str = ""
    user_prompt: str = ""
    cot_trace: str = ""
    raw_response: str = ""
    request_duration_ms: int = 0


@dataclass
class GridContext:
    """Everything the decision service sees for one cycle."""
    symbol: str
    current_price: float
    grid: GridSnapshot
    market: Optional[MarketSnapshot] = None
    total_equity: float = 0.0
    available_balance: float = 0.0
    unrealized_pnl: float = 0.0
    current_position: float = 0.0
    grid_count: int = 0
    total_investment: float = 0.0
    leverage: int = 1
    distribution: str = ""
    stop_loss_pct: float = 0.0

    @property
    def active_order_count(self) -> int:
        return self.grid.active_order_count

    @property
    def filled_level_count(self) -> int:
        return self.grid.filled_level_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "current_price": self.current_price,
            "market": self.market.to_dict() if self.market else None,
            "grid": self.grid.to_dict(),
            "active_order_count": self.active_order_count,
            "filled_level_count": self.filled_level_count,
            "total_equity": self.total_equity,
            "available_balance": self.available_balance,
            "unrealized_pnl": self.unrealized_pnl,
            "current_position": self.current_position,
            "config": {
                "grid_count": self.grid_count,
                "total_investment": self.total_investment,
                "leverage": self.leverage,
                "distribution": self.distribution,
                "stop_loss_pct": self.stop_loss_pct,
            },
        }
