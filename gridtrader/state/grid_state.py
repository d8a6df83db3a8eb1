"""
GridStateStore: single owner of the grid ladder for one trading instance.

The store holds one GridState (levels, derived bounds, lifecycle flags,
order-id index and performance counters) behind a reader/writer lock.

Rules:
- External readers never see the live GridState; they get a deep copy via
  snapshot() or use the small read helpers.
- Every mutation is a named method that takes the write lock, performs the
  in-memory update and rebuilds the order-id index from the levels.
- No method here performs I/O. Callers do exchange calls lock-free and apply
  the result afterwards.

Level state machine:
    EMPTY -> PENDING -> FILLED -> STOPPED
               |
               +-> EMPTY (cancelled)
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, TYPE_CHECKING

from gridtrader.config.config import GridConfig
from gridtrader.core.rwlock import RWLock
from gridtrader.errors import InvalidTransition
from gridtrader.infra.logging_cfg import log_event

if TYPE_CHECKING:
    from gridtrader.strategy.grid_calculator import GridGeometry

log = logging.getLogger("gridbot")


class LevelState(str, Enum):
    EMPTY = "empty"
    PENDING = "pending"
    FILLED = "filled"
    STOPPED = "stopped"


@dataclass
class GridLevel:
    """One slot in the price ladder."""
    index: int
    price: float
    side: str
    allocated_usd: float
    state: LevelState = LevelState.EMPTY
    order_id: str = ""
    order_quantity: float = 0.0
    position_entry: float = 0.0
    position_size: float = 0.0
    unrealized_pnl: float = 0.0

    @property
    def order_value(self) -> float:
        return self.order_quantity * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "price": self.price,
            "side": self.side,
            "state": self.state.value,
            "allocated_usd": self.allocated_usd,
            "order_id": self.order_id,
            "order_quantity": self.order_quantity,
            "position_entry": self.position_entry,
            "position_size": self.position_size,
            "unrealized_pnl": self.unrealized_pnl,
        }


@dataclass
class GridState:
    config: GridConfig
    levels: List[GridLevel] = field(default_factory=list)
    upper_price: float = 0.0
    lower_price: float = 0.0
    grid_spacing: float = 0.0
    is_paused: bool = False
    is_initialized: bool = False
    order_book: Dict[str, int] = field(default_factory=dict)

    total_profit: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    max_drawdown: float = 0.0
    peak_equity: float = 0.0
    daily_pnl: float = 0.0
    day_start_equity: float = 0.0
    last_daily_reset: Optional[date] = None


@dataclass
class GridSnapshot:
    """Deep copy of GridState handed to readers."""
    symbol: str
    levels: List[GridLevel]
    upper_price: float
    lower_price: float
    grid_spacing: float
    is_paused: bool
    is_initialized: bool
    order_book: Dict[str, int]
    total_profit: float
    total_trades: int
    winning_trades: int
    max_drawdown: float
    peak_equity: float
    daily_pnl: float

    def count(self, state: LevelState) -> int:
        return sum(1 for lv in self.levels if lv.state == state)

    @property
    def active_order_count(self) -> int:
        return self.count(LevelState.PENDING)

    @property
    def filled_level_count(self) -> int:
        return self.count(LevelState.FILLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "upper_price": self.upper_price,
            "lower_price": self.lower_price,
            "grid_spacing": self.grid_spacing,
            "is_paused": self.is_paused,
            "is_initialized": self.is_initialized,
            "levels": [lv.to_dict() for lv in self.levels],
            "total_profit": self.total_profit,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "max_drawdown": self.max_drawdown,
            "daily_pnl": self.daily_pnl,
        }


@dataclass
class InferredFill:
    """A pending level whose order disappeared from the book."""
    level_index: int
    order_id: str
    price: float
    quantity: float
    side: str


@dataclass
class GridStateStoreConfig:
    log_event_callback: Optional[Callable[..., None]] = None


class GridStateStore:
    """Owns one GridState behind an RWLock."""

    def __init__(self, config: GridConfig, store_config: Optional[GridStateStoreConfig] = None) -> None:
        self._state = GridState(config=config)
        self._lock = RWLock()
        self.store_config = store_config or GridStateStoreConfig()
        self._log_event = self.store_config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log_event(log, event, **{"symbol": self._state.config.symbol, **kwargs})

    @property
    def config(self) -> GridConfig:
        return self._state.config

    @property
    def lock(self) -> RWLock:
        return self._lock

    # ========== Internal helpers (write lock held) ==========

    def _level(self, index: int) -> GridLevel:
        if index < 0 or index >= len(self._state.levels):
            raise IndexError(f"level index {index} out of range [0, {len(self._state.levels)})")
        return self._state.levels[index]

    def _rebuild_order_book(self) -> None:
        self._state.order_book = {
            lv.order_id: lv.index
            for lv in self._state.levels
            if lv.state == LevelState.PENDING and lv.order_id
        }

    # ========== Read helpers (shared lock) ==========

    def snapshot(self) -> GridSnapshot:
        with self._lock.read():
            s = self._state
            return GridSnapshot(
                symbol=s.config.symbol,
                levels=copy.deepcopy(s.levels),
                upper_price=s.upper_price,
                lower_price=s.lower_price,
                grid_spacing=s.grid_spacing,
                is_paused=s.is_paused,
                is_initialized=s.is_initialized,
                order_book=dict(s.order_book),
                total_profit=s.total_profit,
                total_trades=s.total_trades,
                winning_trades=s.winning_trades,
                max_drawdown=s.max_drawdown,
                peak_equity=s.peak_equity,
                daily_pnl=s.daily_pnl,
            )

    @property
    def level_count(self) -> int:
        with self._lock.read():
            return len(self._state.levels)

    @property
    def is_initialized(self) -> bool:
        with self._lock.read():
            return self._state.is_initialized

    @property
    def is_paused(self) -> bool:
        with self._lock.read():
            return self._state.is_paused

    def allocated_usd(self, index: int) -> float:
        """Allocation of a level, 0.0 when the index is out of range."""
        with self._lock.read():
            if 0 <= index < len(self._state.levels):
                return self._state.levels[index].allocated_usd
            return 0.0

    def level(self, index: int) -> GridLevel:
        """Copy of one level. Raises IndexError when out of range."""
        with self._lock.read():
            return copy.deepcopy(self._level(index))

    def pending_order_value(self) -> float:
        with self._lock.read():
            return sum(lv.order_value for lv in self._state.levels if lv.state == LevelState.PENDING)

    def level_for_order(self, order_id: str) -> Optional[int]:
        with self._lock.read():
            return self._state.order_book.get(order_id)

    # ========== Mutations (exclusive lock) ==========

    def install_geometry(self, geometry: "GridGeometry") -> None:
        """Replace bounds and the whole ladder. Counters survive."""
        if len(geometry.levels) != self._state.config.grid_count:
            raise InvalidTransition(
                f"geometry has {len(geometry.levels)} levels, expected {self._state.config.grid_count}"
            )
        with self._lock.write():
            self._state.upper_price = geometry.upper
            self._state.lower_price = geometry.lower
            self._state.grid_spacing = geometry.spacing
            self._state.levels = [copy.copy(lv) for lv in geometry.levels]
            self._state.is_initialized = True
            self._rebuild_order_book()
        self._log_event(
            "grid_installed",
            levels=len(geometry.levels),
            lower=geometry.lower,
            upper=geometry.upper,
            spacing=geometry.spacing,
        )

    def mark_pending(self, index: int, order_id: str, quantity: float) -> None:
        if not order_id:
            raise InvalidTransition("pending level requires an order id")
        with self._lock.write():
            lv = self._level(index)
            if lv.state != LevelState.EMPTY:
                raise InvalidTransition(f"level {index} is {lv.state.value}, cannot place order")
            lv.state = LevelState.PENDING
            lv.order_id = order_id
            lv.order_quantity = quantity
            self._rebuild_order_book()

    def reset_level(self, index: int) -> None:
        """PENDING -> EMPTY for one level."""
        with self._lock.write():
            lv = self._level(index)
            if lv.state != LevelState.PENDING:
                raise InvalidTransition(f"level {index} is {lv.state.value}, not pending")
            lv.state = LevelState.EMPTY
            lv.order_id = ""
            self._rebuild_order_book()

    def release_order(self, order_id: str) -> Optional[int]:
        """Reset the level owning order_id. Unknown ids are a no-op (returns None)."""
        with self._lock.write():
            index = self._state.order_book.get(order_id)
            if index is None:
                return None
            lv = self._state.levels[index]
            lv.state = LevelState.EMPTY
            lv.order_id = ""
            self._rebuild_order_book()
            return index

    def reset_all_pending(self) -> int:
        with self._lock.write():
            count = 0
            for lv in self._state.levels:
                if lv.state == LevelState.PENDING:
                    lv.state = LevelState.EMPTY
                    lv.order_id = ""
                    count += 1
            self._state.order_book = {}
            return count

    def mark_filled_missing(self, open_ids: Iterable[str]) -> List[InferredFill]:
        """Mark every pending level whose order is not in open_ids as filled."""
        open_set = set(open_ids)
        fills: List[InferredFill] = []
        with self._lock.write():
            for lv in self._state.levels:
                if lv.state != LevelState.PENDING or lv.order_id in open_set:
                    continue
                fills.append(InferredFill(
                    level_index=lv.index,
                    order_id=lv.order_id,
                    price=lv.price,
                    quantity=lv.order_quantity,
                    side=lv.side,
                ))
                lv.state = LevelState.FILLED
                lv.order_id = ""
                lv.position_entry = lv.price
                lv.position_size = lv.order_quantity
                self._state.total_trades += 1
            if fills:
                self._rebuild_order_book()
        return fills

    def distribute_unrealized_pnl(self, total_pnl: float) -> None:
        """Spread the symbol's unrealized PnL evenly (total / total_trades) over filled levels."""
        with self._lock.write():
            if self._state.total_trades <= 0:
                return
            share = total_pnl / self._state.total_trades
            for lv in self._state.levels:
                if lv.state == LevelState.FILLED:
                    lv.unrealized_pnl = share

    def mark_stopped(self, index: int, loss_pct: float) -> None:
        with self._lock.write():
            lv = self._level(index)
            if lv.state != LevelState.FILLED:
                raise InvalidTransition(f"level {index} is {lv.state.value}, not filled")
            lv.state = LevelState.STOPPED
            lv.unrealized_pnl = -loss_pct * lv.allocated_usd / 100
            self._state.total_trades += 1

    def set_paused(self, paused: bool) -> None:
        with self._lock.write():
            self._state.is_paused = paused

    def update_performance(self, equity: float, now: Optional[datetime] = None) -> Dict[str, float]:
        """
        Feed account equity into peak/drawdown/daily-PnL tracking.

        Drawdown is a percentage below peak equity. Daily PnL resets at the
        UTC day boundary.
        """
        now = now or datetime.now(timezone.utc)
        today = now.astimezone(timezone.utc).date() if now.tzinfo else now.date()
        with self._lock.write():
            s = self._state
            if s.last_daily_reset != today:
                s.last_daily_reset = today
                s.day_start_equity = equity
                s.daily_pnl = 0.0
            if equity > s.peak_equity:
                s.peak_equity = equity
            drawdown_pct = 0.0
            if s.peak_equity > 0:
                drawdown_pct = (s.peak_equity - equity) / s.peak_equity * 100
            s.max_drawdown = max(s.max_drawdown, drawdown_pct)
            s.daily_pnl = equity - s.day_start_equity
            return {
                "drawdown_pct": drawdown_pct,
                "max_drawdown": s.max_drawdown,
                "daily_pnl": s.daily_pnl,
                "peak_equity": s.peak_equity,
            }
