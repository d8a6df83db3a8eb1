"""
GridCalculator - pure grid geometry.

Given a market price, the grid config and an optional ATR, produce the
bounds, spacing and level ladder. No side effects: callers install the
result into the GridStateStore.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from gridtrader.config.config import GridConfig
from gridtrader.errors import ConfigError
from gridtrader.state.grid_state import GridLevel, LevelState

log = logging.getLogger("gridbot")

DEFAULT_ATR_MULTIPLIER = 2.0
DEFAULT_RANGE_PCT = 0.03  # half-range at 10 levels, scales with level count


@dataclass
class GridGeometry:
    """Result of a geometry computation."""
    upper: float
    lower: float
    spacing: float
    levels: List[GridLevel]

    @property
    def total_allocated(self) -> float:
        return sum(lv.allocated_usd for lv in self.levels)


class GridCalculator:
    """
    Stateless grid geometry.

    Thread-safety: holds only the immutable GridConfig.
    """

    def __init__(self, config: GridConfig) -> None:
        self.config = config

    def default_bounds(self, price: float) -> Tuple[float, float]:
        half = DEFAULT_RANGE_PCT * self.config.grid_count / 10
        return price * (1 + half), price * (1 - half)

    def calculate_bounds(self, price: float, atr: Optional[float] = None) -> Tuple[float, float]:
        """
        Return (upper, lower).

        Manual bounds are used verbatim. ATR bounds are price +/- ATR x multiplier;
        a missing or non-positive ATR falls back to the default percentage band.
        """
        cfg = self.config
        if not cfg.use_atr_bounds:
            if cfg.upper_price <= cfg.lower_price:
                raise ConfigError(
                    f"upper_price {cfg.upper_price} must be > lower_price {cfg.lower_price}"
                )
            return cfg.upper_price, cfg.lower_price

        if atr is None or atr <= 0:
            log.info(json.dumps({"event": "grid_default_bounds", "symbol": cfg.symbol, "reason": "atr_unavailable"}))
            return self.default_bounds(price)

        multiplier = cfg.atr_multiplier if cfg.atr_multiplier > 0 else DEFAULT_ATR_MULTIPLIER
        half_range = atr * multiplier
        upper, lower = price + half_range, price - half_range
        if lower <= 0:
            # ATR wider than the price itself; a negative level price is meaningless
            log.warning(json.dumps({
                "event": "grid_atr_bounds_invalid",
                "symbol": cfg.symbol,
                "atr": atr,
                "price": price,
            }))
            return self.default_bounds(price)
        return upper, lower

    def weights(self) -> List[float]:
        n = self.config.grid_count
        dist = self.config.distribution
        if dist == "gaussian":
            center = (n - 1) / 2
            sigma = n / 4
            return [math.exp(-((i - center) ** 2) / (2 * sigma * sigma)) for i in range(n)]
        if dist == "pyramid":
            return [float(n - i) for i in range(n)]
        if dist != "uniform":
            log.warning(json.dumps({
                "event": "grid_unknown_distribution",
                "symbol": self.config.symbol,
                "distribution": dist,
            }))
        return [1.0] * n

    def compute(self, current_price: float, atr: Optional[float] = None) -> GridGeometry:
        cfg = self.config
        n = cfg.grid_count
        if n < 2:
            raise ConfigError(f"grid_count must be >= 2 (got {n})")
        if current_price <= 0 and cfg.use_atr_bounds:
            raise ConfigError(f"cannot derive bounds from price {current_price}")

        upper, lower = self.calculate_bounds(current_price, atr)
        spacing = (upper - lower) / (n - 1)

        weights = self.weights()
        total_weight = sum(weights)
        levels: List[GridLevel] = []
        for i, w in enumerate(weights):
            price = lower + i * spacing
            levels.append(GridLevel(
                index=i,
                price=price,
                side="buy" if price <= current_price else "sell",
                allocated_usd=cfg.total_investment * w / total_weight,
                state=LevelState.EMPTY,
            ))
        return GridGeometry(upper=upper, lower=lower, spacing=spacing, levels=levels)
