"""
Risk limiter gating every grid order before submission.

Steps, in order:
0. Quantity and price must be finite and positive; anything else is a
   RiskViolation before any limit is evaluated.
1. Per-level cap: total_investment / grid_count x leverage / price, tightened
   by the level's own allocation when it has one.
2. Quantity clamp to that cap (logged, not rejected).
3. Absolute safety check: order value above 2 x total_investment x leverage
   is a hard RiskViolation.
4. Aggregate limit: current exposure (exchange position + pending grid
   orders) plus this order must stay within total_investment x leverage.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from gridtrader.config.config import GridConfig
from gridtrader.errors import RiskViolation
from gridtrader.exchange.base import Position
from gridtrader.infra.logging_cfg import log_event
from gridtrader.state.grid_state import GridStateStore

logger = logging.getLogger("gridbot")

ABSOLUTE_SAFETY_FACTOR = 2.0


@dataclass
class RiskCheck:
    """Admitted order after the gate."""
    requested_quantity: float
    quantity: float
    price: float
    capped: bool = False
    exposure_before: float = 0.0
    max_total: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def order_value(self) -> float:
        return self.quantity * self.price


@dataclass
class RiskLimiterConfig:
    log_event_callback: Optional[Callable[..., None]] = None


class RiskLimiter:
    def __init__(
        self,
        config: GridConfig,
        store: GridStateStore,
        limiter_config: Optional[RiskLimiterConfig] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.limiter_config = limiter_config or RiskLimiterConfig()
        self._log_event = self.limiter_config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log_event(logger, event, level, **{"symbol": self.config.symbol, **kwargs})

    @property
    def max_total_value(self) -> float:
        return self.config.total_investment * self.config.leverage

    @property
    def absolute_max_value(self) -> float:
        return self.max_total_value * ABSOLUTE_SAFETY_FACTOR

    def max_quantity(self, price: float, level_index: int) -> float:
        cfg = self.config
        per_level_value = cfg.total_investment / cfg.grid_count * cfg.leverage
        max_qty = per_level_value / price
        allocated = self.store.allocated_usd(level_index)
        if allocated > 0:
            max_qty = min(max_qty, allocated * cfg.leverage / price)
        return max_qty

    def cap_quantity(self, quantity: float, price: float, level_index: int) -> float:
        max_qty = self.max_quantity(price, level_index)
        if quantity > max_qty:
            self._log_event(
                "risk_quantity_capped",
                level=logging.WARNING,
                level_index=level_index,
                requested=quantity,
                capped=max_qty,
                requested_value=quantity * price,
            )
            return max_qty
        return quantity

    def check_inputs(self, quantity: float, price: float) -> None:
        """Quantity and price must be finite and positive before any limit math."""
        for name, value in (("quantity", quantity), ("price", price)):
            if not (math.isfinite(value) and value > 0):
                self._log_event(
                    "risk_invalid_order",
                    level=logging.ERROR,
                    field=name,
                    value=str(value),
                )
                raise RiskViolation(
                    f"order {name} must be finite and positive, got {value}",
                    {"field": name, "value": value},
                )

    def check_absolute(self, quantity: float, price: float) -> None:
        value = quantity * price
        limit = self.absolute_max_value
        if value > limit:
            self._log_event(
                "risk_absolute_reject",
                level=logging.ERROR,
                position_value=value,
                absolute_max=limit,
            )
            raise RiskViolation(
                f"position value ${value:.2f} exceeds safety limit ${limit:.2f}",
                {"position_value": value, "absolute_max": limit},
            )

    def exposure(self, positions: List[Position], symbol: Optional[str] = None) -> float:
        """Exchange position notional for symbol plus the value of resting grid orders."""
        symbol = symbol or self.config.symbol
        position_value = 0.0
        for pos in positions:
            if pos.symbol == symbol:
                position_value = pos.notional
        return position_value + self.store.pending_order_value()

    def check_total(self, order_value: float, positions: List[Position], symbol: Optional[str] = None) -> float:
        current = self.exposure(positions, symbol)
        limit = self.max_total_value
        if current + order_value > limit:
            self._log_event(
                "risk_total_limit_reject",
                level=logging.ERROR,
                current=current,
                order_value=order_value,
                max_total=limit,
            )
            raise RiskViolation(
                f"total position value ${current + order_value:.2f} would exceed limit ${limit:.2f}",
                {"current": current, "order_value": order_value, "max_total": limit},
            )
        return current

    def gate(
        self,
        quantity: float,
        price: float,
        level_index: int,
        positions: List[Position],
        symbol: Optional[str] = None,
    ) -> RiskCheck:
        """Run every step; return the admitted (possibly capped) quantity or raise RiskViolation."""
        self.check_inputs(quantity, price)
        admitted = quantity
        capped = False
        if self.config.total_investment > 0:
            # a request this far out is an upstream bug, not something to shrink
            self.check_absolute(quantity, price)
            admitted = self.cap_quantity(quantity, price, level_index)
            capped = admitted != quantity
            self.check_absolute(admitted, price)

        order_value = admitted * price
        current = self.check_total(order_value, positions, symbol)
        return RiskCheck(
            requested_quantity=quantity,
            quantity=admitted,
            price=price,
            capped=capped,
            exposure_before=current,
            max_total=self.max_total_value,
        )
