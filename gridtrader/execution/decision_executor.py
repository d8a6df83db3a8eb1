"""
DecisionExecutor: turns externally produced decisions into exchange calls and
GridStateStore transitions.

Policy:
- Exchange calls run without any store lock; results are applied afterwards
  through the store's mutation methods.
- A placement only commits state once the exchange returned an order id.
  Failures propagate out of execute(); execute_batch() isolates them so one
  bad decision never aborts the rest of the batch.
- Out-of-range levels, occupied levels, foreign symbols and unknown actions
  are skipped, never fatal.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from gridtrader.config.config import GridConfig
from gridtrader.core.utils import call_with_timeout
from gridtrader.decision.models import Decision, GridAction
from gridtrader.errors import ExchangeError, GridError, RiskViolation
from gridtrader.exchange.base import GridTrader, LimitOrderRequest
from gridtrader.infra.logging_cfg import log_event
from gridtrader.market_data.provider import MarketDataProvider
from gridtrader.monitoring.metrics_rich import GridMetrics
from gridtrader.risk.risk import RiskLimiter
from gridtrader.state.grid_state import GridStateStore, LevelState
from gridtrader.strategy.grid_calculator import GridCalculator, GridGeometry

log = logging.getLogger("gridbot")

OK = "ok"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class DecisionOutcome:
    decision: Decision
    action: GridAction
    status: str = OK
    error: str = ""
    order_id: str = ""
    quantity: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def success(self) -> bool:
        return self.status == OK


@dataclass
class ExecutorConfig:
    exchange_timeout: float = 30.0
    atr_interval: str = "4h"
    log_event_callback: Optional[Callable[..., None]] = None


def make_client_id(level_index: int) -> str:
    return f"grid-{level_index}-{time.time_ns() % 1_000_000}"


class DecisionExecutor:
    def __init__(
        self,
        config: GridConfig,
        store: GridStateStore,
        trader: GridTrader,
        risk: RiskLimiter,
        calculator: Optional[GridCalculator] = None,
        market_data: Optional[MarketDataProvider] = None,
        metrics: Optional[GridMetrics] = None,
        executor_config: Optional[ExecutorConfig] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.trader = trader
        self.risk = risk
        self.calculator = calculator or GridCalculator(config)
        self.market_data = market_data
        self.metrics = metrics
        self.executor_config = executor_config or ExecutorConfig()
        self._log_event = self.executor_config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log_event(log, event, level, **{"symbol": self.config.symbol, **kwargs})

    async def _call(self, aw, label: str):
        return await call_with_timeout(aw, self.executor_config.exchange_timeout, label, self.config.symbol)

    # ========== Batch ==========

    async def execute_batch(self, decisions: List[Decision]) -> List[DecisionOutcome]:
        outcomes: List[DecisionOutcome] = []
        for d in decisions:
            try:
                outcome = await self.execute(d)
            except Exception as e:
                outcome = DecisionOutcome(decision=d, action=d.kind, status=FAILED, error=str(e))
                self._log_event(
                    "decision_failed",
                    level=logging.WARNING,
                    action=d.action,
                    level_index=d.level_index,
                    err=str(e),
                    err_type=type(e).__name__,
                )
            if self.metrics:
                self.metrics.decisions_total.labels(
                    symbol=self.config.symbol, action=outcome.action.value, outcome=outcome.status
                ).inc()
            outcomes.append(outcome)
        return outcomes

    # ========== Single decision ==========

    async def execute(self, d: Decision) -> DecisionOutcome:
        """Apply one decision. Raises on failure; skips return a SKIPPED outcome."""
        action = d.kind
        if d.symbol and d.symbol.upper() != self.config.symbol.upper():
            return self._skip(d, action, f"symbol {d.symbol} is not {self.config.symbol}")

        if action == GridAction.PLACE_BUY_LIMIT:
            return await self.place_limit(d, "buy")
        if action == GridAction.PLACE_SELL_LIMIT:
            return await self.place_limit(d, "sell")
        if action == GridAction.CANCEL_ORDER:
            return await self.cancel_order(d)
        if action == GridAction.CANCEL_ALL_ORDERS:
            await self.cancel_all()
            return DecisionOutcome(decision=d, action=action)
        if action == GridAction.PAUSE_GRID:
            await self.pause(d.reasoning)
            return DecisionOutcome(decision=d, action=action)
        if action == GridAction.RESUME_GRID:
            self.resume()
            return DecisionOutcome(decision=d, action=action)
        if action == GridAction.ADJUST_GRID:
            await self.adjust()
            return DecisionOutcome(decision=d, action=action)
        if action == GridAction.HOLD:
            self._log_event("grid_hold", reasoning=d.reasoning)
            return DecisionOutcome(decision=d, action=action)
        if action == GridAction.CLOSE_LONG:
            result = await self._call(self.trader.close_long(self.config.symbol, d.quantity), "close_long")
            self._log_event("position_close", side="long", quantity=d.quantity, order_id=result.order_id)
            return DecisionOutcome(decision=d, action=action, order_id=result.order_id, quantity=d.quantity)
        if action == GridAction.CLOSE_SHORT:
            result = await self._call(self.trader.close_short(self.config.symbol, d.quantity), "close_short")
            self._log_event("position_close", side="short", quantity=d.quantity, order_id=result.order_id)
            return DecisionOutcome(decision=d, action=action, order_id=result.order_id, quantity=d.quantity)

        self._log_event("decision_unknown_action", level=logging.WARNING, action=d.action)
        return DecisionOutcome(decision=d, action=GridAction.UNKNOWN, status=SKIPPED,
                               error=f"unknown action {d.action!r}")

    def _skip(self, d: Decision, action: GridAction, reason: str) -> DecisionOutcome:
        self._log_event("decision_skipped", action=d.action, level_index=d.level_index, reason=reason)
        return DecisionOutcome(decision=d, action=action, status=SKIPPED, error=reason)

    # ========== Actions ==========

    async def place_limit(self, d: Decision, side: str) -> DecisionOutcome:
        action = d.kind
        try:
            level = self.store.level(d.level_index)
        except IndexError:
            return self._skip(d, action, f"level {d.level_index} out of range")
        if level.state != LevelState.EMPTY:
            return self._skip(d, action, f"level {d.level_index} is {level.state.value}")

        price = d.price if d.price > 0 else level.price
        positions = await self._call(self.trader.get_positions(), "get_positions")
        try:
            check = self.risk.gate(d.quantity, price, d.level_index, positions, self.config.symbol)
        except RiskViolation:
            if self.metrics:
                self.metrics.orders_rejected.labels(symbol=self.config.symbol, reason="risk").inc()
            raise
        if check.capped and self.metrics:
            self.metrics.orders_capped.labels(symbol=self.config.symbol).inc()

        req = LimitOrderRequest(
            symbol=self.config.symbol,
            side=side,
            price=price,
            quantity=check.quantity,
            leverage=self.config.leverage,
            post_only=self.config.use_maker_only,
            reduce_only=False,
            client_id=make_client_id(d.level_index),
        )
        try:
            result = await self._call(self.trader.place_limit_order(req), "place_limit_order")
        except ExchangeError:
            if self.metrics:
                self.metrics.orders_rejected.labels(symbol=self.config.symbol, reason="exchange").inc()
            raise
        if not result.order_id:
            raise ExchangeError(f"exchange returned no order id for {req.client_id}")

        self.store.mark_pending(d.level_index, result.order_id, check.quantity)
        if self.metrics:
            self.metrics.orders_placed.labels(symbol=self.config.symbol, side=side).inc()
        self._log_event(
            "order_placed",
            side=side,
            level_index=d.level_index,
            price=price,
            quantity=check.quantity,
            requested=d.quantity,
            order_id=result.order_id,
            client_id=req.client_id,
        )
        return DecisionOutcome(decision=d, action=action, order_id=result.order_id, quantity=check.quantity)

    async def cancel_order(self, d: Decision) -> DecisionOutcome:
        action = d.kind
        if not d.order_id or self.store.level_for_order(d.order_id) is None:
            return self._skip(d, action, f"order {d.order_id!r} not tracked")
        await self._call(self.trader.cancel_order(self.config.symbol, d.order_id), "cancel_order")
        index = self.store.release_order(d.order_id)
        self._log_event("order_cancelled", order_id=d.order_id, level_index=index)
        return DecisionOutcome(decision=d, action=action, order_id=d.order_id)

    async def cancel_all(self) -> int:
        await self._call(self.trader.cancel_all_orders(self.config.symbol), "cancel_all_orders")
        reset = self.store.reset_all_pending()
        self._log_event("orders_cancelled_all", levels_reset=reset)
        return reset

    async def pause(self, reason: str = "") -> None:
        try:
            await self.cancel_all()
        except GridError as e:
            self._log_event("pause_cancel_failed", level=logging.WARNING, err=str(e))
        self.store.set_paused(True)
        if self.metrics:
            self.metrics.paused.labels(symbol=self.config.symbol).set(1)
        self._log_event("grid_paused", reason=reason)

    def resume(self) -> None:
        self.store.set_paused(False)
        if self.metrics:
            self.metrics.paused.labels(symbol=self.config.symbol).set(0)
        self._log_event("grid_resumed")

    async def build_geometry(self) -> GridGeometry:
        """Fetch price (and ATR when configured) and compute a fresh ladder."""
        price = await self._call(self.trader.get_market_price(self.config.symbol), "get_market_price")
        atr: Optional[float] = None
        if self.config.use_atr_bounds and self.market_data is not None:
            try:
                atr = await self._call(
                    self.market_data.get_atr(self.config.symbol, self.executor_config.atr_interval), "get_atr"
                )
            except ExchangeError as e:
                self._log_event("atr_unavailable", level=logging.WARNING, err=str(e))
        return self.calculator.compute(price, atr)

    async def adjust(self) -> GridGeometry:
        await self.cancel_all()
        geometry = await self.build_geometry()
        self.store.install_geometry(geometry)
        self._log_event(
            "grid_adjusted",
            lower=geometry.lower,
            upper=geometry.upper,
            spacing=geometry.spacing,
        )
        return geometry
