"""
ReconciliationService: syncs the grid ladder with exchange reality once per
cycle and enforces per-level stop-loss.

Pass:
1. Open orders -> pending levels whose order left the book are assumed filled.
2. Positions -> the symbol's unrealized PnL is spread over filled levels.
3. Stop-loss over filled levels with a fresh price.

An exchange error at any step is logged and ends the pass; nothing fetched
after the failure is applied. Fill inference is optimistic: a pending order
cancelled out-of-band looks exactly like a fill. Each inference is reported
as a ReconciliationAmbiguity in the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from gridtrader.config.config import GridConfig
from gridtrader.core.utils import call_with_timeout
from gridtrader.errors import ExchangeError, InvalidTransition, ReconciliationAmbiguity
from gridtrader.exchange.base import GridTrader
from gridtrader.infra.logging_cfg import log_event
from gridtrader.monitoring.metrics_rich import GridMetrics
from gridtrader.state.grid_state import GridStateStore, LevelState

log = logging.getLogger("gridbot")


@dataclass
class ReconciliationConfig:
    exchange_timeout: float = 30.0
    log_event_callback: Optional[Callable[..., None]] = None


@dataclass
class StopLossResult:
    level_index: int
    side: str
    entry: float
    price: float
    loss_pct: float
    closed: bool
    error: Optional[str] = None


@dataclass
class ReconcileResult:
    success: bool
    open_orders: int = 0
    inferred_fills: List[ReconciliationAmbiguity] = field(default_factory=list)
    unrealized_pnl: Optional[float] = None
    stop_losses: List[StopLossResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def stopped_levels(self) -> List[int]:
        return [s.level_index for s in self.stop_losses if s.closed]


def level_loss_pct(side: str, entry: float, price: float) -> float:
    """Adverse move from entry in percent. Positive means losing."""
    if side == "buy":
        return (entry - price) / entry * 100
    return (price - entry) / entry * 100


class ReconciliationService:
    def __init__(
        self,
        config: GridConfig,
        store: GridStateStore,
        trader: GridTrader,
        metrics: Optional[GridMetrics] = None,
        reconcile_config: Optional[ReconciliationConfig] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.trader = trader
        self.metrics = metrics
        self.reconcile_config = reconcile_config or ReconciliationConfig()
        self._log_event = self.reconcile_config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log_event(log, event, level, **{"symbol": self.config.symbol, **kwargs})

    async def _call(self, aw, label: str):
        return await call_with_timeout(aw, self.reconcile_config.exchange_timeout, label, self.config.symbol)

    def _count_error(self, stage: str) -> None:
        if self.metrics:
            self.metrics.reconcile_errors.labels(symbol=self.config.symbol, stage=stage).inc()

    async def reconcile(self) -> ReconcileResult:
        symbol = self.config.symbol

        try:
            orders = await self._call(self.trader.get_open_orders(symbol), "get_open_orders")
        except ExchangeError as e:
            self._log_event("reconcile_orders_failed", level=logging.WARNING, err=str(e))
            self._count_error("orders")
            return ReconcileResult(success=False, error=str(e))

        result = ReconcileResult(success=True, open_orders=len(orders))
        for fill in self.store.mark_filled_missing(o.order_id for o in orders):
            amb = ReconciliationAmbiguity(fill.level_index, fill.order_id, fill.price)
            result.inferred_fills.append(amb)
            self._log_event(
                "fill_inferred",
                level_index=fill.level_index,
                order_id=fill.order_id,
                price=fill.price,
                quantity=fill.quantity,
                side=fill.side,
            )
            if self.metrics:
                self.metrics.fills_inferred.labels(symbol=symbol).inc()

        try:
            positions = await self._call(self.trader.get_positions(), "get_positions")
        except ExchangeError as e:
            self._log_event("reconcile_positions_failed", level=logging.WARNING, err=str(e))
            self._count_error("positions")
            result.success = False
            result.error = str(e)
            return result

        for pos in positions:
            if pos.symbol == symbol:
                result.unrealized_pnl = pos.unrealized_pnl
                self.store.distribute_unrealized_pnl(pos.unrealized_pnl)
                break

        if self.config.stop_loss_pct > 0:
            try:
                result.stop_losses = await self.check_stop_loss()
            except ExchangeError as e:
                self._log_event("stop_loss_price_failed", level=logging.WARNING, err=str(e))
                self._count_error("stop_loss")
                result.success = False
                result.error = str(e)
        return result

    async def check_stop_loss(self) -> List[StopLossResult]:
        """
        Close filled levels whose adverse move reached stop_loss_pct.

        Candidates come from a snapshot, closes run with no lock held and each
        success is applied under the write lock only if the level is still filled.
        """
        threshold = self.config.stop_loss_pct
        if threshold <= 0:
            return []
        symbol = self.config.symbol
        price = await self._call(self.trader.get_market_price(symbol), "get_market_price")

        snap = self.store.snapshot()
        candidates = []
        for lv in snap.levels:
            if lv.state != LevelState.FILLED or lv.position_entry <= 0:
                continue
            loss = level_loss_pct(lv.side, lv.position_entry, price)
            if loss >= threshold:
                candidates.append((lv, loss))

        results: List[StopLossResult] = []
        for lv, loss in candidates:
            res = StopLossResult(
                level_index=lv.index, side=lv.side, entry=lv.position_entry,
                price=price, loss_pct=loss, closed=False,
            )
            self._log_event(
                "stop_loss_triggered",
                level=logging.CRITICAL,
                level_index=lv.index,
                side=lv.side,
                entry=lv.position_entry,
                price=price,
                loss_pct=round(loss, 4),
                size=lv.position_size,
            )
            try:
                if lv.side == "buy":
                    await self._call(self.trader.close_long(symbol, lv.position_size), "close_long")
                else:
                    await self._call(self.trader.close_short(symbol, lv.position_size), "close_short")
            except ExchangeError as e:
                res.error = str(e)
                self._log_event("stop_loss_close_failed", level=logging.ERROR, level_index=lv.index, err=str(e))
                if self.metrics:
                    self.metrics.stop_losses.labels(symbol=symbol, result="failed").inc()
                results.append(res)
                continue

            try:
                self.store.mark_stopped(lv.index, loss)
                res.closed = True
            except (InvalidTransition, IndexError) as e:
                # ladder changed while the close was in flight
                res.error = str(e)
                self._log_event("stop_loss_apply_skipped", level=logging.WARNING, level_index=lv.index, err=str(e))
            if self.metrics:
                self.metrics.stop_losses.labels(symbol=symbol, result="closed" if res.closed else "stale").inc()
            results.append(res)
        return results
