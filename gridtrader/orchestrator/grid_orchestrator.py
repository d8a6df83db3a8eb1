"""
GridOrchestrator: one grid cycle, end to end.

    ensure initialized -> build context -> drawdown/daily-loss guard
    -> decisions -> execute batch -> reconcile -> audit record

A failed prerequisite (initialization, context, decision service) ends that
cycle with CycleResult(success=False); the run loop sleeps and tries again.
Nothing here is fatal to the process.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from gridtrader.config.config import GridConfig
from gridtrader.core.utils import call_with_timeout
from gridtrader.decision.context import GridContextBuilder
from gridtrader.decision.http_client import DecisionProvider
from gridtrader.decision.models import FullDecision, GridContext
from gridtrader.errors import ExchangeError, GridError
from gridtrader.exchange.base import GridTrader, Position
from gridtrader.execution.decision_executor import DecisionExecutor, DecisionOutcome, ExecutorConfig
from gridtrader.execution.reconciliation_service import (
    ReconcileResult,
    ReconciliationConfig,
    ReconciliationService,
)
from gridtrader.infra.logging_cfg import log_event
from gridtrader.market_data.provider import MarketDataProvider
from gridtrader.monitoring.metrics_rich import GridMetrics
from gridtrader.risk.risk import RiskLimiter
from gridtrader.state.decision_log import ActionRecord, DecisionLog, DecisionRecord
from gridtrader.state.grid_state import GridStateStore, LevelState
from gridtrader.strategy.grid_calculator import GridCalculator

log = logging.getLogger("gridbot")


@dataclass
class CycleResult:
    success: bool
    cycle_number: int = 0
    decisions: int = 0
    outcomes: List[DecisionOutcome] = field(default_factory=list)
    reconcile: Optional[ReconcileResult] = None
    halted: bool = False
    halt_reason: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class OrchestratorConfig:
    trader_id: str = "grid-1"
    exchange_timeout: float = 30.0
    loop_interval: float = 60.0
    atr_interval: str = "4h"
    log_event_callback: Optional[Callable[..., None]] = None


class GridOrchestrator:
    def __init__(
        self,
        config: GridConfig,
        trader: GridTrader,
        decision_provider: Optional[DecisionProvider] = None,
        market_data: Optional[MarketDataProvider] = None,
        decision_log: Optional[DecisionLog] = None,
        metrics: Optional[GridMetrics] = None,
        orchestrator_config: Optional[OrchestratorConfig] = None,
        store: Optional[GridStateStore] = None,
    ) -> None:
        self.config = config
        self.trader = trader
        self.decision_provider = decision_provider
        self.market_data = market_data
        self.decision_log = decision_log
        self.metrics = metrics
        self.orchestrator_config = orchestrator_config or OrchestratorConfig()
        oc = self.orchestrator_config

        self.store = store or GridStateStore(config)
        self.calculator = GridCalculator(config)
        self.risk = RiskLimiter(config, self.store)
        self.executor = DecisionExecutor(
            config, self.store, trader, self.risk,
            calculator=self.calculator,
            market_data=market_data,
            metrics=metrics,
            executor_config=ExecutorConfig(exchange_timeout=oc.exchange_timeout, atr_interval=oc.atr_interval),
        )
        self.reconciler = ReconciliationService(
            config, self.store, trader,
            metrics=metrics,
            reconcile_config=ReconciliationConfig(exchange_timeout=oc.exchange_timeout),
        )
        self.context_builder = GridContextBuilder(
            config, self.store, trader, market_data, exchange_timeout=oc.exchange_timeout
        )

        self._running = False
        self._cycle_count = 0
        self._last_positions: List[Position] = []
        self._last_equity = 0.0
        self._log_event = oc.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log_event(log, event, level, **{"symbol": self.config.symbol, **kwargs})

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False
        self._log_event("orchestrator_stop")

    # ========== Initialization ==========

    async def initialize_grid(self) -> None:
        geometry = await self.executor.build_geometry()
        self.store.install_geometry(geometry)
        try:
            await call_with_timeout(
                self.trader.set_leverage(self.config.symbol, self.config.leverage),
                self.orchestrator_config.exchange_timeout, "set_leverage", self.config.symbol,
            )
            self._log_event("leverage_set", leverage=self.config.leverage)
        except ExchangeError as e:
            self._log_event("leverage_set_failed", level=logging.WARNING, leverage=self.config.leverage, err=str(e))
        self._log_event(
            "grid_initialized",
            levels=len(geometry.levels),
            lower=geometry.lower,
            upper=geometry.upper,
            spacing=geometry.spacing,
        )

    # ========== Guard ==========

    def _check_loss_limits(self, ctx: GridContext) -> Optional[str]:
        """Feed equity into performance tracking; return a halt reason if a limit is hit."""
        if ctx.total_equity <= 0:
            return None
        perf = self.store.update_performance(ctx.total_equity)
        if self.metrics:
            self.metrics.max_drawdown_pct.labels(symbol=self.config.symbol).set(perf["max_drawdown"])
            self.metrics.daily_pnl.labels(symbol=self.config.symbol).set(perf["daily_pnl"])
        cfg = self.config
        if cfg.max_drawdown_pct > 0 and perf["drawdown_pct"] >= cfg.max_drawdown_pct:
            return f"drawdown {perf['drawdown_pct']:.2f}% >= {cfg.max_drawdown_pct}%"
        daily_limit = cfg.total_investment * cfg.daily_loss_limit_pct / 100
        if cfg.daily_loss_limit_pct > 0 and -perf["daily_pnl"] >= daily_limit:
            return f"daily loss {-perf['daily_pnl']:.2f} >= {daily_limit:.2f}"
        return None

    # ========== Cycle ==========

    async def run_cycle(self) -> CycleResult:
        start = time.monotonic()
        self._cycle_count += 1
        result = CycleResult(success=False, cycle_number=self._cycle_count)
        record = DecisionRecord(trader_id=self.orchestrator_config.trader_id, cycle_number=self._cycle_count)

        try:
            if not self.store.is_initialized:
                await self.initialize_grid()
            ctx = await self.context_builder.build()
        except GridError as e:
            return await self._fail(result, record, start, "cycle_prerequisite_failed", e)

        self._last_equity = ctx.total_equity
        halt_reason = self._check_loss_limits(ctx)
        full = FullDecision()
        if halt_reason:
            result.halted = True
            result.halt_reason = halt_reason
            if not self.store.is_paused:
                self._log_event("grid_halted", level=logging.CRITICAL, reason=halt_reason)
                await self.executor.pause(halt_reason)
            record.execution_log.append(f"Grid halted: {halt_reason}")
        elif self.decision_provider is not None:
            try:
                full = await self.decision_provider.get_decisions(ctx)
            except GridError as e:
                return await self._fail(result, record, start, "decision_fetch_failed", e)

        record.system_prompt = full.system_prompt
        record.input_prompt = full.user_prompt
        record.cot_trace = full.cot_trace
        record.raw_response = full.raw_response
        record.request_duration_ms = full.request_duration_ms
        record.decision_json = json.dumps([d.to_dict() for d in full.decisions])

        outcomes = await self.executor.execute_batch(full.decisions)
        for o in outcomes:
            record.decisions.append(ActionRecord(
                action=o.decision.action,
                symbol=o.decision.symbol or self.config.symbol,
                level_index=o.decision.level_index,
                quantity=o.quantity or o.decision.quantity,
                price=o.decision.price,
                order_id=o.order_id or o.decision.order_id,
                timestamp=o.timestamp,
                success=o.success,
                error=o.error,
            ))

        reconcile = await self.reconciler.reconcile()
        try:
            self._last_positions = await call_with_timeout(
                self.trader.get_positions(), self.orchestrator_config.exchange_timeout, "get_positions"
            )
        except ExchangeError as e:
            self._log_event("positions_refresh_failed", level=logging.WARNING, err=str(e))

        record.execution_log.append(f"Grid cycle completed with {len(full.decisions)} decisions")
        result.success = True
        result.decisions = len(full.decisions)
        result.outcomes = outcomes
        result.reconcile = reconcile
        result.duration_ms = (time.monotonic() - start) * 1000
        await self._persist(record)
        self._record_metrics(result)
        self._log_event(
            "cycle_complete",
            cycle=self._cycle_count,
            decisions=result.decisions,
            failed=sum(1 for o in outcomes if o.status == "failed"),
            fills=len(reconcile.inferred_fills),
            stopped=len(reconcile.stopped_levels),
            halted=result.halted,
            duration_ms=round(result.duration_ms, 1),
        )
        return result

    async def _fail(self, result: CycleResult, record: DecisionRecord, start: float,
                    event: str, exc: Exception) -> CycleResult:
        result.error = str(exc)
        result.duration_ms = (time.monotonic() - start) * 1000
        record.success = False
        record.error_message = str(exc)
        record.execution_log.append(f"Grid cycle aborted: {exc}")
        self._log_event(event, level=logging.WARNING, cycle=self._cycle_count, err=str(exc),
                        err_type=type(exc).__name__)
        await self._persist(record)
        self._record_metrics(result)
        return result

    async def _persist(self, record: DecisionRecord) -> None:
        if self.decision_log is not None:
            await self.decision_log.log_decision(record)

    def _record_metrics(self, result: CycleResult) -> None:
        if not self.metrics:
            return
        symbol = self.config.symbol
        self.metrics.cycles_total.labels(symbol=symbol, result="ok" if result.success else "failed").inc()
        self.metrics.cycle_duration.labels(symbol=symbol).observe(result.duration_ms / 1000)
        snap = self.store.snapshot()
        self.metrics.set_level_counts(symbol, {s.value: snap.count(s) for s in LevelState})
        self.metrics.exposure_usd.labels(symbol=symbol).set(self.risk.exposure(self._last_positions))
        self.metrics.paused.labels(symbol=symbol).set(1 if snap.is_paused else 0)

    # ========== Telemetry ==========

    def risk_info(self) -> Dict[str, Any]:
        """Read-only risk view for telemetry readers. Uses positions from the last cycle."""
        snap = self.store.snapshot()
        exposure = self.risk.exposure(self._last_positions)
        max_total = self.risk.max_total_value
        return {
            "symbol": self.config.symbol,
            "is_initialized": snap.is_initialized,
            "is_paused": snap.is_paused,
            "upper_price": snap.upper_price,
            "lower_price": snap.lower_price,
            "grid_spacing": snap.grid_spacing,
            "exposure_usd": exposure,
            "max_total_usd": max_total,
            "exposure_pct": exposure / max_total * 100 if max_total > 0 else 0.0,
            "effective_leverage": exposure / self._last_equity if self._last_equity > 0 else 0.0,
            "configured_leverage": self.config.leverage,
            "levels": {s.value: snap.count(s) for s in LevelState},
            "max_drawdown": snap.max_drawdown,
            "daily_pnl": snap.daily_pnl,
            "total_trades": snap.total_trades,
        }

    # ========== Loop ==========

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        stop_event = stop_event or asyncio.Event()
        self._running = True
        self._log_event("orchestrator_start", interval=self.orchestrator_config.loop_interval)
        while self._running and not stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                self._log_event("cycle_crashed", level=logging.ERROR, err=str(e), err_type=type(e).__name__)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.orchestrator_config.loop_interval)
            except asyncio.TimeoutError:
                pass
        self._running = False

    async def shutdown(self) -> None:
        self._log_event("orchestrator_shutdown_start")
        self._running = False
        for name, res in (("trader", self.trader), ("market_data", self.market_data),
                          ("decision_provider", self.decision_provider)):
            if res is None:
                continue
            try:
                await res.close()
            except Exception as exc:
                self._log_event("shutdown_close_error", level=logging.WARNING, component=name, error=str(exc))
        self._log_event("orchestrator_shutdown_complete", cycles=self._cycle_count)
