"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys

from prometheus_client import start_http_server

from gridtrader.config.config import Settings
from gridtrader.decision.http_client import DecisionProvider, HttpDecisionClient, StaticDecisionProvider
from gridtrader.errors import ConfigError
from gridtrader.exchange.factory import build_trader
from gridtrader.infra.logging_cfg import build_logger
from gridtrader.market_data.provider import BinanceKlineProvider
from gridtrader.monitoring.metrics_rich import GridMetrics
from gridtrader.orchestrator.grid_orchestrator import GridOrchestrator, OrchestratorConfig
from gridtrader.state.decision_log import DecisionLog


def _build_decision_provider(cfg: Settings) -> DecisionProvider:
    if cfg.decision_url:
        return HttpDecisionClient(
            cfg.decision_url,
            token=cfg.decision_token,
            trader_id=cfg.trader_id,
            language=cfg.language,
            timeout=cfg.decision_timeout,
        )
    return StaticDecisionProvider()


async def main() -> None:
    level = getattr(logging, os.getenv("GRID_LOG_LEVEL", "INFO").upper(), logging.INFO)
    log = build_logger("gridbot", level=level, file_path=os.getenv("GRID_LOG_FILE", "gridbot.log") or None)

    try:
        cfg = Settings.load()
    except (ConfigError, ValueError) as e:
        log.error(json.dumps({"event": "config_invalid", "err": str(e)}))
        sys.exit(1)
    if not cfg.is_grid_strategy:
        log.error(json.dumps({"event": "strategy_not_grid", "strategy_type": cfg.strategy_type}))
        sys.exit(1)

    metrics = GridMetrics()
    start_http_server(cfg.metrics_port, registry=metrics.registry)

    trader = build_trader(cfg)
    market_data = BinanceKlineProvider(
        cfg.market_data_url,
        short_interval=cfg.short_interval,
        long_interval=cfg.long_interval,
        limit=cfg.kline_limit,
        timeout=cfg.http_timeout,
    )
    orchestrator = GridOrchestrator(
        cfg.grid,
        trader,
        decision_provider=_build_decision_provider(cfg),
        market_data=market_data,
        decision_log=DecisionLog(cfg.trader_id, cfg.state_dir),
        metrics=metrics,
        orchestrator_config=OrchestratorConfig(
            trader_id=cfg.trader_id,
            exchange_timeout=cfg.exchange_timeout,
            loop_interval=cfg.loop_interval,
            atr_interval=cfg.long_interval,
        ),
    )
    log.info(json.dumps({"event": "startup", "settings": cfg.dump()}, default=str))

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    run_task = asyncio.create_task(orchestrator.run(stop_event))

    def stop_all() -> None:
        stop_event.set()
        orchestrator.stop()

    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_all)
        except NotImplementedError:
            pass

    try:
        await run_task
    except (asyncio.CancelledError, KeyboardInterrupt):
        log.info("Shutdown signal received, cleaning up...")
        if not run_task.done():
            run_task.cancel()
            try:
                await run_task
            except asyncio.CancelledError:
                pass
    finally:
        log.info("Closing connections...")
        await orchestrator.shutdown()
        log.info("Shutdown complete")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGrid trader stopped by user")
    sys.exit(0)


if __name__ == "__main__":
    run()
