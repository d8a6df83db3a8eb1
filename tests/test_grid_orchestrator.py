"""
Integration tests for GridOrchestrator.

Full cycles against the in-memory FakeTrader with a StaticDecisionProvider
and a DecisionLog written under tmp_path.
"""

import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock

from gridtrader.decision.http_client import HttpDecisionClient, StaticDecisionProvider
from gridtrader.decision.models import Decision
from gridtrader.errors import DecisionServiceError, ExchangeError
from gridtrader.monitoring.metrics_rich import GridMetrics
from gridtrader.orchestrator.grid_orchestrator import GridOrchestrator, OrchestratorConfig
from gridtrader.state.decision_log import DecisionLog
from gridtrader.state.grid_state import LevelState

from conftest import FakeTrader, uniform_config


@pytest.fixture
def decision_log(tmp_path):
    return DecisionLog("grid-test", str(tmp_path))


def build(trader, decisions=None, decision_log=None, metrics=None, **cfg_overrides):
    provider = StaticDecisionProvider(decisions or [])
    orch = GridOrchestrator(
        uniform_config(**cfg_overrides),
        trader,
        decision_provider=provider,
        decision_log=decision_log,
        metrics=metrics,
        orchestrator_config=OrchestratorConfig(trader_id="grid-test", exchange_timeout=5.0, loop_interval=0.01),
    )
    return orch, provider


class TestCycle:
    """Happy path."""

    @pytest.mark.asyncio
    async def test_first_cycle_initializes_and_executes(self, decision_log):
        trader = FakeTrader(price=100.0)
        orch, provider = build(trader, [
            Decision(action="place_buy_limit", symbol="BTCUSDT", level_index=1, quantity=1.0),
            Decision(action="place_sell_limit", symbol="BTCUSDT", level_index=3, quantity=1.0),
        ], decision_log=decision_log)

        result = await orch.run_cycle()

        assert result.success is True
        assert result.cycle_number == 1
        assert result.decisions == 2
        assert all(o.success for o in result.outcomes)
        assert provider.calls == 1
        assert trader.leverage_calls == [("BTCUSDT", 1)]

        snap = orch.store.snapshot()
        assert snap.is_initialized
        assert snap.active_order_count == 2
        assert set(snap.order_book.values()) == {1, 3}

        records = await decision_log.read_recent(5)
        assert len(records) == 1
        rec = records[0]
        assert rec.success is True
        assert rec.trader_id == "grid-test"
        assert rec.execution_log[-1] == "Grid cycle completed with 2 decisions"
        assert [a.level_index for a in rec.decisions] == [1, 3]
        assert all(a.success for a in rec.decisions)

    @pytest.mark.asyncio
    async def test_fill_detected_next_cycle(self):
        trader = FakeTrader(price=100.0)
        orch, provider = build(trader, [
            Decision(action="place_buy_limit", symbol="BTCUSDT", level_index=1, quantity=1.0),
        ])
        await orch.run_cycle()
        oid = orch.store.level(1).order_id
        trader.fill(oid)
        provider.decisions = [Decision(action="hold")]

        result = await orch.run_cycle()

        assert [a.order_id for a in result.reconcile.inferred_fills] == [oid]
        assert orch.store.level(1).state == LevelState.FILLED

    @pytest.mark.asyncio
    async def test_leverage_failure_is_not_fatal(self):
        trader = FakeTrader()
        trader.fail["leverage"] = ExchangeError("unsupported")
        orch, _ = build(trader)

        result = await orch.run_cycle()

        assert result.success is True
        assert orch.store.is_initialized

    @pytest.mark.asyncio
    async def test_no_provider_holds(self):
        trader = FakeTrader()
        orch = GridOrchestrator(uniform_config(), trader)
        result = await orch.run_cycle()
        assert result.success is True
        assert result.decisions == 0


class TestFailures:
    """Aborted cycles."""

    @pytest.mark.asyncio
    async def test_price_failure_aborts_before_init(self, decision_log):
        trader = FakeTrader()
        trader.fail["price"] = ExchangeError("no ticker")
        orch, provider = build(trader, decision_log=decision_log)

        result = await orch.run_cycle()

        assert result.success is False
        assert "no ticker" in result.error
        assert orch.store.is_initialized is False
        assert provider.calls == 0
        records = await decision_log.read_recent(5)
        assert records[0].success is False
        assert "no ticker" in records[0].error_message

    @pytest.mark.asyncio
    async def test_decision_service_failure_aborts_cycle(self, decision_log):
        trader = FakeTrader()
        orch, provider = build(trader, decision_log=decision_log)
        provider.get_decisions = AsyncMock(side_effect=DecisionServiceError("503"))

        result = await orch.run_cycle()

        assert result.success is False
        assert result.outcomes == []
        assert trader.placed == []
        records = await decision_log.read_recent(5)
        assert records[-1].error_message == "503"

    @pytest.mark.asyncio
    async def test_non_object_response_is_audited_failure(self, decision_log):
        trader = FakeTrader()
        client = HttpDecisionClient("http://decide/api", client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[{"action": "hold"}]))
        ))
        orch = GridOrchestrator(
            uniform_config(),
            trader,
            decision_provider=client,
            decision_log=decision_log,
            orchestrator_config=OrchestratorConfig(trader_id="grid-test", exchange_timeout=5.0),
        )

        result = await orch.run_cycle()

        assert result.success is False
        assert "expected an object" in result.error
        records = await decision_log.read_recent(5)
        assert len(records) == 1
        assert records[0].success is False
        await client.close()

    @pytest.mark.asyncio
    async def test_balance_failure_is_degraded_not_fatal(self):
        trader = FakeTrader()
        trader.fail["balance"] = ExchangeError("down")
        orch, _ = build(trader, [Decision(action="place_buy_limit", level_index=0, quantity=1.0)])

        result = await orch.run_cycle()

        assert result.success is True
        assert orch.store.level(0).state == LevelState.PENDING


class TestLossGuard:
    """Drawdown and daily-loss halts."""

    @pytest.mark.asyncio
    async def test_drawdown_pauses_grid(self):
        trader = FakeTrader()
        orch, provider = build(trader, [
            Decision(action="place_buy_limit", symbol="BTCUSDT", level_index=1, quantity=1.0),
        ])
        await orch.run_cycle()
        assert orch.store.snapshot().active_order_count == 1

        trader.balance.equity = 800.0
        result = await orch.run_cycle()

        assert result.halted is True
        assert "drawdown" in result.halt_reason
        assert result.decisions == 0
        assert provider.calls == 1
        assert orch.store.is_paused is True
        assert trader.cancel_all_calls == 1
        assert orch.store.snapshot().active_order_count == 0

    @pytest.mark.asyncio
    async def test_daily_loss_halts(self):
        trader = FakeTrader()
        orch, provider = build(trader, max_drawdown_pct=0.0, daily_loss_limit_pct=5.0)
        await orch.run_cycle()

        trader.balance.equity = 940.0
        result = await orch.run_cycle()

        assert result.halted is True
        assert "daily loss" in result.halt_reason

    @pytest.mark.asyncio
    async def test_already_paused_grid_not_cancelled_again(self):
        trader = FakeTrader()
        orch, _ = build(trader)
        await orch.run_cycle()
        trader.balance.equity = 800.0
        await orch.run_cycle()
        await orch.run_cycle()
        assert trader.cancel_all_calls == 1


class TestTelemetry:
    @pytest.mark.asyncio
    async def test_risk_info(self):
        trader = FakeTrader()
        orch, _ = build(trader, [Decision(action="place_buy_limit", level_index=2, quantity=1.0)])
        await orch.run_cycle()

        info = orch.risk_info()

        assert info["is_initialized"] is True
        assert info["exposure_usd"] == pytest.approx(100.0)
        assert info["max_total_usd"] == pytest.approx(1000.0)
        assert info["exposure_pct"] == pytest.approx(10.0)
        assert info["effective_leverage"] == pytest.approx(0.1)
        assert info["levels"]["pending"] == 1

    @pytest.mark.asyncio
    async def test_cycle_metrics(self):
        metrics = GridMetrics()
        trader = FakeTrader()
        orch, _ = build(trader, metrics=metrics)
        await orch.run_cycle()

        reg = metrics.registry
        assert reg.get_sample_value("grid_cycles_total", {"symbol": "BTCUSDT", "result": "ok"}) == 1.0
        assert reg.get_sample_value("grid_levels", {"symbol": "BTCUSDT", "state": "empty"}) == 5.0


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_run_until_stopped(self):
        trader = FakeTrader()
        orch, _ = build(trader)
        stop = asyncio.Event()
        task = asyncio.create_task(orch.run(stop))
        await asyncio.sleep(0.05)
        assert orch.is_running is True
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert orch.cycle_count >= 1
        assert orch.is_running is False

    @pytest.mark.asyncio
    async def test_shutdown_closes_resources(self):
        trader = FakeTrader()
        trader.close = AsyncMock()
        orch, provider = build(trader)
        provider.close = AsyncMock(side_effect=RuntimeError("already closed"))

        await orch.shutdown()

        trader.close.assert_awaited_once()
        provider.close.assert_awaited_once()
