"""
Tests for ReconciliationService.
"""
import pytest

from gridtrader.errors import ExchangeError, ReconciliationAmbiguity
from gridtrader.exchange.base import OpenOrder, Position
from gridtrader.execution.reconciliation_service import (
    ReconciliationConfig,
    ReconciliationService,
    level_loss_pct,
)
from gridtrader.monitoring.metrics_rich import GridMetrics
from gridtrader.state.grid_state import LevelState

from conftest import FakeTrader, make_store, uniform_config


def place(store, trader, index, qty=1.0):
    """Register a resting order on both sides: exchange book and store."""
    oid = f"oid-{index}"
    lv = store.level(index)
    trader.open_orders[oid] = OpenOrder(order_id=oid, symbol="BTCUSDT", side=lv.side, quantity=qty, price=lv.price)
    store.mark_pending(index, oid, qty)
    return oid


@pytest.fixture
def service(grid_config, store, trader):
    return ReconciliationService(grid_config, store, trader)


class TestLossPct:
    def test_buy_loses_when_price_falls(self):
        assert level_loss_pct("buy", 100.0, 94.0) == pytest.approx(6.0)
        assert level_loss_pct("buy", 100.0, 103.0) == pytest.approx(-3.0)

    def test_sell_loses_when_price_rises(self):
        assert level_loss_pct("sell", 100.0, 105.0) == pytest.approx(5.0)
        assert level_loss_pct("sell", 100.0, 90.0) == pytest.approx(-10.0)


class TestFillInference:
    """Orders missing from the book."""

    @pytest.mark.asyncio
    async def test_missing_order_marked_filled(self, service, store, trader):
        oid0 = place(store, trader, 0)
        place(store, trader, 1)
        trader.fill(oid0)

        result = await service.reconcile()

        assert result.success is True
        assert result.open_orders == 1
        assert len(result.inferred_fills) == 1
        amb = result.inferred_fills[0]
        assert isinstance(amb, ReconciliationAmbiguity)
        assert (amb.level_index, amb.order_id, amb.price) == (0, oid0, pytest.approx(90.0))
        assert store.level(0).state == LevelState.FILLED
        assert store.level(0).position_entry == pytest.approx(90.0)
        assert store.level(1).state == LevelState.PENDING

    @pytest.mark.asyncio
    async def test_nothing_missing(self, service, store, trader):
        place(store, trader, 0)
        result = await service.reconcile()
        assert result.inferred_fills == []
        assert store.level(0).state == LevelState.PENDING

    @pytest.mark.asyncio
    async def test_open_orders_failure_mutates_nothing(self, service, store, trader):
        oid = place(store, trader, 0)
        trader.fill(oid)
        trader.fail["open_orders"] = ExchangeError("down")

        result = await service.reconcile()

        assert result.success is False
        assert "down" in result.error
        assert store.level(0).state == LevelState.PENDING

    @pytest.mark.asyncio
    async def test_positions_failure_keeps_fills(self, service, store, trader):
        oid = place(store, trader, 0)
        trader.fill(oid)
        trader.fail["positions"] = ExchangeError("down")

        result = await service.reconcile()

        assert result.success is False
        assert len(result.inferred_fills) == 1
        assert store.level(0).state == LevelState.FILLED
        assert trader.closes == []


class TestPnlDistribution:
    @pytest.mark.asyncio
    async def test_unrealized_split_over_filled_levels(self, service, store, trader):
        for i in (0, 1):
            trader.fill(place(store, trader, i))
        trader.positions = [Position(symbol="BTCUSDT", quantity=2.0, unrealized_pnl=8.0)]

        result = await service.reconcile()

        assert result.unrealized_pnl == pytest.approx(8.0)
        snap = store.snapshot()
        assert snap.levels[0].unrealized_pnl == pytest.approx(4.0)
        assert snap.levels[1].unrealized_pnl == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_other_symbol_ignored(self, service, store, trader):
        trader.fill(place(store, trader, 0))
        trader.positions = [Position(symbol="ETHUSDT", quantity=1.0, unrealized_pnl=-50.0)]
        result = await service.reconcile()
        assert result.unrealized_pnl is None
        assert store.level(0).unrealized_pnl == 0.0


class TestStopLoss:
    """Per-level stop-loss, 5% threshold."""

    @pytest.mark.asyncio
    async def test_buy_level_stopped_after_six_percent_drop(self, service, store, trader):
        trader.fill(place(store, trader, 2, qty=2.0))   # buy level at 100
        trader.price = 94.0

        result = await service.reconcile()

        assert result.stopped_levels == [2]
        assert trader.closes == [("long", "BTCUSDT", 2.0)]
        lv = store.level(2)
        assert lv.state == LevelState.STOPPED
        assert lv.unrealized_pnl == pytest.approx(-6.0 * 200.0 / 100)

    @pytest.mark.asyncio
    async def test_buy_level_kept_after_three_percent_drop(self, service, store, trader):
        trader.fill(place(store, trader, 2))
        trader.price = 97.0

        result = await service.reconcile()

        assert result.stop_losses == []
        assert trader.closes == []
        assert store.level(2).state == LevelState.FILLED

    @pytest.mark.asyncio
    async def test_sell_level_stopped_on_rise(self, service, store, trader):
        trader.fill(place(store, trader, 3, qty=1.0))   # sell level at 105
        trader.price = 111.0

        result = await service.reconcile()

        assert result.stopped_levels == [3]
        assert trader.closes == [("short", "BTCUSDT", 1.0)]

    @pytest.mark.asyncio
    async def test_close_failure_leaves_level_filled(self, service, store, trader):
        trader.fill(place(store, trader, 2))
        trader.price = 90.0
        trader.fail["close"] = ExchangeError("rejected")

        result = await service.reconcile()

        assert result.success is True
        assert result.stopped_levels == []
        assert result.stop_losses[0].error == "rejected"
        assert store.level(2).state == LevelState.FILLED

    @pytest.mark.asyncio
    async def test_price_failure_reported(self, service, store, trader):
        trader.fill(place(store, trader, 2))
        trader.fail["price"] = ExchangeError("no ticker")

        result = await service.reconcile()

        assert result.success is False
        assert store.level(2).state == LevelState.FILLED

    @pytest.mark.asyncio
    async def test_disabled_when_threshold_zero(self):
        cfg = uniform_config(stop_loss_pct=0.0)
        store = make_store(cfg)
        trader = FakeTrader(price=10.0)
        trader.fill(place(store, trader, 2))
        svc = ReconciliationService(cfg, store, trader)

        result = await svc.reconcile()

        assert result.stop_losses == []
        assert store.level(2).state == LevelState.FILLED

    @pytest.mark.asyncio
    async def test_stale_level_not_restopped(self, service, store, trader):
        trader.fill(place(store, trader, 2))
        trader.price = 90.0
        await service.reconcile()
        trader.closes.clear()

        result = await service.reconcile()

        assert result.stop_losses == []
        assert trader.closes == []

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, grid_config, store, trader):
        metrics = GridMetrics()
        svc = ReconciliationService(grid_config, store, trader, metrics=metrics,
                                    reconcile_config=ReconciliationConfig(exchange_timeout=5.0))
        trader.fill(place(store, trader, 2))
        trader.price = 90.0

        await svc.reconcile()

        reg = metrics.registry
        assert reg.get_sample_value("grid_fills_inferred_total", {"symbol": "BTCUSDT"}) == 1.0
        assert reg.get_sample_value("grid_stop_losses_total", {"symbol": "BTCUSDT", "result": "closed"}) == 1.0
