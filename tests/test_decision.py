"""
Tests for decision payloads, the HTTP decision client, the context builder
and the append-only decision log.
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock

from gridtrader.decision.context import GridContextBuilder
from gridtrader.decision.http_client import HttpDecisionClient, StaticDecisionProvider
from gridtrader.decision.models import Decision, GridAction, GridContext
from gridtrader.errors import DecisionServiceError, ExchangeError
from gridtrader.exchange.base import Position
from gridtrader.market_data.provider import MarketSnapshot
from gridtrader.state.decision_log import ActionRecord, DecisionLog, DecisionRecord


class TestDecisionModel:
    def test_parse_actions(self):
        assert GridAction.parse("PLACE_BUY_LIMIT") == GridAction.PLACE_BUY_LIMIT
        assert GridAction.parse(" hold ") == GridAction.HOLD
        assert GridAction.parse("moon") == GridAction.UNKNOWN
        assert GridAction.parse(None) == GridAction.UNKNOWN

    def test_from_dict_camel_case(self):
        d = Decision.from_dict({
            "action": "cancel_order",
            "symbol": "BTCUSDT",
            "levelIndex": "3",
            "orderID": "abc",
            "price": "95.5",
            "quantity": 0.1,
            "confidence": 80,
            "extra": "ignored",
        })
        assert d.kind == GridAction.CANCEL_ORDER
        assert d.level_index == 3
        assert d.order_id == "abc"
        assert d.price == pytest.approx(95.5)
        assert d.confidence == pytest.approx(80.0)

    def test_from_dict_defaults(self):
        d = Decision.from_dict({"action": "hold", "level_index": "garbage"})
        assert d.level_index == -1
        assert d.quantity == 0.0
        assert d.to_dict()["action"] == "hold"

    @pytest.mark.parametrize("raw,expected", [
        (2, 2),
        ("4", 4),
        (3.0, 3),
        ("1.0", 1),
        (2.7, -1),
        ("2.5", -1),
        (float("inf"), -1),
        (float("nan"), -1),
        ("Infinity", -1),
        ([1], -1),
    ])
    def test_level_index_must_be_integral(self, raw, expected):
        assert Decision.from_dict({"action": "place_buy_limit", "level_index": raw}).level_index == expected

    def test_level_index_from_json_infinity(self):
        payload = json.loads('{"action": "place_buy_limit", "levelIndex": Infinity}')
        assert Decision.from_dict(payload).level_index == -1


def make_context(store) -> GridContext:
    return GridContext(symbol="BTCUSDT", current_price=100.0, grid=store.snapshot(), grid_count=5,
                       total_investment=1000.0, leverage=1, distribution="uniform", stop_loss_pct=5.0)


class TestHttpDecisionClient:
    """Wire format and failure mapping."""

    @pytest.mark.asyncio
    async def test_posts_context_and_parses(self, store):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            captured["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={
                "decisions": [
                    {"action": "place_buy_limit", "symbol": "BTCUSDT", "level_index": 1, "quantity": 0.5},
                    "not-a-dict",
                    {"action": "hold"},
                ],
                "cot_trace": "thinking",
                "system_prompt": "sys",
            })

        client = HttpDecisionClient("http://decide/api", token="tok", trader_id="grid-1",
                                    client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        full = await client.get_decisions(make_context(store))

        assert [d.kind for d in full.decisions] == [GridAction.PLACE_BUY_LIMIT, GridAction.HOLD]
        assert full.cot_trace == "thinking"
        assert full.system_prompt == "sys"
        assert captured["auth"] == "Bearer tok"
        body = captured["body"]
        assert body["trader_id"] == "grid-1"
        assert body["strategy"] == "grid_trading"
        assert body["context"]["symbol"] == "BTCUSDT"
        assert len(body["context"]["grid"]["levels"]) == 5
        assert body["context"]["config"]["grid_count"] == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"result": []}),
        httpx.Response(200, json=[{"action": "hold"}]),
        httpx.Response(200, json="hold"),
        httpx.Response(200, json=42),
    ])
    async def test_bad_responses_raise(self, store, response):
        client = HttpDecisionClient("http://decide/api",
                                    client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: response)))
        with pytest.raises(DecisionServiceError):
            await client.get_decisions(make_context(store))

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self, store):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        client = HttpDecisionClient("http://decide/api",
                                    client=httpx.AsyncClient(transport=httpx.MockTransport(boom)))
        with pytest.raises(DecisionServiceError):
            await client.get_decisions(make_context(store))

    @pytest.mark.asyncio
    async def test_static_provider(self, store):
        provider = StaticDecisionProvider([Decision(action="hold")])
        full = await provider.get_decisions(make_context(store))
        assert [d.action for d in full.decisions] == ["hold"]
        assert provider.calls == 1


class TestContextBuilder:
    """Per-cycle context assembly."""

    @pytest.mark.asyncio
    async def test_builds_from_trader(self, grid_config, store, trader):
        trader.positions = [Position(symbol="BTCUSDT", quantity=-0.5, mark_price=100.0)]
        store.mark_pending(0, "a", 1.0)

        ctx = await GridContextBuilder(grid_config, store, trader).build()

        assert ctx.current_price == pytest.approx(100.0)
        assert ctx.total_equity == pytest.approx(1000.0)
        assert ctx.current_position == pytest.approx(-0.5)
        assert ctx.active_order_count == 1
        assert ctx.grid_count == 5
        assert ctx.to_dict()["market"] is None

    @pytest.mark.asyncio
    async def test_market_snapshot_price_preferred(self, grid_config, store, trader):
        market = AsyncMock()
        market.get_snapshot = AsyncMock(return_value=MarketSnapshot(symbol="BTCUSDT", price=101.5, atr14=1.2))
        trader.fail["price"] = ExchangeError("unused")

        ctx = await GridContextBuilder(grid_config, store, trader, market).build()

        assert ctx.current_price == pytest.approx(101.5)
        assert ctx.to_dict()["market"]["atr14"] == pytest.approx(1.2)

    @pytest.mark.asyncio
    async def test_market_failure_propagates(self, grid_config, store, trader):
        market = AsyncMock()
        market.get_snapshot = AsyncMock(side_effect=ExchangeError("klines down"))
        with pytest.raises(ExchangeError):
            await GridContextBuilder(grid_config, store, trader, market).build()

    @pytest.mark.asyncio
    async def test_account_failures_degrade(self, grid_config, store, trader):
        trader.fail["balance"] = ExchangeError("down")
        trader.fail["positions"] = ExchangeError("down")

        ctx = await GridContextBuilder(grid_config, store, trader).build()

        assert ctx.total_equity == 0.0
        assert ctx.current_position == 0.0


class TestDecisionLog:
    """Append-only JSONL audit."""

    @pytest.mark.asyncio
    async def test_append_and_read(self, tmp_path):
        dl = DecisionLog("grid:1", str(tmp_path / "state"))
        for n in (1, 2, 3):
            rec = DecisionRecord(trader_id="grid:1", cycle_number=n)
            rec.decisions.append(ActionRecord(action="hold", symbol="BTCUSDT", success=True))
            rec.execution_log.append("Grid cycle completed with 1 decisions")
            assert await dl.log_decision(rec) is True

        assert dl.path.name == "decisions_grid_1.jsonl"
        recent = await dl.read_recent(2)
        assert [r.cycle_number for r in recent] == [2, 3]
        assert recent[0].decisions[0].action == "hold"
        assert dl.write_errors == 0

    @pytest.mark.asyncio
    async def test_corrupt_lines_skipped(self, tmp_path):
        dl = DecisionLog("t", str(tmp_path))
        await dl.log_decision(DecisionRecord(trader_id="t", cycle_number=1))
        with dl.path.open("a") as fh:
            fh.write("{broken\n")
        await dl.log_decision(DecisionRecord(trader_id="t", cycle_number=2))

        recent = await dl.read_recent(10)
        assert [r.cycle_number for r in recent] == [1, 2]

    @pytest.mark.asyncio
    async def test_missing_file_reads_empty(self, tmp_path):
        assert await DecisionLog("t", str(tmp_path)).read_recent() == []

    @pytest.mark.asyncio
    async def test_write_failure_reported(self, tmp_path):
        errors = []
        dl = DecisionLog("t", str(tmp_path), on_write_error=errors.append)
        dl.path.mkdir()  # a directory where the file should be

        ok = await dl.log_decision(DecisionRecord(trader_id="t", cycle_number=1))

        assert ok is False
        assert dl.write_errors == 1
        assert len(errors) == 1
