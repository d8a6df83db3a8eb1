"""
Hyperliquid perp backend on top of the official SDK.

The SDK is blocking; every call runs on a small shared thread pool. Post-only
maps to tif "Alo". The grid client id is hashed into a 16-byte cloid so the
order can be traced back to its level.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from hyperliquid.exchange import Exchange
from hyperliquid.info import Info
from hyperliquid.utils.types import Cloid

from gridtrader.core.utils import hl_round_price, to_float
from gridtrader.errors import ExchangeError
from gridtrader.exchange.base import (
    Balance,
    GridTrader,
    LimitOrderRequest,
    OpenOrder,
    OrderResult,
    Position,
)

log = logging.getLogger("gridbot")

QUOTES = ("USDT", "USDC", "USD")


def cloid_for(client_id: str) -> Cloid:
    return Cloid.from_str("0x" + hashlib.md5(client_id.encode("utf-8")).hexdigest())


def extract_error(resp: Any) -> Optional[str]:
    """Return the first error message in an SDK response, None when it succeeded."""
    if not isinstance(resp, dict):
        return f"unexpected response: {resp!r}"
    if resp.get("status") != "ok":
        return str(resp.get("response", resp))
    statuses = (((resp.get("response") or {}).get("data") or {}).get("statuses")) or []
    for st in statuses:
        if isinstance(st, dict) and "error" in st:
            return str(st["error"])
    return None


def extract_oid(resp: Dict[str, Any]) -> Tuple[str, str]:
    statuses = (((resp.get("response") or {}).get("data") or {}).get("statuses")) or []
    for st in statuses:
        if not isinstance(st, dict):
            continue
        for key in ("resting", "filled"):
            if key in st:
                return str(st[key].get("oid", "")), key
    return "", ""


class HyperliquidTrader(GridTrader):
    name = "hyperliquid"

    def __init__(
        self,
        info: Info,
        exchange: Exchange,
        account_address: str,
        timeout: float = 30.0,
        max_workers: int = 4,
        quote: str = "USDT",
    ) -> None:
        self.info = info
        self.exchange = exchange
        self.account_address = account_address
        self.timeout = timeout
        self.quote = quote
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hl-exec")
        self._sz_decimals: Dict[str, int] = {}
        self._symbols: Dict[str, str] = {}

    async def close(self) -> None:
        self._executor.shutdown(wait=False)

    async def _call(self, fn: Callable[[], Any], label: str) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, fn)
        except ExchangeError:
            raise
        except Exception as e:
            raise ExchangeError(f"hyperliquid {label} failed: {e}") from e

    def _coin(self, symbol: str) -> str:
        coin = symbol.upper()
        for q in QUOTES:
            if coin.endswith(q) and len(coin) > len(q):
                coin = coin[: -len(q)]
                break
        self._symbols[coin] = symbol
        return coin

    def _symbol(self, coin: str) -> str:
        return self._symbols.get(coin, f"{coin}{self.quote}")

    async def _decimals(self, coin: str) -> int:
        if coin not in self._sz_decimals:
            meta = await self._call(self.info.meta, "meta")
            for asset in (meta or {}).get("universe", []):
                self._sz_decimals[asset.get("name", "")] = int(asset.get("szDecimals", 0))
        return self._sz_decimals.get(coin, 0)

    async def get_market_price(self, symbol: str) -> float:
        coin = self._coin(symbol)
        mids = await self._call(self.info.all_mids, "all_mids")
        price = to_float((mids or {}).get(coin))
        if price <= 0:
            raise ExchangeError(f"hyperliquid: no mid for {coin}")
        return price

    async def get_balance(self) -> Balance:
        state = await self._call(lambda: self.info.user_state(self.account_address), "user_state")
        summary = (state or {}).get("marginSummary", {})
        upnl = sum(
            to_float((p.get("position") or {}).get("unrealizedPnl"))
            for p in (state or {}).get("assetPositions", [])
        )
        withdrawable = to_float((state or {}).get("withdrawable"))
        return Balance(
            equity=to_float(summary.get("accountValue")),
            cash=to_float(summary.get("accountValue")) - upnl,
            buying_power=withdrawable,
            available=withdrawable,
            unrealized_pnl=upnl,
        )

    async def get_positions(self) -> List[Position]:
        state = await self._call(lambda: self.info.user_state(self.account_address), "user_state")
        out: List[Position] = []
        for entry in (state or {}).get("assetPositions", []):
            p = entry.get("position") or {}
            qty = to_float(p.get("szi"))
            if qty == 0:
                continue
            value = to_float(p.get("positionValue"))
            out.append(Position(
                symbol=self._symbol(str(p.get("coin", ""))),
                quantity=qty,
                entry_price=to_float(p.get("entryPx")),
                mark_price=value / abs(qty) if value else 0.0,
                unrealized_pnl=to_float(p.get("unrealizedPnl")),
                market_value=value,
                leverage=to_float((p.get("leverage") or {}).get("value")),
            ))
        return out

    async def get_open_orders(self, symbol: str) -> List[OpenOrder]:
        coin = self._coin(symbol)
        rows = await self._call(lambda: self.info.open_orders(self.account_address), "open_orders")
        return [
            OpenOrder(
                order_id=str(o.get("oid", "")),
                symbol=symbol,
                side="buy" if o.get("side") == "B" else "sell",
                quantity=to_float(o.get("sz")),
                price=to_float(o.get("limitPx")),
                status="open",
                type="limit",
            )
            for o in rows or []
            if o.get("coin") == coin
        ]

    async def place_limit_order(self, req: LimitOrderRequest) -> OrderResult:
        coin = self._coin(req.symbol)
        decimals = await self._decimals(coin)
        px = hl_round_price(req.price, decimals, is_perp=True)
        sz = round(req.quantity, decimals)
        if sz <= 0:
            raise ExchangeError(f"hyperliquid: size {req.quantity} rounds to zero for {coin}")
        tif = "Alo" if req.post_only else "Gtc"
        cloid = cloid_for(req.client_id) if req.client_id else None
        resp = await self._call(
            lambda: self.exchange.order(
                coin, req.side == "buy", sz, px, {"limit": {"tif": tif}}, req.reduce_only, cloid=cloid
            ),
            "order",
        )
        err = extract_error(resp)
        if err:
            raise ExchangeError(f"hyperliquid order rejected: {err}")
        oid, status = extract_oid(resp)
        return OrderResult(
            order_id=oid,
            symbol=req.symbol,
            client_id=req.client_id,
            status=status,
            raw=resp,
        )

    async def place_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        order_type: str = "market",
        price: Optional[float] = None,
    ) -> OrderResult:
        if order_type == "limit":
            return await self.place_limit_order(
                LimitOrderRequest(symbol=symbol, side=side, price=price or 0.0, quantity=quantity)
            )
        coin = self._coin(symbol)
        decimals = await self._decimals(coin)
        sz = round(quantity, decimals)
        resp = await self._call(lambda: self.exchange.market_open(coin, side == "buy", sz), "market_open")
        err = extract_error(resp)
        if err:
            raise ExchangeError(f"hyperliquid market order rejected: {err}")
        oid, status = extract_oid(resp)
        return OrderResult(order_id=oid, symbol=symbol, status=status, raw=resp)

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        coin = self._coin(symbol)
        resp = await self._call(lambda: self.exchange.cancel(coin, int(order_id)), "cancel")
        err = extract_error(resp)
        if err:
            raise ExchangeError(f"hyperliquid cancel rejected: {err}")

    async def cancel_all_orders(self, symbol: str) -> None:
        orders = await self.get_open_orders(symbol)
        coin = self._coin(symbol)
        if not orders:
            return
        reqs = [{"coin": coin, "oid": int(o.order_id)} for o in orders]
        resp = await self._call(lambda: self.exchange.bulk_cancel(reqs), "bulk_cancel")
        err = extract_error(resp)
        if err:
            raise ExchangeError(f"hyperliquid bulk cancel rejected: {err}")

    async def _close(self, symbol: str, quantity: float) -> OrderResult:
        coin = self._coin(symbol)
        sz: Optional[float] = None
        if quantity > 0:
            sz = round(quantity, await self._decimals(coin))
        resp = await self._call(lambda: self.exchange.market_close(coin, sz=sz), "market_close")
        if resp is None:
            raise ExchangeError(f"hyperliquid: no open position for {coin}")
        err = extract_error(resp)
        if err:
            raise ExchangeError(f"hyperliquid close rejected: {err}")
        oid, status = extract_oid(resp)
        log.info(json.dumps({"event": "hl_position_closed", "symbol": symbol, "sz": sz, "oid": oid}))
        return OrderResult(order_id=oid, symbol=symbol, status=status, raw=resp)

    async def close_long(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        return await self._close(symbol, quantity)

    async def close_short(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        return await self._close(symbol, quantity)

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        coin = self._coin(symbol)
        resp = await self._call(lambda: self.exchange.update_leverage(leverage, coin, True), "update_leverage")
        err = extract_error(resp)
        if err:
            raise ExchangeError(f"hyperliquid leverage rejected: {err}")
