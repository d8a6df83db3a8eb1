"""
Binance USD-M futures backend.

Signed REST over httpx with HMAC-SHA256. Native GridTrader: post-only maps
to timeInForce=GTX and the grid client id is sent as newClientOrderId.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from gridtrader.core.utils import now_ms, to_float
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

LIVE_URL = "https://fapi.binance.com"
TESTNET_URL = "https://testnet.binancefuture.com"


class BinanceAuth:
    """HMAC-SHA256 request signing."""

    def __init__(self, api_key: str, api_secret: str, recv_window: int = 5000) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.recv_window = recv_window

    def sign_params(self, params: Optional[Dict[str, Any]] = None) -> List[Tuple[str, Any]]:
        """
        Add timestamp/recvWindow, sort, sign. Returns ordered pairs so the
        query string sent is byte-identical to the one signed.
        """
        params = dict(params or {})
        params["timestamp"] = now_ms()
        params.setdefault("recvWindow", self.recv_window)
        pairs = sorted(params.items())
        signature = self.sign_query_string(urlencode(pairs))
        pairs.append(("signature", signature))
        return pairs

    def sign_query_string(self, query_string: str) -> str:
        return hmac.new(
            self.api_secret.encode("utf-8"),
            query_string.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def get_headers(self) -> Dict[str, str]:
        return {"X-MBX-APIKEY": self.api_key}


def _quantize(value: float, step: float) -> str:
    if step <= 0:
        return f"{value:.8f}".rstrip("0").rstrip(".")
    q = Decimal(str(step))
    return format(Decimal(str(value)).quantize(q, rounding=ROUND_DOWN).normalize(), "f")


class BinanceFuturesTrader(GridTrader):
    name = "binance"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = False,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = (base_url or (TESTNET_URL if testnet else LIVE_URL)).rstrip("/")
        self.auth = BinanceAuth(api_key, api_secret)
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True
        # symbol -> (tick_size, step_size)
        self._filters: Dict[str, Tuple[float, float]] = {}

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                       signed: bool = False) -> Any:
        url = f"{self.base_url}{path}"
        headers = self.auth.get_headers() if signed else {}
        query = self.auth.sign_params(params) if signed else list((params or {}).items())
        try:
            resp = await self.client.request(method, url, params=query, headers=headers)
        except httpx.HTTPError as e:
            raise ExchangeError(f"binance {method} {path} failed: {e}") from e
        try:
            data = resp.json() if resp.content else None
        except ValueError:
            data = None
        if resp.status_code >= 400:
            msg = data.get("msg") if isinstance(data, dict) else resp.text
            raise ExchangeError(f"binance API error (status {resp.status_code}): {msg}", resp.status_code)
        return data

    async def _symbol_filters(self, symbol: str) -> Tuple[float, float]:
        if symbol in self._filters:
            return self._filters[symbol]
        info = await self._request("GET", "/fapi/v1/exchangeInfo")
        for s in (info or {}).get("symbols", []):
            tick, step = 0.0, 0.0
            for f in s.get("filters", []):
                if f.get("filterType") == "PRICE_FILTER":
                    tick = to_float(f.get("tickSize"))
                elif f.get("filterType") == "LOT_SIZE":
                    step = to_float(f.get("stepSize"))
            self._filters[s.get("symbol", "")] = (tick, step)
        return self._filters.get(symbol, (0.0, 0.0))

    async def get_market_price(self, symbol: str) -> float:
        data = await self._request("GET", "/fapi/v1/ticker/price", {"symbol": symbol})
        price = to_float((data or {}).get("price"))
        if price <= 0:
            raise ExchangeError(f"binance: price not found for {symbol}")
        return price

    async def get_balance(self) -> Balance:
        acct = await self._request("GET", "/fapi/v2/account", signed=True) or {}
        return Balance(
            equity=to_float(acct.get("totalMarginBalance")),
            cash=to_float(acct.get("totalWalletBalance")),
            buying_power=to_float(acct.get("availableBalance")),
            available=to_float(acct.get("availableBalance")),
            unrealized_pnl=to_float(acct.get("totalUnrealizedProfit")),
        )

    async def get_positions(self) -> List[Position]:
        rows = await self._request("GET", "/fapi/v2/positionRisk", signed=True) or []
        out: List[Position] = []
        for row in rows:
            qty = to_float(row.get("positionAmt"))
            if qty == 0:
                continue
            mark = to_float(row.get("markPrice"))
            out.append(Position(
                symbol=str(row.get("symbol", "")),
                quantity=qty,
                entry_price=to_float(row.get("entryPrice")),
                mark_price=mark,
                unrealized_pnl=to_float(row.get("unRealizedProfit")),
                market_value=abs(qty) * mark,
                leverage=to_float(row.get("leverage")),
            ))
        return out

    async def get_open_orders(self, symbol: str) -> List[OpenOrder]:
        rows = await self._request("GET", "/fapi/v1/openOrders", {"symbol": symbol}, signed=True) or []
        return [
            OpenOrder(
                order_id=str(row.get("orderId", "")),
                symbol=str(row.get("symbol", symbol)),
                side=str(row.get("side", "")).lower(),
                quantity=to_float(row.get("origQty")),
                price=to_float(row.get("price")),
                status=str(row.get("status", "")).lower(),
                type=str(row.get("type", "")).lower(),
                client_id=str(row.get("clientOrderId", "")),
            )
            for row in rows
        ]

    async def place_limit_order(self, req: LimitOrderRequest) -> OrderResult:
        tick, step = await self._symbol_filters(req.symbol)
        params: Dict[str, Any] = {
            "symbol": req.symbol,
            "side": req.side.upper(),
            "type": "LIMIT",
            "timeInForce": "GTX" if req.post_only else "GTC",
            "quantity": _quantize(req.quantity, step),
            "price": _quantize(req.price, tick),
        }
        if req.reduce_only:
            params["reduceOnly"] = "true"
        if req.client_id:
            params["newClientOrderId"] = req.client_id
        data = await self._request("POST", "/fapi/v1/order", params, signed=True)
        return self._order_result(data, req.symbol)

    async def place_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        order_type: str = "market",
        price: Optional[float] = None,
    ) -> OrderResult:
        if order_type == "limit":
            return await self.place_limit_order(LimitOrderRequest(symbol=symbol, side=side, price=price or 0.0,
                                                                  quantity=quantity))
        _, step = await self._symbol_filters(symbol)
        params = {
            "symbol": symbol,
            "side": side.upper(),
            "type": "MARKET",
            "quantity": _quantize(quantity, step),
        }
        data = await self._request("POST", "/fapi/v1/order", params, signed=True)
        return self._order_result(data, symbol)

    def _order_result(self, data: Any, symbol: str) -> OrderResult:
        data = data or {}
        return OrderResult(
            order_id=str(data.get("orderId", "")),
            symbol=str(data.get("symbol", symbol)),
            client_id=str(data.get("clientOrderId", "")),
            status=str(data.get("status", "")).lower(),
            raw=data,
        )

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        await self._request("DELETE", "/fapi/v1/order", {"symbol": symbol, "orderId": order_id}, signed=True)

    async def cancel_all_orders(self, symbol: str) -> None:
        await self._request("DELETE", "/fapi/v1/allOpenOrders", {"symbol": symbol}, signed=True)

    async def _close(self, symbol: str, side: str, quantity: float, want_long: bool) -> OrderResult:
        if quantity <= 0:
            for pos in await self.get_positions():
                if pos.symbol == symbol and (pos.quantity > 0) == want_long:
                    quantity = abs(pos.quantity)
            if quantity <= 0:
                raise ExchangeError(f"binance: no {'long' if want_long else 'short'} position for {symbol}")
        _, step = await self._symbol_filters(symbol)
        params = {
            "symbol": symbol,
            "side": side,
            "type": "MARKET",
            "quantity": _quantize(quantity, step),
            "reduceOnly": "true",
        }
        data = await self._request("POST", "/fapi/v1/order", params, signed=True)
        log.info(json.dumps({"event": "binance_position_closed", "symbol": symbol, "side": side,
                             "quantity": params["quantity"]}))
        return self._order_result(data, symbol)

    async def close_long(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        return await self._close(symbol, "SELL", quantity, want_long=True)

    async def close_short(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        return await self._close(symbol, "BUY", quantity, want_long=False)

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        await self._request("POST", "/fapi/v1/leverage", {"symbol": symbol, "leverage": leverage}, signed=True)
