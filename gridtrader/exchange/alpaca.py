"""
Alpaca REST backend (crypto via the trading API).

Plain Trader: Alpaca has no post-only flag and no leverage control, so the
grid engine reaches it through GridTraderAdapter.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

import httpx

from gridtrader.core.utils import to_float
from gridtrader.errors import ExchangeError
from gridtrader.exchange.base import Balance, OpenOrder, OrderResult, Position, Trader

log = logging.getLogger("gridbot")

PAPER_URL = "https://paper-api.alpaca.markets/v2"
LIVE_URL = "https://api.alpaca.markets/v2"

CRYPTO_BASES = {"BTC", "ETH", "SOL", "XRP", "BNB", "ADA", "DOGE", "AVAX", "LTC", "LINK", "DOT"}


def to_alpaca_symbol(symbol: str) -> str:
    """BTCUSDT -> BTC/USD. Already-slashed and non-crypto symbols pass through."""
    symbol = symbol.upper()
    if "/" in symbol:
        return symbol
    for quote in ("USDT", "USDC", "USD"):
        if symbol.endswith(quote):
            base = symbol[: -len(quote)]
            if base in CRYPTO_BASES:
                return f"{base}/USD"
    return symbol


def from_alpaca_symbol(symbol: str) -> str:
    """BTC/USD or BTCUSD -> BTCUSDT, so positions match the grid's configured symbol."""
    compact = symbol.upper().replace("/", "")
    if compact.endswith("USD") and compact[:-3] in CRYPTO_BASES:
        return compact[:-3] + "USDT"
    return symbol.upper()


class AlpacaTrader(Trader):
    name = "alpaca"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        paper: bool = True,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = (base_url or (PAPER_URL if paper else LIVE_URL)).rstrip("/")
        headers = {
            "APCA-API-KEY-ID": api_key,
            "APCA-API-SECRET-KEY": api_secret,
            "Content-Type": "application/json",
        }
        if client is not None:
            self.client = client
            self.client.headers.update(headers)
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout, headers=headers)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ExchangeError(f"alpaca {method} {path} failed: {e}") from e
        if resp.status_code not in (200, 201, 204, 207):
            raise ExchangeError(f"alpaca API error (status {resp.status_code}): {resp.text}", resp.status_code)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise ExchangeError(f"alpaca {path}: unparseable response") from e

    async def get_balance(self) -> Balance:
        acct = await self._request("GET", "account")
        return Balance(
            equity=to_float(acct.get("equity")),
            cash=to_float(acct.get("cash")),
            buying_power=to_float(acct.get("buying_power")),
            available=to_float(acct.get("cash")),
        )

    async def get_positions(self) -> List[Position]:
        rows = await self._request("GET", "positions") or []
        out: List[Position] = []
        for row in rows:
            qty = to_float(row.get("qty"))
            if str(row.get("side", "long")).lower() == "short" and qty > 0:
                qty = -qty
            out.append(Position(
                symbol=from_alpaca_symbol(str(row.get("symbol", ""))),
                quantity=qty,
                entry_price=to_float(row.get("avg_entry_price")),
                mark_price=to_float(row.get("current_price")),
                unrealized_pnl=to_float(row.get("unrealized_pl")),
                market_value=to_float(row.get("market_value")),
            ))
        return out

    async def get_market_price(self, symbol: str) -> float:
        data = await self._request("GET", f"crypto/{to_alpaca_symbol(symbol)}/latest")
        trade = (data or {}).get("latest_trade") or {}
        price = to_float(trade.get("p"))
        if price <= 0:
            raise ExchangeError(f"alpaca: price not found for {symbol}")
        return price

    async def get_open_orders(self, symbol: str) -> List[OpenOrder]:
        rows = await self._request(
            "GET", "orders", params={"status": "open", "symbols": to_alpaca_symbol(symbol)}
        ) or []
        out: List[OpenOrder] = []
        for row in rows:
            qty = to_float(row.get("qty"))
            filled = to_float(row.get("filled_qty"))
            status = str(row.get("status", "open"))
            if 0 < filled < qty:
                status = "partially_filled"
            out.append(OpenOrder(
                order_id=str(row.get("id", "")),
                symbol=str(row.get("symbol", "")),
                side=str(row.get("side", "")),
                quantity=qty,
                price=to_float(row.get("limit_price")),
                status=status,
                type=str(row.get("type", "")),
                client_id=str(row.get("client_order_id") or ""),
            ))
        return out

    async def place_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        order_type: str = "market",
        price: Optional[float] = None,
    ) -> OrderResult:
        body = {
            "symbol": to_alpaca_symbol(symbol),
            "qty": f"{quantity:.8f}",
            "side": side,
            "type": order_type,
            "time_in_force": "gtc",
        }
        if order_type == "limit" and price and price > 0:
            body["limit_price"] = f"{price:.2f}"
        data = await self._request("POST", "orders", json=body)
        log.info(json.dumps({
            "event": "alpaca_order_submitted",
            "symbol": body["symbol"],
            "side": side,
            "type": order_type,
            "qty": body["qty"],
            "order_id": data.get("id"),
        }))
        return OrderResult(
            order_id=str(data.get("id", "")),
            symbol=str(data.get("symbol", body["symbol"])),
            client_id=str(data.get("client_order_id") or ""),
            status=str(data.get("status", "")),
            raw=data,
        )

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        await self._request("DELETE", f"orders/{order_id}")

    async def cancel_all_orders(self, symbol: str) -> None:
        await self._request("DELETE", "orders", params={"symbols": to_alpaca_symbol(symbol)})

    async def close_long(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        if quantity <= 0:
            return await self._close_position(symbol)
        return await self.place_order(symbol, "sell", quantity, "market")

    async def close_short(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        if quantity <= 0:
            return await self._close_position(symbol)
        return await self.place_order(symbol, "buy", quantity, "market")

    async def _close_position(self, symbol: str) -> OrderResult:
        alpaca_sym = to_alpaca_symbol(symbol).replace("/", "")
        data = await self._request("DELETE", f"positions/{alpaca_sym}") or {}
        return OrderResult(
            order_id=str(data.get("id", "")),
            symbol=alpaca_sym,
            status=str(data.get("status", "")),
            raw=data,
        )

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        raise ExchangeError("alpaca does not support leverage setting")
