"""
Utility helpers.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Optional, TypeVar

from gridtrader.errors import ExchangeTimeout

T = TypeVar("T")


def now_ms() -> int:
    return int(time.time() * 1000)


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse exchange numbers that may arrive as str, int, float or None."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def hl_round_price(px: float, sz_decimals: int, is_perp: bool = True) -> float:
    """
    Hyperliquid price rounding per docs:
    - Perps: up to 5 significant figures, and at most (6 - szDecimals) decimals.
    - Spot:   up to 5 significant figures, and at most (8 - szDecimals) decimals.
    - If px > 100_000, round to int.
    """
    if px > 100_000:
        return round(px)
    max_decimals = (6 - sz_decimals) if is_perp else (8 - sz_decimals)
    max_decimals = max(0, max_decimals)
    sig_5 = float(f"{px:.5g}")
    return round(sig_5, max_decimals)


async def call_with_timeout(aw: Awaitable[T], timeout: float, label: str, symbol: Optional[str] = None) -> T:
    """Await an exchange call with a hard deadline.

    asyncio timeouts surface as ExchangeTimeout so the engine treats them like
    any other exchange failure.
    """
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except asyncio.TimeoutError as exc:
        where = f" for {symbol}" if symbol else ""
        raise ExchangeTimeout(f"{label}{where} timed out after {timeout:.1f}s") from exc
