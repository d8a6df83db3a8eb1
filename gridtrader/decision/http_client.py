"""
Decision providers.

HttpDecisionClient posts the grid context to an external service and parses
the returned batch. StaticDecisionProvider replays a fixed batch for dry runs.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional

import httpx

from gridtrader.decision.models import Decision, FullDecision, GridContext
from gridtrader.errors import DecisionServiceError

log = logging.getLogger("gridbot")


class DecisionProvider(ABC):
    @abstractmethod
    async def get_decisions(self, context: GridContext) -> FullDecision: ...

    async def close(self) -> None:
        """Release network resources."""


class StaticDecisionProvider(DecisionProvider):
    def __init__(self, decisions: Optional[Iterable[Decision]] = None) -> None:
        self.decisions: List[Decision] = list(decisions or [])
        self.calls = 0

    async def get_decisions(self, context: GridContext) -> FullDecision:
        self.calls += 1
        return FullDecision(decisions=list(self.decisions), raw_response="static")


class HttpDecisionClient(DecisionProvider):
    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        trader_id: str = "",
        language: str = "en",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.trader_id = trader_id
        self.language = language
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def get_decisions(self, context: GridContext) -> FullDecision:
        payload = {
            "trader_id": self.trader_id,
            "language": self.language,
            "strategy": "grid_trading",
            "context": context.to_dict(),
        }
        start = time.monotonic()
        try:
            resp = await self.client.post(self.url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            raise DecisionServiceError(f"decision service unreachable: {e}") from e
        duration_ms = int((time.monotonic() - start) * 1000)
        if resp.status_code != 200:
            raise DecisionServiceError(f"decision service returned {resp.status_code}: {resp.text[:200]}")
        try:
            body: Any = resp.json()
        except ValueError as e:
            raise DecisionServiceError("decision service returned invalid JSON") from e
        if not isinstance(body, dict):
            raise DecisionServiceError(f"decision service returned {type(body).__name__}, expected an object")
        raw = body.get("decisions")
        if not isinstance(raw, list):
            raise DecisionServiceError("decision service response has no decisions list")

        decisions = [Decision.from_dict(d) for d in raw if isinstance(d, dict)]
        log.info(json.dumps({
            "event": "decisions_received",
            "symbol": context.symbol,
            "count": len(decisions),
            "duration_ms": duration_ms,
        }))
        return FullDecision(
            decisions=decisions,
            system_prompt=str(body.get("system_prompt", "")),
            user_prompt=str(body.get("user_prompt", "")),
            cot_trace=str(body.get("cot_trace", "")),
            raw_response=resp.text,
            request_duration_ms=duration_ms,
        )
