"""
Append-only decision audit log.

One newline-delimited JSON file per trader. Each cycle appends one
DecisionRecord holding the decision batch, the per-decision outcomes and a
short human-readable execution log.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

log = logging.getLogger("gridbot")


@dataclass
class ActionRecord:
    action: str
    symbol: str
    level_index: int = -1
    quantity: float = 0.0
    price: float = 0.0
    order_id: str = ""
    timestamp: str = ""
    success: bool = False
    error: str = ""


@dataclass
class DecisionRecord:
    trader_id: str
    cycle_number: int
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    system_prompt: str = ""
    input_prompt: str = ""
    cot_trace: str = ""
    raw_response: str = ""
    request_duration_ms: int = 0
    decision_json: str = ""
    decisions: List[ActionRecord] = field(default_factory=list)
    execution_log: List[str] = field(default_factory=list)
    success: bool = True
    error_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecisionRecord":
        actions = [ActionRecord(**a) for a in data.get("decisions", [])]
        fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__ and k != "decisions"}
        return cls(decisions=actions, **fields)


class DecisionLog:
    def __init__(self, trader_id: str, state_dir: str,
                 on_write_error: Optional[Callable[[str], None]] = None) -> None:
        safe = trader_id.replace(":", "_").replace("/", "_")
        self.path = Path(state_dir) / f"decisions_{safe}.jsonl"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._on_write_error = on_write_error
        self._write_errors = 0

    @property
    def write_errors(self) -> int:
        return self._write_errors

    async def log_decision(self, record: DecisionRecord) -> bool:
        """Append one record. Write failures are reported, never raised."""
        line = json.dumps(record.to_dict(), default=str) + "\n"
        async with self._lock:
            loop = asyncio.get_running_loop()

            def _append() -> Optional[str]:
                try:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    with self.path.open("a", encoding="utf-8") as fh:
                        fh.write(line)
                    return None
                except OSError as e:
                    return str(e)

            err = await loop.run_in_executor(None, _append)

        if err:
            self._write_errors += 1
            log.error(json.dumps({"event": "decision_log_write_failed", "path": str(self.path), "err": err}))
            if self._on_write_error:
                self._on_write_error(err)
            return False
        return True

    async def read_recent(self, n: int = 10) -> List[DecisionRecord]:
        """Return the last n records, oldest first. Corrupt lines are skipped."""
        async with self._lock:
            loop = asyncio.get_running_loop()

            def _read() -> List[str]:
                if not self.path.exists():
                    return []
                with self.path.open("r", encoding="utf-8") as fh:
                    return fh.readlines()

            lines = await loop.run_in_executor(None, _read)

        out: List[DecisionRecord] = []
        for line in lines[-n:] if n > 0 else []:
            line = line.strip()
            if not line:
                continue
            try:
                out.append(DecisionRecord.from_dict(json.loads(line)))
            except (json.JSONDecodeError, TypeError) as e:
                log.warning(json.dumps({"event": "decision_log_corrupt_line", "err": str(e)}))
        return out
