"""
Error taxonomy for the grid engine.

Propagation policy:
- ConfigError aborts the current cycle and is surfaced to the caller.
- ExchangeError / ExchangeTimeout are logged; the cycle continues with
  degraded data where possible.
- RiskViolation rejects a single order; the batch continues.
- ReconciliationAmbiguity is never raised by the engine itself. Inferred
  fills are recorded as instances of it so callers can audit them.

Nothing here is fatal to the process: the expectation is "log and retry
next cycle".
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class GridError(Exception):
    """Base class for all grid engine errors."""


class ConfigError(GridError):
    """Invalid or missing grid configuration."""


class ExchangeError(GridError):
    """Non-2xx response, transport failure or error payload from a trading backend."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExchangeTimeout(ExchangeError):
    """Exchange call exceeded its deadline."""


class RiskViolation(GridError):
    """Hard rejection by the risk limiter. The order is not placed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = details or {}


class ReconciliationAmbiguity(GridError):
    """An order vanished from the book and was assumed filled.

    The engine cannot tell a fill from an out-of-band cancel by polling open
    orders alone.
    """

    def __init__(self, level_index: int, order_id: str, price: float) -> None:
        super().__init__(
            f"order {order_id} at level {level_index} no longer open, assumed filled at {price}"
        )
        self.level_index = level_index
        self.order_id = order_id
        self.price = price


class InvalidTransition(GridError):
    """A level state change that the state machine does not allow."""


class DecisionServiceError(GridError):
    """The decision-generation service failed or returned garbage."""
