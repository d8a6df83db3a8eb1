"""
Core utilities package.

Reader/writer lock for the grid state plus small shared helpers.
"""

from gridtrader.core.rwlock import RWLock
from gridtrader.core.utils import call_with_timeout, hl_round_price, now_ms, to_float

__all__ = [
    "RWLock",
    "call_with_timeout",
    "hl_round_price",
    "now_ms",
    "to_float",
]
