"""
State package.

GridStateStore owns the level ladder and counters; DecisionLog persists the
per-cycle audit trail.
"""

from gridtrader.state.decision_log import ActionRecord, DecisionLog, DecisionRecord
from gridtrader.state.grid_state import (
    GridLevel,
    GridSnapshot,
    GridState,
    GridStateStore,
    GridStateStoreConfig,
    InferredFill,
    LevelState,
)

__all__ = [
    "ActionRecord",
    "DecisionLog",
    "DecisionRecord",
    "GridLevel",
    "GridSnapshot",
    "GridState",
    "GridStateStore",
    "GridStateStoreConfig",
    "InferredFill",
    "LevelState",
]
