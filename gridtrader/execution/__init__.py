"""
Execution package.

DecisionExecutor applies decisions; ReconciliationService syncs the ladder
with the exchange and enforces stop-loss.
"""

from gridtrader.execution.decision_executor import (
    DecisionExecutor,
    DecisionOutcome,
    ExecutorConfig,
    make_client_id,
)
from gridtrader.execution.reconciliation_service import (
    ReconcileResult,
    ReconciliationConfig,
    ReconciliationService,
    StopLossResult,
    level_loss_pct,
)

__all__ = [
    "DecisionExecutor",
    "DecisionOutcome",
    "ExecutorConfig",
    "ReconcileResult",
    "ReconciliationConfig",
    "ReconciliationService",
    "StopLossResult",
    "level_loss_pct",
    "make_client_id",
]
