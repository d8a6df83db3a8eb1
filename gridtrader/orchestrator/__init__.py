"""
Orchestrator package.

Drives one grid cycle and the periodic run loop.
"""

from gridtrader.orchestrator.grid_orchestrator import CycleResult, GridOrchestrator, OrchestratorConfig

__all__ = [
    "CycleResult",
    "GridOrchestrator",
    "OrchestratorConfig",
]
