"""
gridtrader: grid trading control loop with a lock-guarded state store,
position limits, exchange reconciliation and per-level stop-loss.
"""

__version__ = "0.1.0"
