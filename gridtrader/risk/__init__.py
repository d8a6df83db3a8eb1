"""
Risk package.

Per-level, absolute and aggregate position limits for grid orders.
"""

from gridtrader.risk.risk import RiskCheck, RiskLimiter, RiskLimiterConfig

__all__ = [
    "RiskCheck",
    "RiskLimiter",
    "RiskLimiterConfig",
]
