"""
Monitoring package.

Prometheus metrics for decisions, orders, reconciliation and risk.
"""

from gridtrader.monitoring.metrics_rich import GridMetrics

__all__ = [
    "GridMetrics",
]
