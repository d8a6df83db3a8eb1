"""
Prometheus metrics for the grid engine.

Organized into: decisions, orders, reconciliation, risk, cycle.
"""

from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class GridMetrics:
    """Metrics for one process. Components accept None and skip recording."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        reg = self.registry

        # === Decision Metrics ===
        self.decisions_total = Counter(
            'grid_decisions_total',
            'Decisions executed',
            labelnames=['symbol', 'action', 'outcome'],
            registry=reg
        )

        # === Order Metrics ===
        self.orders_placed = Counter(
            'grid_orders_placed_total',
            'Limit orders accepted by the exchange',
            labelnames=['symbol', 'side'],
            registry=reg
        )
        self.orders_rejected = Counter(
            'grid_orders_rejected_total',
            'Orders rejected before or by the exchange',
            labelnames=['symbol', 'reason'],
            registry=reg
        )
        self.orders_capped = Counter(
            'grid_orders_capped_total',
            'Orders whose quantity was clamped to the per-level cap',
            labelnames=['symbol'],
            registry=reg
        )

        # === Reconciliation Metrics ===
        self.fills_inferred = Counter(
            'grid_fills_inferred_total',
            'Pending orders assumed filled after leaving the book',
            labelnames=['symbol'],
            registry=reg
        )
        self.stop_losses = Counter(
            'grid_stop_losses_total',
            'Levels closed by stop-loss',
            labelnames=['symbol', 'result'],
            registry=reg
        )
        self.reconcile_errors = Counter(
            'grid_reconcile_errors_total',
            'Reconciliation passes skipped on exchange errors',
            labelnames=['symbol', 'stage'],
            registry=reg
        )

        # === Risk Metrics ===
        self.exposure_usd = Gauge(
            'grid_exposure_usd',
            'Position notional plus pending grid order value (USD)',
            labelnames=['symbol'],
            registry=reg
        )
        self.max_drawdown_pct = Gauge(
            'grid_max_drawdown_pct',
            'Max drawdown from peak equity (%)',
            labelnames=['symbol'],
            registry=reg
        )
        self.daily_pnl = Gauge(
            'grid_daily_pnl',
            'Equity change since UTC day start (USD)',
            labelnames=['symbol'],
            registry=reg
        )
        self.paused = Gauge(
            'grid_paused',
            '1 when the grid is paused',
            labelnames=['symbol'],
            registry=reg
        )

        # === Cycle Metrics ===
        self.cycles_total = Counter(
            'grid_cycles_total',
            'Cycles run',
            labelnames=['symbol', 'result'],
            registry=reg
        )
        self.cycle_duration = Histogram(
            'grid_cycle_duration_seconds',
            'Wall time of one cycle',
            labelnames=['symbol'],
            buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60],
            registry=reg
        )
        self.levels = Gauge(
            'grid_levels',
            'Levels by state',
            labelnames=['symbol', 'state'],
            registry=reg
        )

    def set_level_counts(self, symbol: str, counts: Dict[str, int]) -> None:
        for state, n in counts.items():
            self.levels.labels(symbol=symbol, state=state).set(n)
