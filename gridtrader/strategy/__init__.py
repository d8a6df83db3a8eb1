"""
Strategy package.

Pure grid geometry: bounds, spacing, weights and the level ladder.
"""

from gridtrader.strategy.grid_calculator import GridCalculator, GridGeometry

__all__ = [
    "GridCalculator",
    "GridGeometry",
]
