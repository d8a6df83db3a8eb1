"""
Configuration package.

Environment-driven settings and the immutable per-instance grid configuration.
"""

from gridtrader.config.config import DISTRIBUTIONS, EXCHANGES, GridConfig, Settings, env_bool

__all__ = [
    "DISTRIBUTIONS",
    "EXCHANGES",
    "GridConfig",
    "Settings",
    "env_bool",
]
