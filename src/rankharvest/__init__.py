"""
RankHarvest - polite leaderboard harvesting with change detection.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import Config
from .container import DependencyContainer
from .scheduler import SweepScheduler, SweepState

__all__ = ["__version__", "Config", "DependencyContainer", "SweepScheduler", "SweepState"]
