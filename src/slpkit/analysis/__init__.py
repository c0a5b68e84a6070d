"""
slpkit Analysis - Statistics derived from reconciled frames.

This module contains:
- statistics: Single-pass statistics pipeline
- techniques: Per-player technique state machines
- interactions: Opening, neutral win, counter hit and trade classification
"""

from slpkit.analysis.statistics import StatisticsPipeline, compute_statistics

__all__: list[str] = [
    "StatisticsPipeline",
    "compute_statistics",
]
