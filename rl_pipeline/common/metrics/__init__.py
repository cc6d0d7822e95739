"""
metrics
=======

Episode statistics computed from trajectory rows during collection.
"""

from __future__ import annotations

from .episode_metrics import AverageEpisodeLength, AverageEpisodeReward, EpisodeMetric, TotalCumulativeReward

__all__ = (
    "AverageEpisodeLength",
    "AverageEpisodeReward",
    "EpisodeMetric",
    "TotalCumulativeReward",
)
