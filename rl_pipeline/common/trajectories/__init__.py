"""
trajectories
============

Data model shared by collection, storage and learning:

- :class:`StepKind` tags every timestep FIRST / TRANSITION / LAST.
- :class:`Batchable` is the explicit-schema record interface the replay
  buffer relies on (allocate / gather / scatter-update / stack).
- :class:`Trajectory` is the time-major record of interaction.
"""

from __future__ import annotations

from .step_kind import (
    STEP_KIND_DTYPE,
    StepKind,
    complete_episode_mask,
    episode_count,
    is_first,
    is_last,
    not_last,
)
from .trajectory import Batchable, Trajectory

__all__ = (
    "STEP_KIND_DTYPE",
    "StepKind",
    "complete_episode_mask",
    "episode_count",
    "is_first",
    "is_last",
    "not_last",
    "Batchable",
    "Trajectory",
)
