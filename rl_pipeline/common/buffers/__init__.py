"""
buffers
=======

Public exports for the ``buffers`` subpackage.

>>> from rl_pipeline.common.buffers import UniformReplayBuffer

:class:`UniformReplayBuffer` is a batch-parallel ring buffer over any
:class:`~rl_pipeline.common.trajectories.Batchable` record type.
"""

from __future__ import annotations

from .base_buffer import BaseReplayBuffer
from .replay_buffer import ReplayBufferBatch, UniformReplayBuffer

__all__ = (
    "BaseReplayBuffer",
    "ReplayBufferBatch",
    "UniformReplayBuffer",
)
