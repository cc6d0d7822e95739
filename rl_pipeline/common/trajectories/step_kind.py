from __future__ import annotations

from enum import IntEnum
from typing import Any, Union

import numpy as np
import torch as th

ArrayLike = Union[np.ndarray, th.Tensor]

# Storage dtype for batched step kinds.
STEP_KIND_DTYPE = np.int64


class StepKind(IntEnum):
    """
    Position of a timestep inside its episode.

    A LAST step is always followed by a FIRST step in the same batch lane.
    Rewards and values that straddle a LAST must never be used as bootstrap
    targets, which is what the ``not_last`` masks below are for.
    """

    FIRST = 0
    TRANSITION = 1
    LAST = 2

    @classmethod
    def full(cls, kind: "StepKind", batch_size: int) -> np.ndarray:
        """Batched array of ``batch_size`` copies of ``kind``."""
        return np.full((int(batch_size),), int(kind), dtype=STEP_KIND_DTYPE)


def is_first(kinds: ArrayLike) -> ArrayLike:
    return kinds == int(StepKind.FIRST)


def is_last(kinds: ArrayLike) -> ArrayLike:
    return kinds == int(StepKind.LAST)


def not_last(kinds: ArrayLike, dtype: Any = None) -> ArrayLike:
    """Float mask that is 0 exactly where ``kinds`` marks an episode end."""
    if th.is_tensor(kinds):
        return (kinds != int(StepKind.LAST)).to(dtype or th.float32)
    return (np.asarray(kinds) != int(StepKind.LAST)).astype(dtype or np.float32)


def episode_count(kinds: ArrayLike) -> int:
    """Number of LAST steps, i.e. completed episodes, in a batch of step kinds."""
    last = is_last(kinds)
    if th.is_tensor(last):
        return int(last.sum().item())
    return int(np.sum(last))


def complete_episode_mask(kinds: ArrayLike) -> ArrayLike:
    """
    Time-major mask of steps that belong to an episode ending inside the window.

    For ``kinds`` of shape ``[T, B, ...]``, ``mask[t, b]`` is True iff some
    ``t' >= t`` has ``kinds[t', b] == LAST``. Trailing steps of an episode that
    is still running at the end of the window are excluded.
    """
    if th.is_tensor(kinds):
        last = is_last(kinds).to(th.int64)
        return th.flip(th.cumsum(th.flip(last, dims=[0]), dim=0), dims=[0]) > 0
    last = np.asarray(is_last(kinds), dtype=np.int64)
    return np.flip(np.cumsum(np.flip(last, axis=0), axis=0), axis=0) > 0
