from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from typing import Deque

import numpy as np

from ..trajectories.step_kind import is_first, is_last
from ..trajectories.trajectory import Trajectory
from ..utils.common_utils import _mean, _to_numpy


class EpisodeMetric(ABC):
    """
    Step callback that accumulates per-lane statistics from single-step
    :class:`Trajectory` rows, as produced by the collection loop.

    Calling the metric with a trajectory row updates it; `value()` reads the
    current aggregate and `reset()` starts over.
    """

    def __init__(self, batch_size: int) -> None:
        self.batch_size = int(batch_size)
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.reset()

    def __call__(self, trajectory: Trajectory) -> None:
        kinds = np.asarray(_to_numpy(trajectory.step_kind)).reshape(-1)
        reward = np.asarray(_to_numpy(trajectory.reward), dtype=np.float64).reshape(-1)
        if kinds.shape[0] != self.batch_size:
            raise ValueError(f"Expected {self.batch_size} lanes, got {kinds.shape[0]}")
        self.update(kinds, reward)

    @abstractmethod
    def update(self, kinds: np.ndarray, reward: np.ndarray) -> None:
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def value(self) -> float:
        raise NotImplementedError


class _WindowedEpisodeMetric(EpisodeMetric):
    """Rolling mean over the last ``buffer_size`` completed episodes."""

    def __init__(self, batch_size: int, buffer_size: int = 100) -> None:
        self.buffer_size = int(buffer_size)
        if self.buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        super().__init__(batch_size)

    def reset(self) -> None:
        self._window: Deque[float] = deque(maxlen=self.buffer_size)
        self._running = np.zeros((self.batch_size,), dtype=np.float64)

    @property
    def episode_count(self) -> int:
        """Completed episodes currently in the window."""
        return len(self._window)

    def value(self) -> float:
        """Mean over the window; ``RuntimeError`` if no episode has completed yet."""
        if not self._window:
            raise RuntimeError(f"{type(self).__name__} has no completed episodes yet.")
        return _mean(self._window)


class AverageEpisodeReward(_WindowedEpisodeMetric):
    """Mean undiscounted return of recently completed episodes."""

    def update(self, kinds: np.ndarray, reward: np.ndarray) -> None:
        last = np.asarray(is_last(kinds), dtype=bool)
        self._running += reward
        self._window.extend(self._running[last].tolist())
        self._running[last] = 0.0


class AverageEpisodeLength(_WindowedEpisodeMetric):
    """
    Mean number of actions taken in recently completed episodes.

    FIRST rows are the lane resets that follow a LAST step; no action of the
    episode produced them, so they are not counted.
    """

    def update(self, kinds: np.ndarray, reward: np.ndarray) -> None:
        last = np.asarray(is_last(kinds), dtype=bool)
        self._running += (~np.asarray(is_first(kinds), dtype=bool)).astype(np.float64)
        self._window.extend(self._running[last].tolist())
        self._running[last] = 0.0


class TotalCumulativeReward(EpisodeMetric):
    """Sum of every reward seen, over all lanes, since the last reset."""

    def reset(self) -> None:
        self._total = 0.0

    def update(self, kinds: np.ndarray, reward: np.ndarray) -> None:
        self._total += float(reward.sum())

    def value(self) -> float:
        return self._total
