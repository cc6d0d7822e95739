from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Optional

import numpy as np


class EnvStep(NamedTuple):
    """
    One batched environment step.

    kind        : StepKind codes, shape ``(B,)``
    observation : shape ``(B, *obs_shape)``
    reward      : reward received on arriving at this step, shape ``(B,)``
    """

    kind: np.ndarray
    observation: np.ndarray
    reward: np.ndarray


class BaseEnvironment(ABC):
    """
    Batched environment interface driven by the collection loop.

    Contract
    --------
    - `current_step()` returns the latest :class:`EnvStep` without advancing.
    - `step(action)` advances every lane and returns the new step. A lane whose
      current step is LAST resets instead of acting, and reports FIRST with
      reward 0.
    - `reset(seed)` restarts every lane; all kinds are FIRST.
    """

    @property
    @abstractmethod
    def batch_size(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def current_step(self) -> EnvStep:
        raise NotImplementedError

    @abstractmethod
    def step(self, action: Any) -> EnvStep:
        raise NotImplementedError

    @abstractmethod
    def reset(self, seed: Optional[int] = None) -> EnvStep:
        raise NotImplementedError

    def close(self) -> None:
        return
