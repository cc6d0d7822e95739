from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence, Tuple

import gymnasium as gym
import numpy as np

from .base_env import BaseEnvironment, EnvStep
from ..trajectories.step_kind import STEP_KIND_DTYPE, StepKind
from ..utils.common_utils import _to_numpy


def _format_env_action(action: np.ndarray, action_space: gym.Space) -> Any:
    """Convert one lane's policy output to what ``env.step`` expects for ``action_space``."""
    if isinstance(action_space, gym.spaces.Discrete):
        return int(np.asarray(action).reshape(-1)[0])
    if isinstance(action_space, gym.spaces.Box):
        a = np.asarray(action, dtype=action_space.dtype).reshape(action_space.shape)
        return np.clip(a, action_space.low, action_space.high)
    raise TypeError(f"Unsupported action space: {type(action_space).__name__}")


def space_spec(observation_space: gym.Space, action_space: gym.Space) -> Tuple[int, str, int]:
    """
    Return ``(obs_dim, action_type, action_dim)`` for flat Box observations.

    ``action_type`` is ``"discrete"`` (``action_dim`` = number of actions) or
    ``"continuous"`` (``action_dim`` = flattened Box size).
    """
    if not isinstance(observation_space, gym.spaces.Box):
        raise TypeError(f"Only Box observation spaces are supported, got {type(observation_space).__name__}")
    obs_dim = int(np.prod(observation_space.shape))
    if isinstance(action_space, gym.spaces.Discrete):
        return obs_dim, "discrete", int(action_space.n)
    if isinstance(action_space, gym.spaces.Box):
        return obs_dim, "continuous", int(np.prod(action_space.shape))
    raise TypeError(f"Unsupported action space: {type(action_space).__name__}")


class GymEnvironment(BaseEnvironment):
    """
    Batch of gymnasium environments exposed through :class:`BaseEnvironment`.

    Each lane is an independent ``gym.Env``. ``terminated or truncated``
    produces a LAST step; the following ``step`` call resets that lane and
    reports FIRST with reward 0, ignoring the lane's action.

    Parameters
    ----------
    env_fns : Sequence[Callable[[], gym.Env]]
        One factory per lane.
    seed : Optional[int], default=None
        Lane ``i`` is reset with ``seed + i`` on the first reset.
    obs_dtype : numpy dtype, default=np.float32
    """

    def __init__(
        self,
        env_fns: Sequence[Callable[[], gym.Env]],
        *,
        seed: Optional[int] = None,
        obs_dtype: Any = np.float32,
    ) -> None:
        if len(env_fns) == 0:
            raise ValueError("GymEnvironment needs at least one environment factory.")
        self.envs: List[gym.Env] = [fn() for fn in env_fns]
        self.observation_space = self.envs[0].observation_space
        self.action_space = self.envs[0].action_space
        self.obs_dtype = obs_dtype
        self._needs_reset = np.zeros((len(self.envs),), dtype=bool)
        self._current: Optional[EnvStep] = None
        self.reset(seed=seed)

    @property
    def batch_size(self) -> int:
        return len(self.envs)

    def current_step(self) -> EnvStep:
        return self._current

    def reset(self, seed: Optional[int] = None) -> EnvStep:
        obs = []
        for i, env in enumerate(self.envs):
            o, _ = env.reset(seed=None if seed is None else int(seed) + i)
            obs.append(np.asarray(o, dtype=self.obs_dtype).reshape(-1))
        if seed is not None:
            self.action_space.seed(int(seed))
        self._needs_reset[:] = False
        self._current = EnvStep(
            kind=StepKind.full(StepKind.FIRST, self.batch_size),
            observation=np.stack(obs, axis=0),
            reward=np.zeros((self.batch_size,), dtype=np.float32),
        )
        return self._current

    def step(self, action: Any) -> EnvStep:
        actions = _to_numpy(action)
        if actions.shape[0] != self.batch_size:
            raise ValueError(f"Expected {self.batch_size} actions, got shape {actions.shape}")

        kinds = np.empty((self.batch_size,), dtype=STEP_KIND_DTYPE)
        rewards = np.zeros((self.batch_size,), dtype=np.float32)
        obs = []
        for i, env in enumerate(self.envs):
            if self._needs_reset[i]:
                o, _ = env.reset()
                kinds[i] = StepKind.FIRST
                self._needs_reset[i] = False
            else:
                o, r, terminated, truncated, _ = env.step(_format_env_action(actions[i], self.action_space))
                done = bool(terminated or truncated)
                kinds[i] = StepKind.LAST if done else StepKind.TRANSITION
                rewards[i] = float(r)
                self._needs_reset[i] = done
            obs.append(np.asarray(o, dtype=self.obs_dtype).reshape(-1))

        self._current = EnvStep(kind=kinds, observation=np.stack(obs, axis=0), reward=rewards)
        return self._current

    def close(self) -> None:
        for env in self.envs:
            env.close()


def make_gym_environment(env_id: str, num_envs: int = 1, *, seed: Optional[int] = None, **make_kwargs: Any) -> GymEnvironment:
    """``gym.make(env_id, **make_kwargs)`` for every lane, wrapped in :class:`GymEnvironment`."""
    if int(num_envs) <= 0:
        raise ValueError(f"num_envs must be positive, got {num_envs}")
    return GymEnvironment([lambda: gym.make(env_id, **make_kwargs) for _ in range(int(num_envs))], seed=seed)
