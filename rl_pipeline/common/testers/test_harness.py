from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import torch as th
import torch.nn as nn

from rl_pipeline.common.environments.base_env import BaseEnvironment, EnvStep
from rl_pipeline.common.loggers.base_writer import Writer
from rl_pipeline.common.networks.base_networks import ActorCriticOutput
from rl_pipeline.common.networks.distributions import CategoricalDistribution
from rl_pipeline.common.trajectories.step_kind import STEP_KIND_DTYPE, StepKind
from rl_pipeline.common.trajectories.trajectory import Trajectory


# =============================================================================
# Environments
# =============================================================================
class ScriptedEnvironment(BaseEnvironment):
    """
    Deterministic batched environment with fixed per-lane episode lengths.

    Lane ``b`` emits ``episode_lengths[b] - 1`` TRANSITION steps and then one
    LAST step, each with reward ``reward``; the step after a LAST is a FIRST
    with reward 0. Observations are ``[t, b, 0, ...]`` where ``t`` counts the
    actions taken in the current episode.

    Every action passed to `step` is kept in `actions`.
    """

    def __init__(self, episode_lengths: Sequence[int], *, obs_dim: int = 3, reward: float = 1.0) -> None:
        self.episode_lengths = np.asarray(list(episode_lengths), dtype=np.int64)
        if np.any(self.episode_lengths <= 0):
            raise ValueError("episode lengths must be positive")
        self.obs_dim = int(obs_dim)
        self.reward = float(reward)
        self.actions: List[np.ndarray] = []
        self.reset_seeds: List[Optional[int]] = []
        self.reset()

    @property
    def batch_size(self) -> int:
        return int(self.episode_lengths.shape[0])

    def _obs(self) -> np.ndarray:
        obs = np.zeros((self.batch_size, self.obs_dim), dtype=np.float32)
        obs[:, 0] = self._t
        if self.obs_dim > 1:
            obs[:, 1] = np.arange(self.batch_size)
        return obs

    def current_step(self) -> EnvStep:
        return self._current

    def reset(self, seed: Optional[int] = None) -> EnvStep:
        self.reset_seeds.append(seed)
        self._t = np.zeros((self.batch_size,), dtype=np.int64)
        self._current = EnvStep(
            kind=StepKind.full(StepKind.FIRST, self.batch_size),
            observation=self._obs(),
            reward=np.zeros((self.batch_size,), dtype=np.float32),
        )
        return self._current

    def step(self, action: Any) -> EnvStep:
        self.actions.append(np.asarray(action).copy())
        prev = self._current.kind
        kinds = np.empty((self.batch_size,), dtype=STEP_KIND_DTYPE)
        rewards = np.zeros((self.batch_size,), dtype=np.float32)
        for b in range(self.batch_size):
            if prev[b] == StepKind.LAST:
                self._t[b] = 0
                kinds[b] = StepKind.FIRST
                continue
            self._t[b] += 1
            kinds[b] = StepKind.LAST if self._t[b] >= self.episode_lengths[b] else StepKind.TRANSITION
            rewards[b] = self.reward
        self._current = EnvStep(kind=kinds, observation=self._obs(), reward=rewards)
        return self._current


# =============================================================================
# Networks
# =============================================================================
class CountingRecurrentNetwork(nn.Module):
    """
    Categorical actor-critic with a recurrent state that counts timesteps.

    The state is a ``[B, 1]`` float tensor; it is concatenated to each
    observation and incremented once per timestep, so a network fed the wrong
    initial state produces different outputs.
    """

    def __init__(self, obs_dim: int, n_actions: int = 2) -> None:
        super().__init__()
        self.obs_dim = int(obs_dim)
        self.logits = nn.Linear(self.obs_dim + 1, int(n_actions))
        self.value_head = nn.Linear(self.obs_dim + 1, 1)
        self.states_seen: List[th.Tensor] = []

    def initial_state(self, batch_size: int) -> th.Tensor:
        return th.zeros((int(batch_size), 1))

    def forward(self, observation: th.Tensor, state: Any = None) -> ActorCriticOutput:
        T, B = observation.shape[:2]
        s = self.initial_state(B) if state is None else state
        s = s.to(device=observation.device, dtype=th.float32)
        self.states_seen.append(s.detach().clone())

        feats = []
        for t in range(T):
            feats.append(th.cat([observation[t].float(), s], dim=-1))
            s = s + 1.0
        x = th.stack(feats, dim=0)
        return ActorCriticOutput(CategoricalDistribution(self.logits(x)), self.value_head(x).squeeze(-1), s)


# =============================================================================
# Records
# =============================================================================
def make_trajectory(
    T: int,
    B: int,
    *,
    obs_dim: int = 3,
    n_actions: int = 2,
    kinds: Optional[np.ndarray] = None,
    reward: float = 1.0,
    seed: int = 0,
) -> Trajectory:
    """Random time-major ``[T, B, ...]`` NumPy trajectory (all TRANSITION unless `kinds` is given)."""
    rng = np.random.default_rng(seed)
    if kinds is None:
        kinds = np.full((T, B), int(StepKind.TRANSITION), dtype=STEP_KIND_DTYPE)
    return Trajectory(
        step_kind=np.asarray(kinds, dtype=STEP_KIND_DTYPE),
        observation=rng.normal(size=(T, B, obs_dim)).astype(np.float32),
        action=rng.integers(0, n_actions, size=(T, B)).astype(np.int64),
        reward=np.full((T, B), float(reward), dtype=np.float32),
    )


def make_row(B: int, value: float, *, kind: StepKind = StepKind.TRANSITION, reward: float = 1.0) -> Trajectory:
    """Single-step ``[B, ...]`` row whose observation is ``[value, lane]``."""
    obs = np.stack([np.full((B,), value, dtype=np.float32), np.arange(B, dtype=np.float32)], axis=-1)
    return Trajectory(
        step_kind=StepKind.full(kind, B),
        observation=obs,
        action=np.zeros((B,), dtype=np.int64),
        reward=np.full((B,), reward, dtype=np.float32),
    )


# =============================================================================
# Logging
# =============================================================================
class MemoryWriter(Writer):
    """Writer keeping rows in memory."""

    def __init__(self) -> None:
        self.rows: List[Dict[str, float]] = []
        self.flushes = 0
        self.closed = False

    def write(self, row: Mapping[str, float]) -> None:
        self.rows.append(dict(row))

    def flush(self) -> None:
        self.flushes += 1

    def close(self) -> None:
        self.closed = True


class FailingWriter(Writer):
    """Writer whose every operation raises."""

    def write(self, row: Mapping[str, float]) -> None:
        raise OSError("disk full")

    def flush(self) -> None:
        raise OSError("disk full")

    def close(self) -> None:
        raise OSError("disk full")
