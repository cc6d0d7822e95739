from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import math

import numpy as np
import torch as th

from .base_core import BaseCore
from .base_policy import BaseAlgorithm
from ..buffers.replay_buffer import UniformReplayBuffer
from ..environments.base_env import BaseEnvironment, EnvStep
from ..trajectories.step_kind import complete_episode_mask, episode_count
from ..trajectories.trajectory import Trajectory
from ..utils.common_utils import _to_numpy, _to_tensor

StepCallback = Callable[[Trajectory], None]


def _check_budget(max_steps: Optional[int], max_episodes: Optional[int]) -> Tuple[float, float]:
    if max_steps is None and max_episodes is None:
        raise ValueError("At least one of max_steps / max_episodes must be given.")
    for name, v in (("max_steps", max_steps), ("max_episodes", max_episodes)):
        if v is not None and int(v) <= 0:
            raise ValueError(f"{name} must be positive, got {v}")
    return (
        math.inf if max_steps is None else int(max_steps),
        math.inf if max_episodes is None else int(max_episodes),
    )


class OnPolicyAlgorithm(BaseAlgorithm):
    """
    On-policy driver: collect with the current policy, then update once.

    One call to :meth:`update` runs the collection loop until the step or
    episode budget is exhausted, drains the replay buffer into a single
    ``core.update_with_metrics`` call and resets the buffer, so every update
    only ever sees data from the policy that is being updated.

    Each environment step records a single-step :class:`Trajectory` row::

        Trajectory(step_kind=next.kind, observation=current.observation,
                   action=action, reward=next.reward, policy_state=state)

    i.e. the kind and reward describe the transition the action caused.

    Parameters
    ----------
    core : BaseCore
        Update engine (e.g. ``PPOCore``).
    max_replayed_sequence_length : int, default=1000
        Rows kept per lane. Collection beyond this length overwrites the
        oldest rows, so the update sees the most recent window only.
    device : Union[str, torch.device], optional
    seed : int, optional
        Seed of the replay buffer sampling RNG.
    """

    def __init__(
        self,
        *,
        core: BaseCore,
        max_replayed_sequence_length: int = 1000,
        device: Optional[Union[str, th.device]] = None,
        seed: Optional[int] = None,
    ) -> None:
        super().__init__(core=core, device=device)
        self.max_replayed_sequence_length = int(max_replayed_sequence_length)
        if self.max_replayed_sequence_length <= 1:
            raise ValueError(
                f"max_replayed_sequence_length must be >= 2, got {max_replayed_sequence_length}"
            )
        self.seed = seed

        self.buffer: Optional[UniformReplayBuffer] = None
        self._policy_state: Any = None
        self._state_initialized = False

        self.total_steps = 0
        self.total_episodes = 0

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def _ensure_buffer(self, env: BaseEnvironment) -> UniformReplayBuffer:
        if self.buffer is None:
            self.buffer = UniformReplayBuffer(
                env.batch_size,
                self.max_replayed_sequence_length,
                device=self.device,
                seed=self.seed,
            )
        elif self.buffer.batch_size != env.batch_size:
            raise ValueError(
                f"Environment batch size changed from {self.buffer.batch_size} to {env.batch_size}."
            )
        return self.buffer

    def _ensure_policy_state(self, batch_size: int) -> None:
        if not self._state_initialized:
            self._policy_state = self.network.initial_state(batch_size)
            self._state_initialized = True

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------
    @th.no_grad()
    def _sample_action(self, current: EnvStep) -> Tuple[th.Tensor, Any]:
        obs = _to_tensor(current.observation, device=self.device)
        out = self.network(obs[None], self._policy_state)
        return out.distribution[0].sample(), out.state

    def collect(
        self,
        env: BaseEnvironment,
        max_steps: Optional[int] = None,
        max_episodes: Optional[int] = None,
        step_callbacks: Sequence[StepCallback] = (),
    ) -> Tuple[int, int]:
        """
        Step ``env`` with stochastic actions and record every step.

        Runs while ``num_steps < max_steps and num_episodes < max_episodes``,
        where steps count non-LAST lane transitions and episodes count LAST
        ones. ``None`` means unbounded; at least one bound is required.

        Returns
        -------
        (num_steps, num_episodes)
        """
        step_limit, episode_limit = _check_budget(max_steps, max_episodes)
        buffer = self._ensure_buffer(env)
        self._ensure_policy_state(env.batch_size)
        self.network.eval()

        current = env.current_step()
        num_steps = 0
        num_episodes = 0
        while num_steps < step_limit and num_episodes < episode_limit:
            state = self._policy_state
            action, next_state = self._sample_action(current)
            nxt = env.step(_to_numpy(action))

            row = Trajectory(
                step_kind=np.asarray(nxt.kind),
                observation=np.asarray(current.observation),
                action=_to_numpy(action),
                reward=np.asarray(nxt.reward, dtype=np.float32),
                policy_state=None if state is None else _to_numpy(state),
            )
            buffer.record(row)
            for cb in step_callbacks:
                cb(row)

            ended = episode_count(row.step_kind)
            num_episodes += ended
            num_steps += env.batch_size - ended

            self._policy_state = next_state
            current = nxt

        self.total_steps += num_steps
        self.total_episodes += num_episodes
        return num_steps, num_episodes

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------
    def update(
        self,
        env: BaseEnvironment,
        max_steps: Optional[int] = None,
        max_episodes: Optional[int] = None,
        step_callbacks: Sequence[StepCallback] = (),
    ) -> Dict[str, float]:
        """
        Collect one batch with the current policy and run one core update on it.

        Returns
        -------
        Dict[str, float]
            Core metrics (``loss/total``, ...) plus ``rollout/steps`` and
            ``rollout/episodes`` for this call, and
            ``rollout/complete_episode_fraction``: the share of updated rows that
            belong to an episode which ended inside the batch.
        """
        num_steps, num_episodes = self.collect(
            env, max_steps=max_steps, max_episodes=max_episodes, step_callbacks=step_callbacks
        )

        batch = self.buffer.recorded_data()
        try:
            metrics = self._filter_scalar_metrics(self.core.update_with_metrics(batch), drop_non_finite=False)
        finally:
            self.buffer.reset()

        metrics["rollout/steps"] = float(num_steps)
        metrics["rollout/episodes"] = float(num_episodes)
        metrics["rollout/sequence_length"] = float(len(batch))
        complete = complete_episode_mask(batch.step_kind)
        metrics["rollout/complete_episode_fraction"] = float(complete.float().mean().item())
        return metrics

    def reset(self) -> None:
        """Drop buffered data and the recurrent policy state."""
        if self.buffer is not None:
            self.buffer.reset()
        self._policy_state = None
        self._state_initialized = False
