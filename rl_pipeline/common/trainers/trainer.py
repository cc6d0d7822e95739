from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import time

import torch as th

from ..environments.base_env import BaseEnvironment
from ..loggers.logger import Logger
from ..metrics.episode_metrics import AverageEpisodeLength, AverageEpisodeReward, EpisodeMetric, TotalCumulativeReward
from ..policies.on_policy_algorithm import OnPolicyAlgorithm, StepCallback
from ..utils.train_utils import _make_pbar, _set_random_seed


class Trainer:
    """
    Thin orchestrator around :meth:`OnPolicyAlgorithm.update`.

    One training iteration is one ``algo.update(env, max_steps, max_episodes)``
    call: collect with the current policy, then one core update. The trainer
    adds seeding, episode statistics, logging, a progress bar and
    checkpointing around that loop.

    Parameters
    ----------
    algo : OnPolicyAlgorithm
    env : BaseEnvironment
    logger : Logger, optional
        Receives ``train/*`` (core metrics) and ``rollout/*`` rows.
    iterations : int, default=100
    max_steps, max_episodes : int, optional
        Collection budget per iteration; at least one is required.
    seed : int, optional
        Seeds Python/NumPy/PyTorch and resets ``env`` with it.
    metrics_buffer_size : int, default=100
        Window of the episode-reward / episode-length means.
    log_every : int, default=1
        Log every N iterations.
    show_progress : bool, default=True
    step_callbacks : Sequence[callable], optional
        Extra callbacks run on every recorded trajectory row.
    """

    def __init__(
        self,
        *,
        algo: OnPolicyAlgorithm,
        env: BaseEnvironment,
        logger: Optional[Logger] = None,
        iterations: int = 100,
        max_steps: Optional[int] = None,
        max_episodes: Optional[int] = None,
        seed: Optional[int] = None,
        metrics_buffer_size: int = 100,
        log_every: int = 1,
        show_progress: bool = True,
        step_callbacks: Sequence[StepCallback] = (),
    ) -> None:
        self.algo = algo
        self.env = env
        self.logger = logger

        self.iterations = int(iterations)
        if self.iterations < 1:
            raise ValueError(f"iterations must be >= 1, got {iterations}")
        if max_steps is None and max_episodes is None:
            raise ValueError("At least one of max_steps / max_episodes must be given.")
        self.max_steps = None if max_steps is None else int(max_steps)
        self.max_episodes = None if max_episodes is None else int(max_episodes)
        self.log_every = max(1, int(log_every))
        self.show_progress = bool(show_progress)
        self.seed = seed

        self.episode_reward = AverageEpisodeReward(env.batch_size, buffer_size=metrics_buffer_size)
        self.episode_length = AverageEpisodeLength(env.batch_size, buffer_size=metrics_buffer_size)
        self.total_reward = TotalCumulativeReward(env.batch_size)
        self.episode_metrics: List[EpisodeMetric] = [self.episode_reward, self.episode_length, self.total_reward]
        self.step_callbacks: List[StepCallback] = list(self.episode_metrics) + list(step_callbacks)

        self.iteration = 0
        self.history: List[Dict[str, float]] = []

        if seed is not None:
            _set_random_seed(int(seed))
            self.env.reset(seed=int(seed))

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------
    def rollout_metrics(self) -> Dict[str, float]:
        """Episode statistics gathered so far; means are omitted until an episode completes."""
        out: Dict[str, float] = {
            "rollout/total_steps": float(self.algo.total_steps),
            "rollout/total_episodes": float(self.algo.total_episodes),
            "rollout/total_reward": self.total_reward.value(),
        }
        if self.episode_reward.episode_count > 0:
            out["rollout/episode_reward_mean"] = self.episode_reward.value()
            out["rollout/episode_length_mean"] = self.episode_length.value()
        return out

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------
    def train(self) -> Dict[str, float]:
        """
        Run ``iterations`` update calls.

        Returns
        -------
        Dict[str, float]
            Metrics of the final iteration (``train/*`` and ``rollout/*``).
        """
        pbar = _make_pbar(total=self.iterations, initial=self.iteration, disable=not self.show_progress)
        last: Dict[str, float] = {}
        try:
            while self.iteration < self.iterations:
                t0 = time.time()
                update_metrics = self.algo.update(
                    self.env,
                    max_steps=self.max_steps,
                    max_episodes=self.max_episodes,
                    step_callbacks=self.step_callbacks,
                )
                self.iteration += 1

                last = {}
                for k, v in update_metrics.items():
                    key = k if k.startswith("rollout/") else f"train/{k}"
                    last[key] = v
                last.update(self.rollout_metrics())
                last["sys/iteration_seconds"] = float(time.time() - t0)
                self.history.append(last)

                if self.logger is not None and self.iteration % self.log_every == 0:
                    self.logger.log(last, step=self.algo.total_steps, pbar=pbar if self.show_progress else None)

                postfix = {"loss": last.get("train/loss/total", 0.0)}
                if "rollout/episode_reward_mean" in last:
                    postfix["return"] = last["rollout/episode_reward_mean"]
                pbar.set_postfix(postfix, refresh=False)
                pbar.update(1)
        finally:
            pbar.close()
            if self.logger is not None:
                self.logger.flush()
        return last

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------
    def save(self, path: str) -> str:
        """
        Save algorithm state and trainer counters with ``torch.save``.

        The payload carries the network, optimizer and scheduler state and the
        adaptive KL coefficient (inside ``core``), plus ``trainer`` counters.
        Returns the written path (``.pt`` appended when missing).
        """
        if not path.endswith(".pt"):
            path += ".pt"
        payload: Dict[str, Any] = self.algo.state_dict()
        payload["trainer"] = {
            "iteration": int(self.iteration),
            "total_steps": int(self.algo.total_steps),
            "total_episodes": int(self.algo.total_episodes),
        }
        th.save(payload, path)
        return path

    def load(self, path: str) -> None:
        if not path.endswith(".pt"):
            path += ".pt"
        ckpt = th.load(path, map_location=self.algo.device, weights_only=False)
        if not isinstance(ckpt, dict) or "core" not in ckpt:
            raise ValueError(f"Unrecognized checkpoint format at: {path}")
        self.algo.load_state_dict(ckpt)
        t = ckpt.get("trainer", {})
        self.iteration = int(t.get("iteration", 0))
        self.algo.total_steps = int(t.get("total_steps", 0))
        self.algo.total_episodes = int(t.get("total_episodes", 0))
