from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Union

import torch as th
import torch.nn as nn

from rl_pipeline.common.estimators.advantages import AdvantageFunction, AdvantageKind
from rl_pipeline.common.estimators.normalizers import Normalizer
from rl_pipeline.common.networks.base_networks import ActorCriticOutput
from rl_pipeline.common.policies.base_core import BaseCore
from rl_pipeline.common.trajectories.trajectory import Trajectory

from .config import KLPenaltyConfig, PPOConfig, ValueLossConfig

# Floor applied when shrinking the adaptive KL coefficient.
MIN_KL_BETA = 1e-16


# =============================================================================
# Loss terms
# =============================================================================
def surrogate_objective(
    ratio: th.Tensor,
    advantages: th.Tensor,
    clip_epsilon: Optional[float] = None,
) -> th.Tensor:
    """
    Elementwise PPO surrogate objective (to be maximized).

    Without clipping this is ``ratio * A``. With clipping it is the elementwise
    minimum of ``ratio * A`` and ``clip(ratio, 1 - eps, 1 + eps) * A``, so the
    objective never exceeds the unclipped one for positive advantages and
    never rewards moving the ratio out of the band for negative ones.
    """
    unclipped = ratio * advantages
    if clip_epsilon is None:
        return unclipped
    clipped = th.clamp(ratio, 1.0 - clip_epsilon, 1.0 + clip_epsilon) * advantages
    return th.min(unclipped, clipped)


def value_loss(
    values: th.Tensor,
    returns: th.Tensor,
    old_values: th.Tensor,
    config: ValueLossConfig,
) -> th.Tensor:
    """``weight * mean`` of the (optionally clipped, pessimistic) squared error."""
    err = (values - returns).pow(2)
    if config.clip_threshold is not None:
        c = config.clip_threshold
        v_clipped = old_values + th.clamp(values - old_values, -c, c)
        err = th.max(err, (v_clipped - returns).pow(2))
    return config.weight * err.mean()


def kl_penalty_loss(kl_mean: th.Tensor, kl_beta: Optional[float], config: KLPenaltyConfig) -> th.Tensor:
    """Quadratic cutoff above ``cutoff_factor * target`` plus the adaptive linear term."""
    loss = th.zeros((), dtype=kl_mean.dtype, device=kl_mean.device)
    if config.cutoff_factor is not None:
        excess = th.clamp(kl_mean - config.cutoff_factor * config.target, min=0.0)
        loss = loss + config.cutoff_coefficient * excess.pow(2)
    if kl_beta is not None:
        loss = loss + kl_beta * kl_mean
    return loss


def adapt_kl_beta(beta: float, kl_mean: float, config: KLPenaltyConfig) -> float:
    """
    One step of the adaptive KL controller.

    Returns ``max(beta / scaling, MIN_KL_BETA)`` when ``kl_mean`` is below
    ``target / tolerance_factor``, ``beta * scaling`` when it is above
    ``target * tolerance_factor`` and ``beta`` otherwise.
    """
    beta = float(beta)
    kl_mean = float(kl_mean)
    if kl_mean < config.target / config.tolerance_factor:
        return max(beta / config.beta_scaling_factor, MIN_KL_BETA)
    if kl_mean > config.target * config.tolerance_factor:
        return beta * config.beta_scaling_factor
    return beta


# =============================================================================
# Core
# =============================================================================
class PPOCore(BaseCore):
    """
    PPO update engine over whole time-major trajectories.

    Each call to :meth:`update_with_metrics` runs two phases:

    1. Once, without gradients: forward the whole trajectory, keep the last
       timestep only as the bootstrap value, estimate advantages, normalize
       them, build the value targets and cache the old log-probabilities,
       values and action distribution.
    2. ``epoch_count`` times over the same data: forward again from the
       trajectory's initial policy state and minimize
       ``policy + kl_penalty + value + entropy`` with one optimizer step
       (plus gradient clipping and a scheduler step).

    When an adaptive KL coefficient is configured, it is updated afterwards
    from the KL between the phase-1 policy and the final policy.

    Network contract
    ----------------
    ``network(observation[T, B, ...], state) -> ActorCriticOutput`` with a
    distribution of batch shape ``[T, B]`` and values ``[T, B]``.

    Parameters
    ----------
    network : nn.Module
    config : PPOConfig, optional
    advantage_function : AdvantageFunction, optional
        Defaults to GAE with ``gamma=0.99, lam=0.95``.
    device : Union[str, torch.device], optional
    **core_kwargs
        Optimizer / scheduler arguments forwarded to :class:`BaseCore`.
    """

    def __init__(
        self,
        *,
        network: nn.Module,
        config: Optional[PPOConfig] = None,
        advantage_function: Optional[AdvantageFunction] = None,
        device: Optional[Union[str, th.device]] = None,
        **core_kwargs: Any,
    ) -> None:
        super().__init__(network=network, device=device, **core_kwargs)
        self.config = config if config is not None else PPOConfig()
        self.advantage_function = advantage_function if advantage_function is not None else AdvantageFunction()

        if self.config.use_td_lambda_return and self.advantage_function.kind is not AdvantageKind.GAE:
            raise ValueError("use_td_lambda_return requires a GAE advantage function.")

        self.advantage_normalizer = Normalizer(
            self.config.advantage_normalization, epsilon=self.config.normalization_epsilon
        )

        kp = self.config.kl_penalty
        self.kl_beta: Optional[float] = None if (kp is None or kp.initial_beta is None) else float(kp.initial_beta)

    # =============================================================================
    # Helpers
    # =============================================================================
    def _initial_state(self, trajectory: Trajectory) -> Any:
        if trajectory.policy_state is not None:
            return trajectory.policy_state[0]
        return self.network.initial_state(trajectory.batch_shape[1])

    def _forward(self, trajectory: Trajectory, state: Any) -> ActorCriticOutput:
        out = self.network(trajectory.observation, state)
        if out.value is None:
            raise ValueError("PPOCore needs a network that returns value estimates.")
        return out

    # =============================================================================
    # Update
    # =============================================================================
    def update_with_metrics(self, trajectory: Trajectory) -> Dict[str, float]:
        """
        Run one PPO update call on ``trajectory`` (fields ``[T, B, ...]``).

        The final timestep only supplies the bootstrap value, so ``T >= 2``.

        Returns
        -------
        Dict[str, float]
            Last-epoch losses (``loss/policy``, ``loss/value``, ``loss/kl``,
            ``loss/entropy``, ``loss/total``) and statistics
            (``stats/approx_kl``, ``stats/clip_frac``, ``stats/kl_beta``,
            ``stats/grad_norm``, ``stats/lr``, ...).
        """
        cfg = self.config
        traj = trajectory.to_tensors(self.device)
        if len(traj.batch_shape) < 2:
            raise ValueError(f"Expected a time-major trajectory [T, B, ...], got batch shape {traj.batch_shape}")
        n = len(traj) - 1
        if n < 1:
            raise ValueError("PPO needs at least two timesteps: the last one only provides the bootstrap value.")

        state = self._initial_state(traj)
        actions = traj.action[:n]
        self.network.train()

        # ------------------------------------------------------------------
        # Phase A: targets and the fixed reference policy
        # ------------------------------------------------------------------
        with th.no_grad():
            out = self._forward(traj, state)
            values = out.value
            estimate = self.advantage_function(
                traj.step_kind[:n], traj.reward[:n], values[:n], values[n]
            )
            advantages = self.advantage_normalizer(estimate.advantages)
            returns = estimate.returns(td_lambda=cfg.use_td_lambda_return)

            old_dist = out.distribution[:n].detach()
            old_log_probs = old_dist.log_prob(actions)
            old_values = values[:n]

        # ------------------------------------------------------------------
        # Phase B: epochs over the same batch
        # ------------------------------------------------------------------
        stats: Dict[str, th.Tensor] = {}
        grad_norm = 0.0
        for _ in range(cfg.epoch_count):
            new_out = self._forward(traj, state)
            new_dist = new_out.distribution[:n]
            new_log_probs = new_dist.log_prob(actions)
            if cfg.log_prob_clip is not None:
                new_log_probs = th.clamp(new_log_probs, -cfg.log_prob_clip, cfg.log_prob_clip)

            ratio = th.exp(new_log_probs - old_log_probs)
            policy_loss = -surrogate_objective(ratio, advantages, cfg.clip_epsilon).mean()

            kl_mean = old_dist.kl_divergence(new_dist).mean()
            if cfg.kl_penalty is not None:
                kl_loss = kl_penalty_loss(kl_mean, self.kl_beta, cfg.kl_penalty)
            else:
                kl_loss = th.zeros((), device=self.device)

            v_loss = value_loss(new_out.value[:n], returns, old_values, cfg.value_loss)

            entropy = new_dist.entropy().mean()
            if cfg.entropy_weight > 0.0:
                ent_loss = -cfg.entropy_weight * entropy
            else:
                ent_loss = th.zeros((), device=self.device)

            total_loss = policy_loss + kl_loss + v_loss + ent_loss

            self.optimizer.zero_grad(set_to_none=True)
            total_loss.backward()
            grad_norm = self._clip_params(cfg.max_grad_norm)
            self.optimizer.step()
            self._step_sched()

            with th.no_grad():
                if cfg.clip_epsilon is not None:
                    clip_frac = (th.abs(ratio - 1.0) > cfg.clip_epsilon).float().mean()
                else:
                    clip_frac = th.zeros(())
            stats = {
                "loss/policy": policy_loss.detach(),
                "loss/value": v_loss.detach(),
                "loss/kl": kl_loss.detach(),
                "loss/entropy": ent_loss.detach(),
                "loss/total": total_loss.detach(),
                "stats/approx_kl": kl_mean.detach(),
                "stats/clip_frac": clip_frac,
                "stats/entropy": entropy.detach(),
            }

        # ------------------------------------------------------------------
        # Adaptive KL coefficient
        # ------------------------------------------------------------------
        if self.kl_beta is not None:
            with th.no_grad():
                final_dist = self._forward(traj, state).distribution[:n]
                final_kl = float(old_dist.kl_divergence(final_dist).mean().item())
            self.kl_beta = adapt_kl_beta(self.kl_beta, final_kl, cfg.kl_penalty)

        self._bump()

        metrics = {k: float(v.item()) for k, v in stats.items()}
        metrics.update(
            {
                "stats/kl_beta": float(self.kl_beta) if self.kl_beta is not None else 0.0,
                "stats/grad_norm": float(grad_norm),
                "stats/lr": self.lr,
                "stats/advantage_mean": float(estimate.advantages.mean().item()),
                "stats/return_mean": float(returns.mean().item()),
                "stats/value_mean": float(old_values.mean().item()),
            }
        )
        return metrics

    # =============================================================================
    # Persistence
    # =============================================================================
    def state_dict(self) -> Dict[str, Any]:
        """Base core state plus ``kl_beta`` and the advantage normalizer statistics."""
        s = super().state_dict()
        s.update(
            {
                "kl_beta": self.kl_beta,
                "advantage_normalizer": self.advantage_normalizer.state_dict(),
            }
        )
        return s

    def load_state_dict(self, state: Mapping[str, Any]) -> None:
        super().load_state_dict(state)
        if "kl_beta" in state:
            self.kl_beta = None if state["kl_beta"] is None else float(state["kl_beta"])
        if "advantage_normalizer" in state:
            self.advantage_normalizer.load_state_dict(state["advantage_normalizer"])
