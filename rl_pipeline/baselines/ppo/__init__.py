"""
PPO
===

Proximal Policy Optimization over whole time-major trajectories.

Public API
----------
ppo : callable
    Builder for a complete on-policy stack: actor-critic network +
    :class:`PPOCore` + :class:`~rl_pipeline.common.policies.OnPolicyAlgorithm`.
PPOCore : BaseCore
    Multi-epoch update engine (clipped surrogate, KL penalty with adaptive
    coefficient, optionally clipped value loss, entropy bonus).
PPOConfig, KLPenaltyConfig, ValueLossConfig : frozen dataclasses
    Static hyperparameters, validated at construction.
adapt_kl_beta : callable
    One step of the adaptive KL controller.

Examples
--------
Build an algorithm instance::

    from rl_pipeline.baselines.ppo import ppo
    algo = ppo(obs_dim=4, action_dim=2, action_type="discrete")
"""

from __future__ import annotations

from .config import KLPenaltyConfig, PPOConfig, ValueLossConfig
from .core import PPOCore, adapt_kl_beta, kl_penalty_loss, surrogate_objective, value_loss
from .ppo import ppo

__all__ = [
    "ppo",
    "PPOCore",
    "PPOConfig",
    "KLPenaltyConfig",
    "ValueLossConfig",
    "adapt_kl_beta",
    "kl_penalty_loss",
    "surrogate_objective",
    "value_loss",
]
