"""
networks
========

Action distributions and the actor-critic network interface used by the
collection loop and PPO, plus small MLP defaults.
"""

from __future__ import annotations

from .actor_critic import CategoricalActorCriticNetwork, GaussianActorCriticNetwork
from .base_networks import ActorCriticOutput, BaseActorCriticNetwork, MLPFeaturesExtractor
from .distributions import BaseDistribution, CategoricalDistribution, DiagGaussianDistribution

__all__ = (
    "CategoricalActorCriticNetwork",
    "GaussianActorCriticNetwork",
    "ActorCriticOutput",
    "BaseActorCriticNetwork",
    "MLPFeaturesExtractor",
    "BaseDistribution",
    "CategoricalDistribution",
    "DiagGaussianDistribution",
)
