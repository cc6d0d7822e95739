from __future__ import annotations

from typing import Any, Sequence, Type, Union

import torch as th
import torch.nn as nn

from .base_networks import ActorCriticOutput, BaseActorCriticNetwork, MLPFeaturesExtractor
from .distributions import CategoricalDistribution, DiagGaussianDistribution


class _MLPActorCritic(BaseActorCriticNetwork):
    """Separate actor / critic MLP trunks; subclasses add the distribution head."""

    def __init__(
        self,
        obs_dim: int,
        hidden_sizes: Sequence[int] = (64, 64),
        activation_fn: Union[str, Type[nn.Module]] = nn.Tanh,
        *,
        init_type: str = "orthogonal",
    ) -> None:
        super().__init__(obs_dim, hidden_sizes, activation_fn, init_type=init_type)
        self.actor_trunk = MLPFeaturesExtractor(self.obs_dim, self.hidden_sizes, activation_fn)
        self.critic_trunk = MLPFeaturesExtractor(self.obs_dim, self.hidden_sizes, activation_fn)
        self.value_head = nn.Linear(self.critic_trunk.out_dim, 1)

        self.actor_trunk.apply(self._init_fn)
        self.critic_trunk.apply(self._init_fn)
        self._init_head(self.value_head, gain=1.0)

    def _check_observation(self, observation: th.Tensor) -> th.Tensor:
        if observation.shape[-1] != self.obs_dim:
            raise ValueError(f"Expected observations with last dim {self.obs_dim}, got {tuple(observation.shape)}")
        return observation.float()

    def _value(self, obs: th.Tensor) -> th.Tensor:
        return self.value_head(self.critic_trunk(obs)).squeeze(-1)


class CategoricalActorCriticNetwork(_MLPActorCritic):
    """
    MLP actor-critic for discrete action spaces.

    Parameters
    ----------
    obs_dim : int
        Flat observation dimension.
    n_actions : int
        Number of discrete actions.
    hidden_sizes : Sequence[int], default=(64, 64)
    activation_fn : type[nn.Module] or str, default=nn.Tanh
    """

    def __init__(
        self,
        obs_dim: int,
        n_actions: int,
        hidden_sizes: Sequence[int] = (64, 64),
        activation_fn: Union[str, Type[nn.Module]] = nn.Tanh,
        *,
        init_type: str = "orthogonal",
    ) -> None:
        super().__init__(obs_dim, hidden_sizes, activation_fn, init_type=init_type)
        self.n_actions = int(n_actions)
        if self.n_actions <= 1:
            raise ValueError(f"n_actions must be >= 2, got {n_actions}")
        self.logits_head = nn.Linear(self.actor_trunk.out_dim, self.n_actions)
        self._init_head(self.logits_head, gain=0.01)

    def forward(self, observation: th.Tensor, state: Any = None) -> ActorCriticOutput:
        obs = self._check_observation(observation)
        logits = self.logits_head(self.actor_trunk(obs))
        return ActorCriticOutput(CategoricalDistribution(logits), self._value(obs), None)


class GaussianActorCriticNetwork(_MLPActorCritic):
    """
    MLP actor-critic for continuous actions with a state-independent log std.

    Parameters
    ----------
    obs_dim : int
    action_dim : int
    log_std_init : float, default=0.0
        Initial value of the learned log standard deviation.
    """

    def __init__(
        self,
        obs_dim: int,
        action_dim: int,
        hidden_sizes: Sequence[int] = (64, 64),
        activation_fn: Union[str, Type[nn.Module]] = nn.Tanh,
        *,
        log_std_init: float = 0.0,
        init_type: str = "orthogonal",
    ) -> None:
        super().__init__(obs_dim, hidden_sizes, activation_fn, init_type=init_type)
        self.action_dim = int(action_dim)
        if self.action_dim <= 0:
            raise ValueError(f"action_dim must be positive, got {action_dim}")
        self.mu_head = nn.Linear(self.actor_trunk.out_dim, self.action_dim)
        self.log_std = nn.Parameter(th.full((self.action_dim,), float(log_std_init)))
        self._init_head(self.mu_head, gain=0.01)

    def forward(self, observation: th.Tensor, state: Any = None) -> ActorCriticOutput:
        obs = self._check_observation(observation)
        mean = self.mu_head(self.actor_trunk(obs))
        return ActorCriticOutput(DiagGaussianDistribution(mean, self.log_std), self._value(obs), None)
