from __future__ import annotations

from abc import ABC, abstractmethod

import torch as th
from torch.distributions import Categorical, Normal, kl_divergence


LOG_STD_MIN = -20.0
LOG_STD_MAX = 2.0


# =============================================================================
# Base interface
# =============================================================================
class BaseDistribution(ABC):
    """
    Base interface for policy action distributions.

    Contract
    --------
    Distributions are parameterized over an arbitrary batch shape, typically
    ``(T, B)`` for time-major trajectories or ``(B,)`` for a single step.

    - `sample()`        : action of shape ``batch_shape + action_shape``.
    - `mode()`          : deterministic action, same shape as `sample()`.
    - `log_prob(a)`     : shape ``batch_shape`` (summed over action dims).
    - `entropy()`       : shape ``batch_shape``.
    - `kl_divergence(o)`: ``KL(self || o)``, shape ``batch_shape``.
    """

    @abstractmethod
    def sample(self) -> th.Tensor:
        raise NotImplementedError

    @abstractmethod
    def mode(self) -> th.Tensor:
        raise NotImplementedError

    @abstractmethod
    def log_prob(self, action: th.Tensor) -> th.Tensor:
        raise NotImplementedError

    @abstractmethod
    def entropy(self) -> th.Tensor:
        raise NotImplementedError

    @abstractmethod
    def kl_divergence(self, other: "BaseDistribution") -> th.Tensor:
        raise NotImplementedError

    def detach(self) -> "BaseDistribution":
        """Copy with parameters cut from the autograd graph (a fixed reference policy)."""
        raise NotImplementedError(f"{type(self).__name__} does not support detach().")

    def __getitem__(self, index) -> "BaseDistribution":
        """Index the batch dimensions, e.g. ``dist[:-1]`` drops the last timestep."""
        raise NotImplementedError(f"{type(self).__name__} does not support indexing.")


# =============================================================================
# Continuous: Diagonal Gaussian
# =============================================================================
class DiagGaussianDistribution(BaseDistribution):
    """
    Diagonal Gaussian distribution (continuous actions, no squashing).

    Parameters
    ----------
    mean : torch.Tensor
        Mean tensor, shape ``batch_shape + (A,)``.
    log_std : torch.Tensor
        Log standard deviation, broadcastable to ``mean``. Clamped to
        [LOG_STD_MIN, LOG_STD_MAX].
    """

    def __init__(self, mean: th.Tensor, log_std: th.Tensor) -> None:
        self.mean = mean
        self.log_std = th.clamp(log_std, LOG_STD_MIN, LOG_STD_MAX).expand_as(mean)
        self.std = th.exp(self.log_std)
        self.dist = Normal(self.mean, self.std)

    def sample(self) -> th.Tensor:
        return self.dist.sample()

    def mode(self) -> th.Tensor:
        return self.mean

    def log_prob(self, action: th.Tensor) -> th.Tensor:
        return self.dist.log_prob(action.to(self.mean.dtype)).sum(dim=-1)

    def entropy(self) -> th.Tensor:
        return self.dist.entropy().sum(dim=-1)

    def kl_divergence(self, other: BaseDistribution) -> th.Tensor:
        if not isinstance(other, DiagGaussianDistribution):
            raise TypeError(f"KL requires DiagGaussianDistribution, got {type(other).__name__}")
        return kl_divergence(self.dist, other.dist).sum(dim=-1)

    def detach(self) -> "DiagGaussianDistribution":
        return DiagGaussianDistribution(self.mean.detach(), self.log_std.detach())

    def __getitem__(self, index) -> "DiagGaussianDistribution":
        return DiagGaussianDistribution(self.mean[index], self.log_std[index])


# =============================================================================
# Discrete: Categorical
# =============================================================================
class CategoricalDistribution(BaseDistribution):
    """
    Categorical distribution over ``A`` discrete actions.

    Parameters
    ----------
    logits : torch.Tensor
        Unnormalized logits, shape ``batch_shape + (A,)``.

    Notes
    -----
    Actions are integer indices of shape ``batch_shape`` (no trailing action
    dim), which is also how the replay buffer stores them.
    """

    def __init__(self, logits: th.Tensor) -> None:
        self.logits = logits
        self.dist = Categorical(logits=logits)

    def sample(self) -> th.Tensor:
        return self.dist.sample()

    def mode(self) -> th.Tensor:
        return th.argmax(self.logits, dim=-1)

    def log_prob(self, action: th.Tensor) -> th.Tensor:
        return self.dist.log_prob(action.long())

    def entropy(self) -> th.Tensor:
        return self.dist.entropy()

    def kl_divergence(self, other: BaseDistribution) -> th.Tensor:
        if not isinstance(other, CategoricalDistribution):
            raise TypeError(f"KL requires CategoricalDistribution, got {type(other).__name__}")
        return kl_divergence(self.dist, other.dist)

    def detach(self) -> "CategoricalDistribution":
        return CategoricalDistribution(self.logits.detach())

    def __getitem__(self, index) -> "CategoricalDistribution":
        return CategoricalDistribution(self.logits[index])
