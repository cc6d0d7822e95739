from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Optional, Sequence, Type, Union

import math

import torch as th
import torch.nn as nn

from .distributions import BaseDistribution
from ..utils.network_utils import _make_weights_init, _resolve_activation, _validate_hidden_sizes


# =============================================================================
# Feature Extractors
# =============================================================================
class MLPFeaturesExtractor(nn.Module):
    """
    Standard MLP feature extractor: (Linear -> Activation) x N.

    Works on any number of leading dimensions, so time-major ``(T, B, D)``
    observations go through unchanged.

    Parameters
    ----------
    input_dim : int
        Input dimensionality.
    hidden_sizes : Sequence[int]
        Hidden layer widths. ``out_dim`` is ``hidden_sizes[-1]``.
    activation_fn : type[nn.Module] or str, default=nn.Tanh
    """

    def __init__(
        self,
        input_dim: int,
        hidden_sizes: Sequence[int],
        activation_fn: Union[str, Type[nn.Module]] = nn.Tanh,
    ) -> None:
        super().__init__()
        hs = _validate_hidden_sizes(hidden_sizes)
        act = _resolve_activation(activation_fn)

        layers: list[nn.Module] = []
        prev_dim = int(input_dim)
        for h in hs:
            layers.append(nn.Linear(prev_dim, h))
            layers.append(act())
            prev_dim = h

        self.net = nn.Sequential(*layers)
        self.out_dim = hs[-1]

    def forward(self, x: th.Tensor) -> th.Tensor:
        return self.net(x)


# =============================================================================
# Actor-critic interface
# =============================================================================
class ActorCriticOutput(NamedTuple):
    """
    Output of an actor-critic forward pass.

    distribution : action distribution with batch shape ``observation.shape[:2]``
    value        : state values, same shape as the batch, or None for actor-only nets
    state        : next recurrent state, or None for stateless networks
    """

    distribution: BaseDistribution
    value: Optional[th.Tensor]
    state: Any = None


class BaseActorCriticNetwork(nn.Module, ABC):
    """
    Base class for networks consumed by the collection loop and PPO.

    Contract
    --------
    ``forward(observation, state=None) -> ActorCriticOutput`` where
    ``observation`` is time-major ``(T, B, obs_dim)``. Stateless networks
    ignore ``state`` and return ``state=None``; recurrent networks receive the
    state at the first timestep and return the state after the last one.

    Parameters
    ----------
    obs_dim : int
    hidden_sizes : Sequence[int]
    activation_fn : type[nn.Module] or str
    init_type : str
        Forwarded to `_make_weights_init` for the hidden layers.
    """

    def __init__(
        self,
        obs_dim: int,
        hidden_sizes: Sequence[int] = (64, 64),
        activation_fn: Union[str, Type[nn.Module]] = nn.Tanh,
        *,
        init_type: str = "orthogonal",
    ) -> None:
        super().__init__()
        self.obs_dim = int(obs_dim)
        if self.obs_dim <= 0:
            raise ValueError(f"obs_dim must be positive, got {obs_dim}")
        self.hidden_sizes = _validate_hidden_sizes(hidden_sizes)
        self.activation_fn = activation_fn
        self._init_fn = _make_weights_init(init_type=init_type, gain=math.sqrt(2.0))

    def initial_state(self, batch_size: int) -> Any:
        """State fed at the start of collection; stateless networks return None."""
        return None

    @abstractmethod
    def forward(self, observation: th.Tensor, state: Any = None) -> ActorCriticOutput:
        raise NotImplementedError

    @staticmethod
    def _init_head(layer: nn.Linear, gain: float) -> None:
        nn.init.orthogonal_(layer.weight, gain=gain)
        nn.init.constant_(layer.bias, 0.0)
