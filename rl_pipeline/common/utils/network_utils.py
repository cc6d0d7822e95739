from __future__ import annotations

from typing import Callable, Sequence, Tuple, Type, Union

import math

import torch.nn as nn


_ACTIVATIONS = {
    "relu": nn.ReLU,
    "tanh": nn.Tanh,
    "elu": nn.ELU,
    "gelu": nn.GELU,
    "silu": nn.SiLU,
    "leaky_relu": nn.LeakyReLU,
}


def _validate_hidden_sizes(hidden_sizes: Sequence[int]) -> Tuple[int, ...]:
    """
    Validate an MLP hidden layer size specification.

    Raises
    ------
    ValueError
        If empty or contains non-positive entries.
    """
    hs = tuple(int(h) for h in hidden_sizes)
    if len(hs) == 0:
        raise ValueError("hidden_sizes must have at least one layer (e.g., (64, 64)).")
    if any(h <= 0 for h in hs):
        raise ValueError(f"hidden_sizes must be positive integers, got: {hs}")
    return hs


def _resolve_activation(activation_fn: Union[str, Type[nn.Module]]) -> Type[nn.Module]:
    """Accept an ``nn.Module`` class or one of the names in `_ACTIVATIONS`."""
    if isinstance(activation_fn, str):
        key = activation_fn.lower().strip()
        if key not in _ACTIVATIONS:
            raise ValueError(f"Unknown activation_fn: {activation_fn!r} (known: {sorted(_ACTIVATIONS)})")
        return _ACTIVATIONS[key]
    return activation_fn


def _make_weights_init(
    init_type: str = "orthogonal",
    gain: float = math.sqrt(2.0),
    bias: float = 0.0,
) -> Callable[[nn.Module], None]:
    """
    Create an initializer for ``nn.Module.apply``.

    Only ``nn.Linear`` layers are touched. Supported ``init_type`` values:
    ``"orthogonal"``, ``"xavier_uniform"``, ``"xavier_normal"``,
    ``"kaiming_uniform"``, ``"normal"`` (std = gain).
    """
    name = str(init_type).lower().strip()
    gain = float(gain)
    bias = float(bias)

    def init_fn(module: nn.Module) -> None:
        if not isinstance(module, nn.Linear):
            return

        if name == "orthogonal":
            nn.init.orthogonal_(module.weight, gain=gain)
        elif name == "xavier_uniform":
            nn.init.xavier_uniform_(module.weight, gain=gain)
        elif name == "xavier_normal":
            nn.init.xavier_normal_(module.weight, gain=gain)
        elif name == "kaiming_uniform":
            nn.init.kaiming_uniform_(module.weight, a=math.sqrt(5.0))
        elif name == "normal":
            nn.init.normal_(module.weight, mean=0.0, std=gain)
        else:
            raise ValueError(f"Unknown init_type: {init_type!r}")

        if module.bias is not None:
            nn.init.constant_(module.bias, bias)

    return init_fn
