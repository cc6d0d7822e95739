from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Tuple, Union

import torch as th
import torch.nn as nn
import torch.optim as optim
from torch.optim import Optimizer


# =============================================================================
# Optimizer factory
# =============================================================================
def build_optimizer(
    params: Union[Iterable[nn.Parameter], Iterable[Dict[str, Any]]],
    *,
    name: str = "adam",
    lr: float = 3e-4,
    weight_decay: float = 0.0,
    betas: Tuple[float, float] = (0.9, 0.999),
    eps: float = 1e-8,
    momentum: float = 0.0,
    nesterov: bool = False,
    alpha: float = 0.99,
) -> Optimizer:
    """
    Build a PyTorch optimizer from a string identifier.

    Parameters
    ----------
    params : Iterable[nn.Parameter] or Iterable[Dict[str, Any]]
        Flat parameters or PyTorch-style param groups.
    name : str, default="adam"
        One of ``"adam"``, ``"adamw"``, ``"sgd"``, ``"rmsprop"``, ``"radam"``
        (case-insensitive).
    lr : float, default=3e-4
        Base learning rate, must be > 0.
    weight_decay : float, default=0.0
    betas : Tuple[float, float], default=(0.9, 0.999)
        Adam-family betas.
    eps : float, default=1e-8
        Adam-family / RMSprop epsilon.
    momentum : float, default=0.0
        SGD / RMSprop momentum.
    nesterov : bool, default=False
        SGD only; requires ``momentum > 0``.
    alpha : float, default=0.99
        RMSprop smoothing constant.

    Returns
    -------
    torch.optim.Optimizer

    Raises
    ------
    ValueError
        Unknown name or invalid hyperparameters.
    """
    opt = str(name).lower().strip().replace("-", "").replace("_", "")
    lr = float(lr)
    if lr <= 0.0:
        raise ValueError(f"lr must be > 0, got {lr}")
    if weight_decay < 0.0:
        raise ValueError(f"weight_decay must be >= 0, got {weight_decay}")

    params = list(params)
    if len(params) == 0:
        raise ValueError("build_optimizer received no parameters.")

    if opt == "adam":
        return optim.Adam(params, lr=lr, betas=betas, eps=eps, weight_decay=weight_decay)
    if opt == "adamw":
        return optim.AdamW(params, lr=lr, betas=betas, eps=eps, weight_decay=weight_decay)
    if opt == "radam":
        return optim.RAdam(params, lr=lr, betas=betas, eps=eps, weight_decay=weight_decay)
    if opt == "sgd":
        if nesterov and momentum <= 0.0:
            raise ValueError("nesterov=True requires momentum > 0.")
        return optim.SGD(params, lr=lr, momentum=momentum, nesterov=nesterov, weight_decay=weight_decay)
    if opt == "rmsprop":
        return optim.RMSprop(params, lr=lr, alpha=alpha, eps=eps, momentum=momentum, weight_decay=weight_decay)

    raise ValueError(f"Unknown optimizer name: {name!r} (known: adam, adamw, radam, sgd, rmsprop)")


# =============================================================================
# Gradient utilities
# =============================================================================
def clip_grad_norm(parameters: Iterable[nn.Parameter], max_norm: float, norm_type: float = 2.0) -> float:
    """
    Clip gradients by their global norm.

    ``max_norm <= 0`` is a no-op that still reports the total norm, so callers
    can log it either way.

    Returns
    -------
    float
        Pre-clip total norm.
    """
    params_list = [p for p in parameters if p.grad is not None]
    if not params_list:
        return 0.0

    if max_norm <= 0:
        norms = th.stack([p.grad.detach().norm(norm_type) for p in params_list])
        return float(norms.norm(norm_type).cpu().item())

    total_norm = nn.utils.clip_grad_norm_(params_list, float(max_norm), norm_type=float(norm_type))
    return float(total_norm.detach().cpu().item())


def optimizer_state_dict(optimizer: Optimizer) -> Dict[str, Any]:
    return optimizer.state_dict()


def load_optimizer_state_dict(optimizer: Optimizer, state: Mapping[str, Any]) -> None:
    optimizer.load_state_dict(dict(state))
