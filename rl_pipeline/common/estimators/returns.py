from __future__ import annotations

from typing import Any, Optional, Tuple

import torch as th

from ..trajectories.step_kind import not_last
from ..utils.common_utils import _to_tensor


# =============================================================================
# Input normalization
# =============================================================================
def _validate_discount(name: str, value: float) -> float:
    value = float(value)
    if not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [0, 1], got {value}")
    return value


def _prepare(
    step_kinds: Any,
    rewards: Any,
    values: Optional[Any] = None,
    final_value: Optional[Any] = None,
) -> Tuple[th.Tensor, th.Tensor, Optional[th.Tensor], th.Tensor]:
    """
    Convert estimator inputs to tensors on the rewards' device and check shapes.

    Returns ``(not_last_mask, rewards, values, final_value)`` where ``final_value``
    is zeros shaped like one timestep when not given.
    """
    device = rewards.device if th.is_tensor(rewards) else "cpu"
    dtype = rewards.dtype if th.is_tensor(rewards) and rewards.is_floating_point() else th.float32

    r = _to_tensor(rewards, device=device, dtype=dtype)
    kinds = _to_tensor(step_kinds, device=device, dtype=None)
    if r.ndim == 0 or r.shape[0] == 0:
        raise ValueError("rewards must be time-major with at least one timestep.")
    if tuple(kinds.shape) != tuple(r.shape):
        raise ValueError(f"step_kinds shape {tuple(kinds.shape)} does not match rewards shape {tuple(r.shape)}")

    v: Optional[th.Tensor] = None
    if values is not None:
        v = _to_tensor(values, device=device, dtype=dtype)
        if tuple(v.shape) != tuple(r.shape):
            raise ValueError(f"values shape {tuple(v.shape)} does not match rewards shape {tuple(r.shape)}")

    if final_value is None:
        fv = th.zeros_like(r[0])
    else:
        fv = _to_tensor(final_value, device=device, dtype=dtype).expand_as(r[0])

    return not_last(kinds, dtype), r, v, fv


# =============================================================================
# Discounted returns
# =============================================================================
def discounted_returns(
    step_kinds: Any,
    rewards: Any,
    final_value: Optional[Any] = None,
    *,
    gamma: float,
) -> th.Tensor:
    """
    Episode-aware discounted returns computed by backward recurrence.

    ``G[T-1] = r[T-1] + gamma * final_value * notLast[T-1]`` and
    ``G[t] = r[t] + gamma * G[t+1] * notLast[t]``, where ``notLast[t]`` is 0
    exactly where ``step_kinds[t]`` is LAST, so nothing leaks across an
    episode boundary.

    Parameters
    ----------
    step_kinds : array-like, shape (T, ...)
        StepKind codes.
    rewards : array-like, shape (T, ...)
    final_value : Optional[array-like], shape (...)
        Bootstrap value for the step after the window. None means 0.
    gamma : float
        Discount factor in [0, 1].

    Returns
    -------
    torch.Tensor, shape (T, ...)
    """
    gamma = _validate_discount("gamma", gamma)
    mask, r, _, fv = _prepare(step_kinds, rewards, final_value=final_value)

    out = [th.zeros_like(fv)] * r.shape[0]
    nxt = fv
    for t in reversed(range(r.shape[0])):
        nxt = r[t] + gamma * mask[t] * nxt
        out[t] = nxt
    return th.stack(out, dim=0)


# =============================================================================
# Advantage recurrences
# =============================================================================
def generalized_advantage_estimation(
    step_kinds: Any,
    rewards: Any,
    values: Any,
    final_value: Optional[Any] = None,
    *,
    gamma: float,
    lam: float,
) -> th.Tensor:
    """
    GAE(gamma, lambda) advantages over a time-major window.

    ``delta[t] = r[t] + gamma * v[t+1] * notLast[t] - v[t]`` with
    ``v[T] = final_value``, then
    ``A[t] = delta[t] + gamma * lam * notLast[t] * A[t+1]``.
    With ``lam = 0`` this is the one-step TD residual.
    """
    gamma = _validate_discount("gamma", gamma)
    lam = _validate_discount("lam", lam)
    if values is None:
        raise ValueError("generalized_advantage_estimation requires values.")
    mask, r, v, fv = _prepare(step_kinds, rewards, values, final_value)

    next_values = th.cat([v[1:], fv.unsqueeze(0)], dim=0)
    deltas = r + gamma * next_values * mask - v

    out = [th.zeros_like(fv)] * r.shape[0]
    adv = th.zeros_like(fv)
    for t in reversed(range(r.shape[0])):
        adv = deltas[t] + gamma * lam * mask[t] * adv
        out[t] = adv
    return th.stack(out, dim=0)


def empirical_advantage_estimation(
    step_kinds: Any,
    rewards: Any,
    values: Any,
    final_value: Optional[Any] = None,
    *,
    gamma: float,
) -> th.Tensor:
    """Monte-Carlo advantages: discounted returns minus the value baseline."""
    if values is None:
        raise ValueError("empirical_advantage_estimation requires values.")
    _, r, v, _ = _prepare(step_kinds, rewards, values, final_value)
    return discounted_returns(step_kinds, r, final_value, gamma=gamma) - v
