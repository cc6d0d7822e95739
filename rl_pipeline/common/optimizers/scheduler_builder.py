from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

import math

from torch.optim import Optimizer
from torch.optim.lr_scheduler import ExponentialLR, LambdaLR, LRScheduler, StepLR


# =============================================================================
# Public API
# =============================================================================
def build_scheduler(
    optimizer: Optimizer,
    *,
    name: str = "none",
    total_steps: int = 0,
    warmup_steps: int = 0,
    min_lr_ratio: float = 0.0,
    step_size: int = 1000,
    gamma: float = 0.99,
) -> Optional[LRScheduler]:
    """
    Construct a learning-rate scheduler stepped once per optimizer step.

    Parameters
    ----------
    optimizer : torch.optim.Optimizer
        Target optimizer.
    name : str, default="none"
        Scheduler identifier (case-insensitive, hyphens normalized):

        - "none" / "constant": no scheduling (returns None).
        - "linear": optional linear warmup, then linear decay to `min_lr_ratio`.
        - "cosine": optional linear warmup, then cosine decay to `min_lr_ratio`.
        - "step": StepLR, multiply by `gamma` every `step_size` steps.
        - "exponential": ExponentialLR, multiply by `gamma` every step.
    total_steps : int, default=0
        Horizon in optimizer steps; required (> 0) for "linear" and "cosine".
        With PPO, one update call performs ``epoch_count`` optimizer steps.
    warmup_steps : int, default=0
        Warmup length for "linear"/"cosine"; clamped to `total_steps`.
    min_lr_ratio : float, default=0.0
        Final LR as a fraction of the base LR, in [0, 1].
    step_size : int, default=1000
    gamma : float, default=0.99

    Returns
    -------
    Optional[LRScheduler]

    Raises
    ------
    ValueError
        Unknown name or invalid parameters for the chosen schedule.
    """
    sched = str(name).lower().strip().replace("-", "_").replace(" ", "_")
    if sched in ("none", "constant"):
        return None

    min_lr_ratio = float(min_lr_ratio)
    if not (0.0 <= min_lr_ratio <= 1.0):
        raise ValueError(f"min_lr_ratio must be in [0, 1], got: {min_lr_ratio}")
    warmup_steps = int(warmup_steps)
    if warmup_steps < 0:
        raise ValueError(f"warmup_steps must be >= 0, got: {warmup_steps}")

    if sched in ("linear", "cosine"):
        total_steps = int(total_steps)
        if total_steps <= 0:
            raise ValueError(f"{sched} scheduler requires total_steps > 0")
        warmup_steps = min(warmup_steps, total_steps)
        fn = _lr_lambda(sched, total_steps=total_steps, warmup_steps=warmup_steps, min_lr_ratio=min_lr_ratio)
        return LambdaLR(optimizer, lr_lambda=fn)

    if sched in ("step", "exponential"):
        gamma = float(gamma)
        if gamma <= 0.0:
            raise ValueError(f"gamma must be > 0, got: {gamma}")
        if sched == "exponential":
            return ExponentialLR(optimizer, gamma=gamma)
        if int(step_size) <= 0:
            raise ValueError(f"step_size must be > 0, got: {step_size}")
        return StepLR(optimizer, step_size=int(step_size), gamma=gamma)

    raise ValueError(f"Unknown scheduler name: {name!r}")


def scheduler_state_dict(scheduler: Optional[LRScheduler]) -> Dict[str, Any]:
    return {} if scheduler is None else scheduler.state_dict()


def load_scheduler_state_dict(scheduler: Optional[LRScheduler], state: Mapping[str, Any]) -> None:
    if scheduler is None:
        return
    scheduler.load_state_dict(dict(state))


# =============================================================================
# Internal helpers
# =============================================================================
def _lr_lambda(kind: str, *, total_steps: int, warmup_steps: int, min_lr_ratio: float) -> Callable[[int], float]:
    """
    LambdaLR multiplier: warmup ramps ``1/w, 2/w, ..., 1``, then decays to
    ``min_lr_ratio`` at ``total_steps`` and stays there.
    """

    def f(step: int) -> float:
        s = max(0, int(step))
        if warmup_steps > 0 and s < warmup_steps:
            return (s + 1) / float(warmup_steps)

        t = min(1.0, (s - warmup_steps) / float(max(1, total_steps - warmup_steps)))
        if kind == "linear":
            decay = 1.0 - t
        else:
            decay = 0.5 * (1.0 + math.cos(math.pi * t))
        return min_lr_ratio + (1.0 - min_lr_ratio) * decay

    return f
