from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Union

import torch as th
import torch.nn as nn

from ..optimizers.optimizer_builder import (
    build_optimizer,
    clip_grad_norm,
    load_optimizer_state_dict,
    optimizer_state_dict,
)
from ..optimizers.scheduler_builder import (
    build_scheduler,
    load_scheduler_state_dict,
    scheduler_state_dict,
)
from ..trajectories.trajectory import Trajectory
from ..utils.common_utils import _to_cpu_state_dict


class BaseCore(ABC):
    """
    Base class for update engines ("cores").

    A core owns a network together with the optimizer and (optional) LR
    scheduler that train it, and turns a time-major :class:`Trajectory` into
    parameter updates. This base class provides the shared infrastructure:

    - device normalization (taken from the network parameters by default)
    - optimizer and scheduler construction from string identifiers
    - a monotonically increasing update-call counter
    - gradient clipping that reports the pre-clip global norm
    - checkpoint serialization of network, optimizer and scheduler state

    Parameters
    ----------
    network : nn.Module
        Module trained by this core.
    device : Union[str, torch.device], optional
        Device trajectories are moved to. Defaults to the device of the
        network's first parameter.
    optim_name : str, default="adam"
        Forwarded to :func:`build_optimizer`.
    lr : float, default=3e-4
    weight_decay : float, default=0.0
    optim_kwargs : Mapping[str, Any], optional
        Extra optimizer arguments (``betas``, ``eps``, ``momentum``, ...).
    sched_name : str, default="none"
        Forwarded to :func:`build_scheduler`.
    total_steps, warmup_steps, min_lr_ratio, step_size, sched_gamma
        Scheduler knobs; the scheduler is stepped once per optimizer step.

    Notes
    -----
    Concrete subclasses implement `update_with_metrics`; `update` returns its
    ``"loss/total"`` entry.
    """

    def __init__(
        self,
        *,
        network: nn.Module,
        device: Optional[Union[str, th.device]] = None,
        # optimizer
        optim_name: str = "adam",
        lr: float = 3e-4,
        weight_decay: float = 0.0,
        optim_kwargs: Optional[Mapping[str, Any]] = None,
        # scheduler
        sched_name: str = "none",
        total_steps: int = 0,
        warmup_steps: int = 0,
        min_lr_ratio: float = 0.0,
        step_size: int = 1000,
        sched_gamma: float = 0.99,
    ) -> None:
        if not isinstance(network, nn.Module):
            raise TypeError(f"network must be an nn.Module, got {type(network).__name__}")
        self.network = network

        if device is None:
            p = next(network.parameters(), None)
            device = p.device if p is not None else "cpu"
        self.device = device if isinstance(device, th.device) else th.device(str(device))
        self.network.to(self.device)

        self.optimizer = build_optimizer(
            self.network.parameters(),
            name=str(optim_name),
            lr=float(lr),
            weight_decay=float(weight_decay),
            **dict(optim_kwargs or {}),
        )
        self.scheduler = build_scheduler(
            self.optimizer,
            name=str(sched_name),
            total_steps=int(total_steps),
            warmup_steps=int(warmup_steps),
            min_lr_ratio=float(min_lr_ratio),
            step_size=int(step_size),
            gamma=float(sched_gamma),
        )

        self._update_calls: int = 0

    # ---------------------------------------------------------------------
    # Bookkeeping
    # ---------------------------------------------------------------------
    @property
    def update_calls(self) -> int:
        """Number of completed `update` calls."""
        return int(self._update_calls)

    def _bump(self) -> None:
        self._update_calls += 1

    @property
    def lr(self) -> float:
        return float(self.optimizer.param_groups[0]["lr"])

    # ---------------------------------------------------------------------
    # Optimization helpers
    # ---------------------------------------------------------------------
    def _clip_params(self, max_grad_norm: Optional[float]) -> float:
        """
        Clip the network gradients in place by global norm.

        ``None`` (or a non-positive value) disables clipping. The global norm
        before clipping is returned either way, for logging.
        """
        mg = 0.0 if max_grad_norm is None else float(max_grad_norm)
        return clip_grad_norm(self.network.parameters(), mg)

    def _step_sched(self) -> None:
        if self.scheduler is not None:
            self.scheduler.step()

    # ---------------------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------------------
    def state_dict(self) -> Dict[str, Any]:
        """
        Serializable core state.

        Keys: ``update_calls``, ``network`` (CPU tensors), ``optimizer``,
        ``scheduler`` (``{}`` when no scheduler is used).
        """
        return {
            "update_calls": int(self._update_calls),
            "network": _to_cpu_state_dict(self.network.state_dict()),
            "optimizer": optimizer_state_dict(self.optimizer),
            "scheduler": scheduler_state_dict(self.scheduler),
        }

    def load_state_dict(self, state: Mapping[str, Any]) -> None:
        self._update_calls = int(state.get("update_calls", 0))
        if "network" in state:
            self.network.load_state_dict(state["network"])
        if state.get("optimizer"):
            load_optimizer_state_dict(self.optimizer, state["optimizer"])
        if state.get("scheduler"):
            load_scheduler_state_dict(self.scheduler, state["scheduler"])

    # ---------------------------------------------------------------------
    # Main contract
    # ---------------------------------------------------------------------
    @abstractmethod
    def update_with_metrics(self, trajectory: Trajectory) -> Dict[str, float]:
        """
        Run one update call on a time-major trajectory.

        Returns
        -------
        Dict[str, float]
            Scalar diagnostics; always contains ``"loss/total"``.
        """
        raise NotImplementedError

    def update(self, trajectory: Trajectory) -> float:
        """Run one update call and return the final loss."""
        return float(self.update_with_metrics(trajectory)["loss/total"])
