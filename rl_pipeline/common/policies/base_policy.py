from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Union

import math

import numpy as np
import torch as th

from .base_core import BaseCore
from ..utils.common_utils import _to_numpy, _to_scalar, _to_tensor


class BaseAlgorithm:
    """
    Shared base class for algorithm drivers.

    A driver glues an environment-facing loop to an update engine (`core`).
    This base class does not touch environments; it provides:

    - the `core` reference and a normalized `device`
    - `act()` for evaluation through the core's network
    - scalar-metric filtering for logging
    - `save()` / `load()` checkpointing of the core state

    Parameters
    ----------
    core : BaseCore
        Update engine owning the network, optimizer and scheduler.
    device : Union[str, torch.device], optional
        Device used for action selection and checkpoint loading. Defaults to
        ``core.device``.
    """

    def __init__(self, *, core: BaseCore, device: Optional[Union[str, th.device]] = None) -> None:
        self.core = core
        if device is None:
            device = core.device
        self.device: th.device = device if isinstance(device, th.device) else th.device(str(device))

    @property
    def network(self) -> th.nn.Module:
        return self.core.network

    # ------------------------------------------------------------------
    # Action selection
    # ------------------------------------------------------------------
    @th.no_grad()
    def act(self, observation: Any, deterministic: bool = False, state: Any = None) -> np.ndarray:
        """
        Select actions for a batch of observations.

        Parameters
        ----------
        observation : array-like, shape (B, *obs_shape)
        deterministic : bool, default=False
            Use the distribution mode instead of sampling.
        state : Any, optional
            Recurrent policy state for stateful networks.

        Returns
        -------
        np.ndarray
            Actions shaped ``(B, *action_shape)``.
        """
        obs = _to_tensor(observation, device=self.device)
        out = self.network(obs[None], state)
        dist = out.distribution[0]
        action = dist.mode() if deterministic else dist.sample()
        return _to_numpy(action)

    # ------------------------------------------------------------------
    # Metrics helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _filter_scalar_metrics(metrics_any: Any, *, drop_non_finite: bool = True) -> Dict[str, float]:
        """Keep scalar-like entries of a metrics mapping as floats."""
        metrics: Dict[str, Any] = dict(metrics_any) if isinstance(metrics_any, Mapping) else {}
        out: Dict[str, float] = {}
        for k, v in metrics.items():
            sv = _to_scalar(v)
            if sv is None:
                continue
            if drop_non_finite and not math.isfinite(sv):
                continue
            out[str(k)] = sv
        return out

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def state_dict(self) -> Dict[str, Any]:
        return {"core": self.core.state_dict()}

    def load_state_dict(self, state: Mapping[str, Any]) -> None:
        self.core.load_state_dict(state["core"])

    def save(self, path: str) -> str:
        """
        Save an algorithm checkpoint with ``torch.save``.

        The payload holds ``meta`` (format version, class names, device) and
        the state returned by `state_dict()`. ``.pt`` is appended when missing.
        Returns the written path.
        """
        if not path.endswith(".pt"):
            path += ".pt"

        payload: Dict[str, Any] = {
            "meta": {
                "format_version": 1,
                "algorithm_class": self.__class__.__name__,
                "core_class": self.core.__class__.__name__,
                "device": str(self.device),
            },
        }
        payload.update(self.state_dict())
        th.save(payload, path)
        return path

    def load(self, path: str) -> None:
        if not path.endswith(".pt"):
            path += ".pt"

        ckpt = th.load(path, map_location=self.device, weights_only=False)
        if not isinstance(ckpt, dict) or "core" not in ckpt:
            raise ValueError(f"Unrecognized checkpoint format at: {path}")
        self.load_state_dict(ckpt)
