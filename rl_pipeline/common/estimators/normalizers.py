from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Union

import math

import torch as th


class NormalizationKind(str, Enum):
    """
    How a tensor is standardized before use.

    - ``NONE``: identity.
    - ``BATCH``: mean / std of the tensor being normalized.
    - ``STREAMING``: running mean / std accumulated over every ``update``.
    """

    NONE = "none"
    BATCH = "batch"
    STREAMING = "streaming"


class Normalizer:
    """
    Standardizes tensors as ``(x - mean) / (std + epsilon)``.

    The strategy is fixed at construction so batch and streaming statistics
    are never mixed by accident. Calling the normalizer updates streaming
    statistics with ``x`` first and then normalizes ``x``.

    Parameters
    ----------
    kind : NormalizationKind or str, default="batch"
    epsilon : float, default=1e-8
        Added to the standard deviation.
    """

    def __init__(self, kind: Union[NormalizationKind, str] = NormalizationKind.BATCH, *, epsilon: float = 1e-8) -> None:
        self.kind = NormalizationKind(kind)
        self.epsilon = float(epsilon)
        if self.epsilon < 0.0:
            raise ValueError(f"epsilon must be >= 0, got {self.epsilon}")
        self.reset()

    def reset(self) -> None:
        self.count = 0
        self.mean = 0.0
        self.var = 1.0

    def update(self, x: th.Tensor) -> None:
        """Merge the moments of ``x`` into the running statistics (streaming only)."""
        if self.kind is not NormalizationKind.STREAMING:
            return
        x = x.detach().to(th.float64)
        if x.numel() == 0:
            return
        self.update_from_moments(
            batch_mean=float(x.mean().item()),
            batch_var=float(x.var(correction=0).item()),
            batch_count=int(x.numel()),
        )

    def update_from_moments(self, *, batch_mean: float, batch_var: float, batch_count: int) -> None:
        """
        Parallel mean/variance merge (Chan et al.) with a batch of ``batch_count`` samples.

        Works on centered moments only, so statistics stay accurate for values
        far from zero.
        """
        if batch_count <= 0:
            raise ValueError(f"batch_count must be > 0, got {batch_count}")
        n = float(batch_count)
        tot = self.count + n
        delta = float(batch_mean) - self.mean
        m_a = self.var * self.count
        m_b = float(batch_var) * n
        m2 = m_a + m_b + delta * delta * (self.count * n / tot)

        self.mean = self.mean + delta * (n / tot)
        self.var = m2 / tot
        self.count = self.count + int(batch_count)

    @property
    def std(self) -> float:
        return math.sqrt(max(self.var, 0.0))

    def normalize(self, x: th.Tensor) -> th.Tensor:
        if self.kind is NormalizationKind.NONE:
            return x
        if self.kind is NormalizationKind.BATCH:
            return (x - x.mean()) / (x.std(correction=0) + self.epsilon)
        if self.count == 0:
            raise RuntimeError("Streaming normalizer has no statistics yet; call update() first.")
        return (x - self.mean) / (self.std + self.epsilon)

    def __call__(self, x: th.Tensor) -> th.Tensor:
        self.update(x)
        return self.normalize(x)

    def state_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "count": self.count, "mean": self.mean, "var": self.var}

    def load_state_dict(self, state: Mapping[str, Any]) -> None:
        if NormalizationKind(state["kind"]) is not self.kind:
            raise ValueError(f"Cannot load {state['kind']!r} statistics into a {self.kind.value!r} normalizer.")
        self.count = int(state["count"])
        self.mean = float(state["mean"])
        self.var = float(state["var"])


def build_normalizer(name: Union[str, NormalizationKind] = "batch", *, epsilon: float = 1e-8) -> Normalizer:
    """Build a :class:`Normalizer` from ``"none"``, ``"batch"`` or ``"streaming"``."""
    key = name.value if isinstance(name, NormalizationKind) else str(name).lower().strip()
    try:
        kind = NormalizationKind(key)
    except ValueError as e:
        known = [k.value for k in NormalizationKind]
        raise ValueError(f"Unknown normalization: {name!r} (known: {known})") from e
    return Normalizer(kind, epsilon=epsilon)
