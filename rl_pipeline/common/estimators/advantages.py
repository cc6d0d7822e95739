from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

import torch as th

from .returns import (
    _validate_discount,
    discounted_returns,
    empirical_advantage_estimation,
    generalized_advantage_estimation,
)
from ..utils.common_utils import _to_tensor


class AdvantageKind(str, Enum):
    """Available advantage estimators."""

    RETURNS = "returns"
    EMPIRICAL = "empirical"
    GAE = "gae"


class AdvantageEstimate:
    """
    Advantages for a window plus lazily computed return targets.

    Parameters
    ----------
    advantages : torch.Tensor, shape (T, ...)
    values : Optional[torch.Tensor], shape (T, ...)
        Value baseline the advantages were computed against; needed for
        TD(lambda) returns.
    returns_fn : Callable[[], torch.Tensor]
        Computes the plain discounted returns on first access.
    """

    def __init__(
        self,
        advantages: th.Tensor,
        *,
        values: Optional[th.Tensor],
        returns_fn: Callable[[], th.Tensor],
    ) -> None:
        self.advantages = advantages
        self.values = values
        self._returns_fn = returns_fn
        self._discounted_returns: Optional[th.Tensor] = None

    @property
    def discounted_returns(self) -> th.Tensor:
        if self._discounted_returns is None:
            self._discounted_returns = self._returns_fn()
        return self._discounted_returns

    @property
    def td_lambda_returns(self) -> th.Tensor:
        if self.values is None:
            raise RuntimeError("TD(lambda) returns need the value baseline.")
        return self.advantages + self.values

    def returns(self, td_lambda: bool = False) -> th.Tensor:
        return self.td_lambda_returns if td_lambda else self.discounted_returns


@dataclass(frozen=True)
class AdvantageFunction:
    """
    Advantage estimator selected by ``kind``.

    - ``RETURNS``: advantages are the discounted returns (no baseline).
    - ``EMPIRICAL``: discounted returns minus values.
    - ``GAE``: generalized advantage estimation with trace decay ``lam``.

    Calling the function on a window of length T returns an
    :class:`AdvantageEstimate` of the same length; callers split off their
    bootstrap step beforehand and pass its value as ``final_value``.
    """

    kind: AdvantageKind = AdvantageKind.GAE
    gamma: float = 0.99
    lam: float = 0.95

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", AdvantageKind(self.kind))
        object.__setattr__(self, "gamma", _validate_discount("gamma", self.gamma))
        object.__setattr__(self, "lam", _validate_discount("lam", self.lam))

    def __call__(
        self,
        step_kinds: Any,
        rewards: Any,
        values: Optional[Any] = None,
        final_value: Optional[Any] = None,
    ) -> AdvantageEstimate:
        def _returns() -> th.Tensor:
            return discounted_returns(step_kinds, rewards, final_value, gamma=self.gamma)

        if self.kind is AdvantageKind.RETURNS:
            ret = _returns()
            v = None if values is None else _to_tensor(values, device=ret.device, dtype=ret.dtype)
            return AdvantageEstimate(ret, values=v, returns_fn=lambda: ret)

        if self.kind is AdvantageKind.EMPIRICAL:
            adv = empirical_advantage_estimation(step_kinds, rewards, values, final_value, gamma=self.gamma)
        else:
            adv = generalized_advantage_estimation(
                step_kinds, rewards, values, final_value, gamma=self.gamma, lam=self.lam
            )
        v = _to_tensor(values, device=adv.device, dtype=adv.dtype)
        return AdvantageEstimate(adv, values=v, returns_fn=_returns)


def build_advantage_function(
    name: Union[str, AdvantageKind] = "gae",
    *,
    gamma: float = 0.99,
    lam: float = 0.95,
) -> AdvantageFunction:
    """
    Build an :class:`AdvantageFunction` from a string identifier.

    ``name`` is case-insensitive: ``"gae"``, ``"empirical"`` or ``"returns"``.
    """
    key = name.value if isinstance(name, AdvantageKind) else str(name).lower().strip()
    try:
        kind = AdvantageKind(key)
    except ValueError as e:
        known = [k.value for k in AdvantageKind]
        raise ValueError(f"Unknown advantage function: {name!r} (known: {known})") from e
    return AdvantageFunction(kind=kind, gamma=gamma, lam=lam)
