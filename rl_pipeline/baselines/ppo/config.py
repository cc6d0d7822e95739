from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Union

from rl_pipeline.common.estimators.normalizers import NormalizationKind


def _positive_or_none(name: str, value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    if value <= 0.0:
        raise ValueError(f"{name} must be > 0 when provided, got {value}")
    return value


def _positive(name: str, value: float) -> float:
    value = float(value)
    if value <= 0.0:
        raise ValueError(f"{name} must be > 0, got {value}")
    return value


def _non_negative(name: str, value: float) -> float:
    value = float(value)
    if value < 0.0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


@dataclass(frozen=True)
class KLPenaltyConfig:
    """
    KL penalty terms of the PPO loss and the adaptive-beta controller.

    Attributes
    ----------
    cutoff_factor : Optional[float], default=2.0
        Adds ``cutoff_coefficient * max(kl - cutoff_factor * target, 0)^2``
        to the loss. ``None`` disables the cutoff term.
    cutoff_coefficient : float, default=1000.0
    initial_beta : Optional[float], default=1.0
        Starting value of the adaptive coefficient of the linear
        ``beta * kl`` term. ``None`` disables the term and the controller.
    target : float, default=0.01
        Target mean KL per update call.
    tolerance_factor : float, default=1.5
        The controller leaves beta alone while
        ``target / tolerance_factor <= kl <= target * tolerance_factor``.
    beta_scaling_factor : float, default=1.5
        Beta is divided (below the band) or multiplied (above) by this.
    """

    cutoff_factor: Optional[float] = 2.0
    cutoff_coefficient: float = 1000.0
    initial_beta: Optional[float] = 1.0
    target: float = 0.01
    tolerance_factor: float = 1.5
    beta_scaling_factor: float = 1.5

    def __post_init__(self) -> None:
        object.__setattr__(self, "cutoff_factor", _positive_or_none("cutoff_factor", self.cutoff_factor))
        object.__setattr__(self, "cutoff_coefficient", _non_negative("cutoff_coefficient", self.cutoff_coefficient))
        object.__setattr__(self, "initial_beta", _positive_or_none("initial_beta", self.initial_beta))
        object.__setattr__(self, "target", _positive("target", self.target))
        object.__setattr__(self, "tolerance_factor", _positive("tolerance_factor", self.tolerance_factor))
        object.__setattr__(self, "beta_scaling_factor", _positive("beta_scaling_factor", self.beta_scaling_factor))

    @property
    def adaptive(self) -> bool:
        return self.initial_beta is not None


@dataclass(frozen=True)
class ValueLossConfig:
    """
    Value-function regression term.

    ``weight * mean((v - R)^2)``; with ``clip_threshold`` set, the squared
    error is the elementwise maximum of the unclipped error and the error of
    ``v_old + clamp(v - v_old, -clip_threshold, clip_threshold)``.
    """

    weight: float = 0.5
    clip_threshold: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "weight", _non_negative("weight", self.weight))
        object.__setattr__(self, "clip_threshold", _positive_or_none("clip_threshold", self.clip_threshold))


@dataclass(frozen=True)
class PPOConfig:
    """
    Static PPO hyperparameters.

    The config is immutable; the adaptive KL coefficient is algorithm state
    and lives on ``PPOCore.kl_beta``.

    Attributes
    ----------
    clip_epsilon : Optional[float], default=0.2
        Importance-ratio clipping. ``None`` uses the plain ``ratio * A`` surrogate.
    log_prob_clip : Optional[float], default=None
        Clamp new log-probabilities to ``[-log_prob_clip, log_prob_clip]``
        before forming the ratio.
    kl_penalty : Optional[KLPenaltyConfig], default=None
    value_loss : ValueLossConfig
    entropy_weight : float, default=0.0
    epoch_count : int, default=10
        Gradient epochs per update call, all over the same trajectory.
    max_grad_norm : Optional[float], default=0.5
        Global gradient-norm clip. ``None`` disables clipping.
    use_td_lambda_return : bool, default=False
        Regress values on ``advantages + values`` instead of discounted
        returns. Requires a GAE advantage function.
    advantage_normalization : NormalizationKind, default=BATCH
    normalization_epsilon : float, default=1e-8
    """

    clip_epsilon: Optional[float] = 0.2
    log_prob_clip: Optional[float] = None
    kl_penalty: Optional[KLPenaltyConfig] = None
    value_loss: ValueLossConfig = field(default_factory=ValueLossConfig)
    entropy_weight: float = 0.0
    epoch_count: int = 10
    max_grad_norm: Optional[float] = 0.5
    use_td_lambda_return: bool = False
    advantage_normalization: Union[NormalizationKind, str] = NormalizationKind.BATCH
    normalization_epsilon: float = 1e-8

    def __post_init__(self) -> None:
        object.__setattr__(self, "clip_epsilon", _positive_or_none("clip_epsilon", self.clip_epsilon))
        object.__setattr__(self, "log_prob_clip", _positive_or_none("log_prob_clip", self.log_prob_clip))
        object.__setattr__(self, "entropy_weight", _non_negative("entropy_weight", self.entropy_weight))
        object.__setattr__(self, "max_grad_norm", _positive_or_none("max_grad_norm", self.max_grad_norm))
        object.__setattr__(
            self, "normalization_epsilon", _non_negative("normalization_epsilon", self.normalization_epsilon)
        )
        if int(self.epoch_count) != self.epoch_count or int(self.epoch_count) <= 0:
            raise ValueError(f"epoch_count must be a positive integer, got {self.epoch_count}")
        object.__setattr__(self, "epoch_count", int(self.epoch_count))
        object.__setattr__(self, "use_td_lambda_return", bool(self.use_td_lambda_return))
        try:
            kind = NormalizationKind(self.advantage_normalization)
        except ValueError as e:
            known = [k.value for k in NormalizationKind]
            raise ValueError(f"Unknown advantage_normalization: {self.advantage_normalization!r} (known: {known})") from e
        object.__setattr__(self, "advantage_normalization", kind)

        if self.kl_penalty is not None and not isinstance(self.kl_penalty, KLPenaltyConfig):
            raise TypeError(f"kl_penalty must be a KLPenaltyConfig, got {type(self.kl_penalty).__name__}")
        if not isinstance(self.value_loss, ValueLossConfig):
            raise TypeError(f"value_loss must be a ValueLossConfig, got {type(self.value_loss).__name__}")

    def to_dict(self) -> Dict[str, Any]:
        """Plain nested dict (enums as their string values), e.g. for ``Logger.dump_config``."""
        d = asdict(self)
        d["advantage_normalization"] = self.advantage_normalization.value
        return d
