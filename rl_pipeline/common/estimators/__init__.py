"""
estimators
==========

Episode-aware return / advantage estimators and normalization strategies.

All estimators are stateless, operate on time-major tensors and never let
information cross a LAST step.
"""

from __future__ import annotations

from .advantages import AdvantageEstimate, AdvantageFunction, AdvantageKind, build_advantage_function
from .normalizers import NormalizationKind, Normalizer, build_normalizer
from .returns import discounted_returns, empirical_advantage_estimation, generalized_advantage_estimation

__all__ = (
    "AdvantageEstimate",
    "AdvantageFunction",
    "AdvantageKind",
    "build_advantage_function",
    "NormalizationKind",
    "Normalizer",
    "build_normalizer",
    "discounted_returns",
    "empirical_advantage_estimation",
    "generalized_advantage_estimation",
)
