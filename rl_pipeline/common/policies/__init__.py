"""
policies
========

Update-engine base class and the algorithm drivers built on it.

- :class:`BaseCore` owns network, optimizer and scheduler.
- :class:`BaseAlgorithm` adds action selection and checkpointing.
- :class:`OnPolicyAlgorithm` runs collect -> update -> reset.
"""

from __future__ import annotations

from .base_core import BaseCore
from .base_policy import BaseAlgorithm
from .on_policy_algorithm import OnPolicyAlgorithm

__all__ = (
    "BaseCore",
    "BaseAlgorithm",
    "OnPolicyAlgorithm",
)
