"""
environments
============

Batched environment interface (:class:`BaseEnvironment`, :class:`EnvStep`)
and the gymnasium adapter used by the example entry point.
"""

from __future__ import annotations

from .base_env import BaseEnvironment, EnvStep
from .gym_env import GymEnvironment, make_gym_environment, space_spec

__all__ = (
    "BaseEnvironment",
    "EnvStep",
    "GymEnvironment",
    "make_gym_environment",
    "space_spec",
)
