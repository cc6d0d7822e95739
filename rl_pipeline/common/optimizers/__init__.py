"""
optimizers
==========

String-keyed builders for torch optimizers and LR schedulers, plus gradient
clipping and checkpoint helpers.
"""

from __future__ import annotations

from .optimizer_builder import build_optimizer, clip_grad_norm, load_optimizer_state_dict, optimizer_state_dict
from .scheduler_builder import build_scheduler, load_scheduler_state_dict, scheduler_state_dict

__all__ = (
    "build_optimizer",
    "clip_grad_norm",
    "load_optimizer_state_dict",
    "optimizer_state_dict",
    "build_scheduler",
    "load_scheduler_state_dict",
    "scheduler_state_dict",
)
