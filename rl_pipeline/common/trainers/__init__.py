"""
trainers
========

:class:`Trainer` runs repeated collect-then-update iterations of an
on-policy algorithm with episode statistics, logging, a tqdm progress bar
and ``torch.save`` checkpoints.
"""

from __future__ import annotations

from .trainer import Trainer

__all__ = ("Trainer",)
