from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Union

import torch as th

from ..trajectories.trajectory import Batchable


class BaseReplayBuffer(ABC):
    """
    Abstract base class for batch-parallel circular replay buffers.

    The buffer holds ``batch_size`` lanes, each a ring of ``max_length`` rows,
    so ``capacity = batch_size * max_length``. One call to :meth:`record`
    writes one row into every lane under a single, globally increasing id.

    Notes
    -----
    Contract (expected behavior of subclasses):

    - Storage is **circular** per lane: once a lane holds ``max_length`` rows,
      new records overwrite the oldest one.
    - :meth:`record` returns the id assigned to the written row.
    - :meth:`recorded_data` returns every valid row, oldest first, shaped
      ``[valid_length, batch_size, ...]``.
    - :meth:`sample_batch` draws rows or windows uniformly with replacement.
    - :meth:`reset` discards everything; ids restart at 0.

    Parameters
    ----------
    batch_size:
        Number of lanes, i.e. the leading dimension of every recorded batch.
    max_length:
        Number of rows kept per lane.
    device:
        Torch device of the tensors returned by :meth:`recorded_data` and
        :meth:`sample_batch`.
    """

    def __init__(
        self,
        batch_size: int,
        max_length: int,
        *,
        device: Union[str, th.device] = "cpu",
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if max_length <= 0:
            raise ValueError(f"max_length must be positive, got {max_length}")

        self.batch_size = int(batch_size)
        self.max_length = int(max_length)
        self.capacity = self.batch_size * self.max_length
        self.device = device

    @property
    @abstractmethod
    def size(self) -> int:
        """Number of valid rows per lane."""
        raise NotImplementedError

    @abstractmethod
    def record(self, batch: Batchable) -> int:
        raise NotImplementedError

    @abstractmethod
    def recorded_data(self) -> Batchable:
        raise NotImplementedError

    @abstractmethod
    def sample_batch(self, batch_size: int, step_count: Optional[int] = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        raise NotImplementedError
