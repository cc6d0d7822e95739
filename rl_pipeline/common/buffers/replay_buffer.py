from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple, Union

import threading

import numpy as np
import torch as th

from .base_buffer import BaseReplayBuffer
from ..trajectories.trajectory import Batchable


@dataclass
class ReplayBufferBatch:
    """
    Result of :meth:`UniformReplayBuffer.sample_batch`.

    Unpacks like a tuple: ``batch, ids, probabilities = buffer.sample_batch(...)``.
    """

    batch: Batchable
    ids: th.Tensor
    probabilities: th.Tensor

    def __iter__(self) -> Iterator[object]:
        return iter((self.batch, self.ids, self.probabilities))


class UniformReplayBuffer(BaseReplayBuffer):
    """
    Circular replay buffer with uniform sampling.

    Row layout
    ----------
    Lane ``b`` owns rows ``[b * max_length, (b + 1) * max_length)``; the record
    with id ``i`` lives at row ``b * max_length + i % max_length`` of every lane.
    Present ids always form the contiguous range ``[low, high)`` with
    ``high = last_id + 1`` and ``low = max(0, high - max_length)``.

    Concurrency
    -----------
    Several writer threads may call :meth:`record` on one buffer. Only the id
    allocation is serialized; the write itself touches rows no other id maps
    to. Readers (:meth:`recorded_data`, :meth:`sample_batch`) are not
    synchronized against writers and must not run while a record is in flight.

    Parameters
    ----------
    batch_size : int
        Number of lanes (leading dimension of recorded batches).
    max_length : int
        Rows kept per lane.
    device : Union[str, torch.device], default="cpu"
        Device of returned tensors.
    seed : Optional[int], default=None
        Seed of the sampling RNG.
    """

    def __init__(
        self,
        batch_size: int,
        max_length: int,
        *,
        device: Union[str, th.device] = "cpu",
        seed: Optional[int] = None,
    ) -> None:
        super().__init__(batch_size, max_length, device=device)
        self._id_lock = threading.Lock()
        self._rng = np.random.default_rng(seed)
        self._lane_offsets = np.arange(self.batch_size, dtype=np.int64) * self.max_length
        self.reset()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------
    def reset(self) -> None:
        """Drop storage and restart ids at 0. Storage is reallocated by the next record."""
        with self._id_lock:
            self._storage: Optional[Batchable] = None
            self._row_ids: Optional[np.ndarray] = None
            self._next_id = 0

    @property
    def last_id(self) -> int:
        """Most recently allocated id, or -1 when nothing has been recorded."""
        return self._next_id - 1

    @property
    def size(self) -> int:
        return min(self._next_id, self.max_length)

    @property
    def is_full(self) -> bool:
        return self._next_id >= self.max_length

    def valid_id_range(self, step_count: int = 1) -> Tuple[int, int]:
        """
        Half-open range of ids a window of ``step_count`` ids may start at.

        Raises
        ------
        RuntimeError
            If nothing is recorded, or no window of ``step_count`` ids is resident.
        """
        step_count = int(step_count)
        if step_count <= 0:
            raise ValueError(f"step_count must be positive, got {step_count}")
        if self._next_id == 0:
            raise RuntimeError("Cannot sample from an empty buffer.")

        high = self._next_id
        low = max(0, high - self.max_length)
        if high - low < step_count:
            raise RuntimeError(f"step_count={step_count} exceeds the {high - low} valid ids in the buffer.")
        return low, high - (step_count - 1)

    # -------------------------------------------------------------------------
    # Write
    # -------------------------------------------------------------------------
    def record(self, batch: Batchable) -> int:
        """
        Write one row into every lane and return the id it was stored under.

        ``batch`` must have leading dimension ``batch_size``. Storage is
        allocated from the first batch's field shapes and dtypes. A batch that
        does not fit the storage is rejected before an id is allocated.
        """
        shape = batch.batch_shape
        if len(shape) != 1 or shape[0] != self.batch_size:
            raise ValueError(f"Expected a batch with leading shape ({self.batch_size},), got {shape}")

        with self._id_lock:
            if self._storage is None:
                self._storage = batch.allocate(self.capacity)
                self._row_ids = np.full((self.capacity,), -1, dtype=np.int64)
            else:
                self._storage.check_compatible(batch)
            record_id = self._next_id
            self._next_id += 1
            storage, row_ids = self._storage, self._row_ids

        rows = self._lane_offsets + record_id % self.max_length
        storage.scatter_update(rows, batch)
        row_ids[rows] = record_id
        return record_id

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------
    def recorded_data(self) -> Batchable:
        """
        Every valid record, oldest first, shaped ``[valid_length, batch_size, ...]``.
        """
        if self._next_id == 0:
            raise RuntimeError("No data has been recorded.")
        low, high = self.valid_id_range()
        ids = np.arange(low, high, dtype=np.int64)
        rows = (ids % self.max_length)[:, None] + self._lane_offsets[None, :]
        return self._storage.gather(rows).to_tensors(self.device)

    def sample_batch(self, batch_size: int, step_count: Optional[int] = None) -> ReplayBufferBatch:
        """
        Sample ``batch_size`` (id, lane) pairs uniformly with replacement.

        Parameters
        ----------
        batch_size : int
            Number of samples.
        step_count : Optional[int], default=None
            If None, each sample is a single row and fields come back shaped
            ``[batch_size, ...]``. Otherwise each sample is a window of
            ``step_count`` consecutive ids from one lane, fields shaped
            ``[batch_size, step_count, ...]``.

        Returns
        -------
        ReplayBufferBatch
            ``ids`` has the leading shape of the batch; ``probabilities`` has shape
            ``[batch_size]`` and holds ``1 / (num_start_ids * lanes)``.
        """
        batch_size = int(batch_size)
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        steps = 1 if step_count is None else int(step_count)

        low, high = self.valid_id_range(steps)
        start_ids = self._rng.integers(low, high, size=batch_size)
        lanes = self._rng.integers(0, self.batch_size, size=batch_size)

        if step_count is None:
            ids = start_ids
            lane_offsets = lanes * self.max_length
        else:
            ids = start_ids[:, None] + np.arange(steps, dtype=np.int64)[None, :]
            lane_offsets = (lanes * self.max_length)[:, None]

        rows = lane_offsets + ids % self.max_length
        batch = self._storage.gather(rows).to_tensors(self.device)

        prob = 1.0 / float((high - low) * self.batch_size)
        return ReplayBufferBatch(
            batch=batch,
            ids=th.as_tensor(ids, dtype=th.int64, device=self.device),
            probabilities=th.full((batch_size,), prob, dtype=th.float32, device=self.device),
        )

    def stored_ids(self) -> np.ndarray:
        """Id held by each storage row (``-1`` for rows never written), shape ``[capacity]``."""
        if self._row_ids is None:
            return np.full((self.capacity,), -1, dtype=np.int64)
        return self._row_ids.copy()
