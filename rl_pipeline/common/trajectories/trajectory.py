from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np
import torch as th

from ..utils.common_utils import _to_numpy, _to_tensor

ArrayLike = Union[np.ndarray, th.Tensor]
B = TypeVar("B", bound="Batchable")


# =============================================================================
# Batchable interface
# =============================================================================
class Batchable(ABC):
    """
    Record type made of named array fields sharing a leading batch shape.

    Subclasses declare their schema explicitly through ``FIELDS``; every
    batch/gather/scatter operation below walks that tuple, so the buffer never
    has to inspect a record's structure at runtime. Optional fields may be
    ``None`` and stay ``None`` through every operation.

    Storage produced by :meth:`allocate` is always NumPy; records passed to
    :meth:`scatter_update` may hold NumPy arrays or torch tensors.
    """

    FIELDS: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def from_fields(cls: type[B], fields: Dict[str, Optional[ArrayLike]]) -> B:
        return cls(**fields)

    @property
    @abstractmethod
    def batch_shape(self) -> Tuple[int, ...]:
        """Leading shape shared by every field."""
        raise NotImplementedError

    def fields(self) -> Dict[str, Optional[ArrayLike]]:
        return {name: getattr(self, name) for name in self.FIELDS}

    def map_fields(self: B, fn: Callable[[ArrayLike], ArrayLike]) -> B:
        """Apply ``fn`` to every present field and rebuild the record."""
        return self.from_fields({k: (None if v is None else fn(v)) for k, v in self.fields().items()})

    # ------------------------------------------------------------------ storage
    def allocate(self: B, capacity: int) -> B:
        """
        Zero-filled NumPy storage of ``capacity`` rows shaped like one row of this record.

        The record's first leading dimension is treated as the row dimension,
        i.e. ``field[capacity, *field.shape[1:]]`` with the field's dtype.
        """

        def _alloc(v: ArrayLike) -> np.ndarray:
            arr = _to_numpy(v)
            return np.zeros((int(capacity), *arr.shape[1:]), dtype=arr.dtype)

        return self.map_fields(_alloc)

    def check_compatible(self, values: "Batchable") -> None:
        """
        Raise unless ``values`` can be written into this storage.

        Every field must be present in both or absent in both, and the
        per-row shape of ``values`` (after its batch dims) must equal the
        per-row shape of the storage (after its row dim).

        Raises
        ------
        TypeError
            If ``values`` is a different record type.
        ValueError
            On a presence or per-row shape mismatch.
        """
        if type(values) is not type(self):
            raise TypeError(f"Cannot scatter {type(values).__name__} into {type(self).__name__} storage.")
        n_lead = len(values.batch_shape)
        src = values.fields()
        for name, dst in self.fields().items():
            v = src[name]
            if (dst is None) != (v is None):
                raise ValueError(f"Field {name!r} presence does not match the buffer storage.")
            if dst is None:
                continue
            got = tuple(v.shape[n_lead:])
            want = tuple(dst.shape[1:])
            if got != want:
                raise ValueError(f"Field {name!r} row shape {got} does not match the buffer storage {want}.")

    def scatter_update(self, rows: np.ndarray, values: "Batchable") -> None:
        """Write ``values`` into this storage at ``rows``, in place, field by field."""
        self.check_compatible(values)
        src = values.fields()
        for name, dst in self.fields().items():
            if dst is not None:
                dst[rows] = _to_numpy(src[name])

    def gather(self: B, rows: Any) -> B:
        """Fancy-index every field with ``rows``; output leading shape is ``rows.shape``."""
        return self.map_fields(lambda v: v[rows])

    def to_tensors(self: B, device: Union[str, th.device] = "cpu") -> B:
        """Convert every field to a torch tensor, keeping dtypes."""
        return self.map_fields(lambda v: _to_tensor(v, device=device, dtype=None))

    @classmethod
    def stack(cls: type[B], records: Sequence[B], axis: int = 0) -> B:
        """Stack records along a new ``axis`` (e.g. per-step rows into a time-major record)."""
        if len(records) == 0:
            raise ValueError("Cannot stack an empty sequence of records.")
        out: Dict[str, Optional[ArrayLike]] = {}
        for name in cls.FIELDS:
            vals = [getattr(r, name) for r in records]
            if all(v is None for v in vals):
                out[name] = None
            elif any(v is None for v in vals):
                raise ValueError(f"Field {name!r} is present in some records but not others.")
            elif all(th.is_tensor(v) for v in vals):
                out[name] = th.stack(vals, dim=axis)
            else:
                out[name] = np.stack([_to_numpy(v) for v in vals], axis=axis)
        return cls.from_fields(out)


# =============================================================================
# Trajectory
# =============================================================================
@dataclass(frozen=True, eq=False)
class Trajectory(Batchable):
    """
    Structure-of-arrays bundle of environment interaction.

    Time-major trajectories have fields shaped ``[T, B, ...]``; a single
    recorded step has fields shaped ``[B, ...]``.

    Attributes
    ----------
    step_kind : ArrayLike
        :class:`StepKind` codes, shape ``[T, B]`` (or ``[B]``).
    observation : ArrayLike
        ``[T, B, *obs_shape]``.
    action : ArrayLike
        ``[T, B, *action_shape]``.
    reward : ArrayLike
        ``[T, B]``, same shape as ``step_kind``.
    policy_state : Optional[ArrayLike]
        Recurrent policy state per step, ``[T, B, ...]``, or None.
    """

    FIELDS: ClassVar[Tuple[str, ...]] = ("step_kind", "observation", "action", "reward", "policy_state")

    step_kind: ArrayLike
    observation: ArrayLike
    action: ArrayLike
    reward: ArrayLike
    policy_state: Optional[ArrayLike] = None

    def __post_init__(self) -> None:
        lead = tuple(self.step_kind.shape)
        if tuple(self.reward.shape) != lead:
            raise ValueError(f"reward shape {tuple(self.reward.shape)} does not match step_kind shape {lead}")
        for name in ("observation", "action", "policy_state"):
            v = getattr(self, name)
            if v is None:
                continue
            if tuple(v.shape[: len(lead)]) != lead:
                raise ValueError(
                    f"{name} leading shape {tuple(v.shape[: len(lead)])} does not match step_kind shape {lead}"
                )

    @property
    def batch_shape(self) -> Tuple[int, ...]:
        return tuple(int(d) for d in self.step_kind.shape)

    def __len__(self) -> int:
        return self.batch_shape[0]
