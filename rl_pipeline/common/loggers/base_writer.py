from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping, Optional

import warnings


class Writer(ABC):
    """
    Abstract base class for metric writer backends.

    Contract
    --------
    - `write(row)` consumes one mapping of metric names to floats. Rows built by
      :class:`~rl_pipeline.common.loggers.logger.Logger` always carry the meta
      keys ``step``, ``wall_time`` and ``timestamp``.
    - `flush()` and `close()` should be idempotent.
    - Implementations raise on failure; suppression is the job of
      :class:`SafeWriter` or of the logger's ``strict`` policy.
    """

    @abstractmethod
    def write(self, row: Mapping[str, float]) -> None:
        raise NotImplementedError

    @abstractmethod
    def flush(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class SafeWriter(Writer):
    """
    Failure-isolating wrapper for a :class:`Writer`.

    The first exception raised by the inner writer is reported with
    ``warnings.warn`` and disables the wrapper; later calls are no-ops. Training
    keeps running when, e.g., a disk fills up under one backend.
    """

    def __init__(self, inner: Writer, *, name: Optional[str] = None) -> None:
        self._inner = inner
        self._name = name or inner.__class__.__name__
        self.disabled = False
        self.last_error: Optional[BaseException] = None

    def _guard(self, op: str, fn, *args) -> None:
        if self.disabled:
            return
        try:
            fn(*args)
        except Exception as e:
            self.disabled = True
            self.last_error = e
            warnings.warn(f"{self._name}.{op} failed, disabling writer: {type(e).__name__}: {e}", RuntimeWarning)

    def write(self, row: Mapping[str, float]) -> None:
        self._guard("write", self._inner.write, row)

    def flush(self) -> None:
        self._guard("flush", self._inner.flush)

    def close(self) -> None:
        self._guard("close", self._inner.close)
