from __future__ import annotations

from typing import Mapping

from .base_writer import Writer
from ..utils.logger_utils import _split_meta


class TensorBoardWriter(Writer):
    """
    TensorBoard backend based on ``torch.utils.tensorboard.SummaryWriter``.

    Every non-meta key of a row becomes a scalar tag; the row's ``step`` is
    the global step. Requires the ``tensorboard`` package (``pip install
    rl-pipeline[tensorboard]``); the import happens on construction so the rest
    of the logging stack works without it.

    Parameters
    ----------
    run_dir : str
        Event file directory.
    """

    def __init__(self, run_dir: str) -> None:
        from torch.utils.tensorboard import SummaryWriter

        self._tb = SummaryWriter(log_dir=run_dir)

    def write(self, row: Mapping[str, float]) -> None:
        meta, metrics = _split_meta(row)
        step = int(meta.get("step", 0))
        for k, v in metrics.items():
            self._tb.add_scalar(str(k), float(v), global_step=step)

    def flush(self) -> None:
        self._tb.flush()

    def close(self) -> None:
        self._tb.close()
