from __future__ import annotations

from typing import Mapping, Optional, TextIO

import os

from .base_writer import Writer
from ..utils.logger_utils import _json_dumps, _open_append


class JSONLWriter(Writer):
    """
    JSON Lines writer: one JSON object per `write()` call.

    Append-friendly and tolerant of keys appearing at any step, which makes it
    the lossless companion of the wide CSV.

    Parameters
    ----------
    run_dir : str
        Directory of the file (created if missing).
    filename : str, default="metrics.jsonl"
    """

    def __init__(self, run_dir: str, filename: str = "metrics.jsonl") -> None:
        self.path = os.path.join(run_dir, filename)
        self._f: Optional[TextIO] = _open_append(self.path)

    def write(self, row: Mapping[str, float]) -> None:
        if self._f is None:
            raise RuntimeError(f"JSONLWriter for {self.path} is closed.")
        self._f.write(_json_dumps(dict(row)) + "\n")

    def flush(self) -> None:
        if self._f is not None:
            self._f.flush()

    def close(self) -> None:
        if self._f is not None:
            self._f.close()
        self._f = None
