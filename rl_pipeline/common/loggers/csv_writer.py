from __future__ import annotations

from typing import Dict, List, Mapping, Optional, TextIO

import csv
import os

from .base_writer import Writer
from ..utils.logger_utils import META_KEYS, _open_append


class CSVWriter(Writer):
    """
    Wide CSV writer: one row per `write()` call, one column per metric.

    The header is the union of every key seen so far, meta keys first. When a
    row brings new keys (e.g. episode statistics that only exist once the first
    episode has finished), the file is rewritten once with the extended header
    and earlier rows get empty cells for the new columns.

    Parameters
    ----------
    run_dir : str
        Directory of the CSV file.
    filename : str, default="metrics.csv"
    encoding : str, default="utf-8"
    """

    def __init__(self, run_dir: str, filename: str = "metrics.csv", *, encoding: str = "utf-8") -> None:
        self.path = os.path.join(run_dir, filename)
        self.encoding = encoding
        self._fieldnames: List[str] = []
        self._file: Optional[TextIO] = None
        self._writer: Optional[csv.DictWriter] = None

        if os.path.exists(self.path) and os.path.getsize(self.path) > 0:
            with open(self.path, "r", newline="", encoding=self.encoding) as f:
                self._fieldnames = next(csv.reader(f), [])

    def write(self, row: Mapping[str, float]) -> None:
        new_keys = [k for k in row.keys() if k not in self._fieldnames]
        if new_keys or self._writer is None:
            self._extend_schema(new_keys)
        self._writer.writerow({k: row.get(k, "") for k in self._fieldnames})

    def flush(self) -> None:
        if self._file is not None:
            self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.flush()
            self._file.close()
        self._file = None
        self._writer = None

    def _extend_schema(self, new_keys: List[str]) -> None:
        self.flush()
        old = list(self._fieldnames)
        merged = old + new_keys
        meta = [k for k in META_KEYS if k in merged]
        self._fieldnames = meta + [k for k in merged if k not in META_KEYS]

        rows: List[Dict[str, str]] = []
        had_rows = os.path.exists(self.path) and os.path.getsize(self.path) > 0
        if had_rows and self._fieldnames != old:
            self.close()
            with open(self.path, "r", newline="", encoding=self.encoding) as f:
                rows = list(csv.DictReader(f))
            with open(self.path, "w", newline="", encoding=self.encoding) as f:
                w = csv.DictWriter(f, fieldnames=self._fieldnames)
                w.writeheader()
                for r in rows:
                    w.writerow({k: r.get(k, "") for k in self._fieldnames})

        if self._file is None:
            self._file = _open_append(self.path, newline="", encoding=self.encoding)
        self._writer = csv.DictWriter(self._file, fieldnames=self._fieldnames)
        if not had_rows:
            self._writer.writeheader()
