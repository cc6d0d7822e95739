from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional

import os
import time

import numpy as np

from .base_writer import Writer
from ..utils.logger_utils import META_KEYS, _flatten_metrics, _json_dumps, _make_run_dir


class Logger:
    """
    Scalar-first experiment logger (frontend).

    The `Logger` owns the run directory, turns metric mappings into flat rows of
    floats, injects meta keys and fans each row out to its writer backends.
    Writers own the I/O (file formats, buffering, flush and close semantics).

    Parameters
    ----------
    log_dir : str, default="./runs"
        Root directory for experiment runs.
    exp_name : str, default="exp"
        Experiment name used as a subdirectory under `log_dir`.
    run_id : str, optional
        Explicit run identifier. A timestamped id is generated when omitted.
    overwrite : bool, default=False
        Reuse an existing run directory instead of picking a fresh suffix.
    writers : Iterable[Writer], optional
        Writer backends attached at construction.
    console_every : int, default=1
        Print a console line every N calls to `log()`. ``<= 0`` disables it.
    flush_every : int, default=200
        Flush writers every N calls to `log()`. ``<= 0`` disables it.
    drop_non_finite : bool, default=True
        Discard NaN/Inf scalars instead of writing them.
    strict : bool, default=False
        Re-raise writer failures. Otherwise they are recorded in `errors`
        and logging continues.

    Notes
    -----
    Every emitted row carries ``step`` (the caller's step, or the number of
    `log()` calls so far when omitted), ``wall_time`` (seconds since the logger
    was created) and ``timestamp`` (unix time).
    """

    def __init__(
        self,
        *,
        log_dir: str = "./runs",
        exp_name: str = "exp",
        run_id: Optional[str] = None,
        overwrite: bool = False,
        writers: Optional[Iterable[Writer]] = None,
        console_every: int = 1,
        flush_every: int = 200,
        drop_non_finite: bool = True,
        strict: bool = False,
    ) -> None:
        self.strict = bool(strict)
        self.errors: List[str] = []

        self.run_dir = _make_run_dir(log_dir, exp_name, run_id=run_id, overwrite=bool(overwrite))
        os.makedirs(self.run_dir, exist_ok=True)

        self.console_every = int(console_every)
        self.flush_every = int(flush_every)
        self.drop_non_finite = bool(drop_non_finite)

        self._start_time = time.time()
        self._log_calls = 0
        self._buffer: Dict[str, List[float]] = defaultdict(list)
        self._writers: List[Writer] = list(writers) if writers is not None else []

    # ---------------------------------------------------------------------
    # Context manager
    # ---------------------------------------------------------------------
    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------------------------------------------------------------------
    # Error policy
    # ---------------------------------------------------------------------
    def _handle_exception(self, err: BaseException, context: str) -> None:
        msg = f"[{self.__class__.__name__}] {context}: {type(err).__name__}: {err}"
        self.errors.append(msg)
        if self.strict:
            raise err

    # ---------------------------------------------------------------------
    # Logging
    # ---------------------------------------------------------------------
    def log(
        self,
        metrics: Mapping[str, Any],
        step: Optional[int] = None,
        *,
        prefix: str = "",
        pbar: Optional[Any] = None,
    ) -> Dict[str, float]:
        """
        Write one row of metrics to every writer backend.

        Parameters
        ----------
        metrics : Mapping[str, Any]
            Metric mapping. Scalar-like values (floats, ints, 0-d/1-element
            arrays and tensors) are kept; anything else is skipped.
        step : int, optional
            Global step of the row.
        prefix : str, default=""
            Prefix joined to every key with ``/`` (e.g. ``"train"``).
        pbar : tqdm-like, optional
            When given, the console line goes to ``pbar.set_description_str``
            instead of stdout.

        Returns
        -------
        Dict[str, float]
            The emitted row, meta keys included.
        """
        self._log_calls += 1
        s = self._log_calls if step is None else int(step)

        row = _flatten_metrics(metrics, prefix=prefix, drop_non_finite=self.drop_non_finite)
        for k in META_KEYS:
            row.pop(k, None)

        now = time.time()
        row["step"] = float(s)
        row["wall_time"] = float(now - self._start_time)
        row["timestamp"] = float(now)

        for w in self._writers:
            try:
                w.write(row)
            except Exception as e:
                self._handle_exception(e, f"writer.write({w.__class__.__name__})")

        if self.console_every > 0 and (self._log_calls % self.console_every == 0):
            self._print_console(row, pbar=pbar)

        if self.flush_every > 0 and (self._log_calls % self.flush_every == 0):
            self.flush()

        return row

    def record(self, metrics: Mapping[str, Any], *, prefix: str = "") -> None:
        """Buffer scalars in memory; `dump()` emits their means as one row."""
        for k, v in _flatten_metrics(metrics, prefix=prefix, drop_non_finite=self.drop_non_finite).items():
            self._buffer[k].append(v)

    def dump(self, step: Optional[int] = None, *, pbar: Optional[Any] = None) -> Optional[Dict[str, float]]:
        """
        Emit the mean of every buffered key via `log()` and clear the buffer.

        Returns None (and writes nothing) when the buffer is empty.
        """
        out = {k: float(np.mean(v)) for k, v in self._buffer.items() if v}
        self._buffer.clear()
        if not out:
            return None
        return self.log(out, step=step, pbar=pbar)

    def dump_config(self, config: Mapping[str, Any], filename: str = "config.json") -> str:
        """
        Write an experiment configuration as JSON into `run_dir`.

        Values that are not JSON-serializable are stringified. Returns the path
        of the written file.
        """
        path = os.path.join(self.run_dir, filename)
        with open(path, "w", encoding="utf-8") as f:
            f.write(_json_dumps(dict(config)))
            f.write("\n")
        return path

    # ---------------------------------------------------------------------
    # Writers
    # ---------------------------------------------------------------------
    def add_writer(self, writer: Writer) -> None:
        self._writers.append(writer)

    @property
    def writers(self) -> List[Writer]:
        return list(self._writers)

    def flush(self) -> None:
        for w in self._writers:
            try:
                w.flush()
            except Exception as e:
                self._handle_exception(e, f"writer.flush({w.__class__.__name__})")

    def close(self) -> None:
        """Flush and close every writer. Writers are closed even if flushing fails."""
        try:
            self.flush()
        finally:
            for w in self._writers:
                try:
                    w.close()
                except Exception as e:
                    self._handle_exception(e, f"writer.close({w.__class__.__name__})")

    # ---------------------------------------------------------------------
    # Console
    # ---------------------------------------------------------------------
    @staticmethod
    def _print_console(row: Mapping[str, float], *, pbar: Optional[Any] = None) -> None:
        step = int(row.get("step", 0.0))
        wall = float(row.get("wall_time", 0.0))

        preferred = (
            "train/loss/total",
            "train/loss/policy",
            "train/loss/value",
            "train/stats/approx_kl",
            "train/stats/kl_beta",
            "rollout/episode_reward_mean",
            "rollout/episode_length_mean",
        )

        shown = [f"{k}={float(row[k]):.4g}" for k in preferred if k in row]
        if not shown:
            for k, v in row.items():
                if k in META_KEYS:
                    continue
                shown.append(f"{k}={float(v):.4g}")
                if len(shown) >= 6:
                    break

        msg = f"[step={step} | t={wall:.1f}s] " + " ".join(shown)

        if pbar is not None:
            pbar.set_description_str(msg, refresh=True)
            return
        print(msg)
