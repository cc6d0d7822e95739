from __future__ import annotations

from typing import Any, Dict, List, Optional

from .base_writer import SafeWriter, Writer
from .csv_writer import CSVWriter
from .jsonl_writer import JSONLWriter
from .logger import Logger
from .tensorboard_writer import TensorBoardWriter


def build_logger(
    *,
    log_dir: str = "./runs",
    exp_name: str = "exp",
    run_id: Optional[str] = None,
    overwrite: bool = False,
    # backend enable flags
    use_csv: bool = True,
    use_jsonl: bool = True,
    use_tensorboard: bool = False,
    safe_writers: bool = True,
    # backend kwargs
    csv_kwargs: Optional[Dict[str, Any]] = None,
    jsonl_kwargs: Optional[Dict[str, Any]] = None,
    # logger behavior
    console_every: int = 1,
    flush_every: int = 200,
    drop_non_finite: bool = True,
    strict: bool = False,
) -> Logger:
    """
    Construct a :class:`~rl_pipeline.common.loggers.logger.Logger` with the
    selected writer backends attached.

    The logger is built first because it resolves ``run_dir``; writers are then
    created inside that directory.

    Parameters
    ----------
    log_dir, exp_name, run_id, overwrite
        Forwarded to `Logger` (run directory resolution).
    use_csv : bool, default=True
        Attach a wide :class:`CSVWriter` (``metrics.csv``).
    use_jsonl : bool, default=True
        Attach a :class:`JSONLWriter` (``metrics.jsonl``).
    use_tensorboard : bool, default=False
        Attach a :class:`TensorBoardWriter`. Needs the ``tensorboard`` package.
    safe_writers : bool, default=True
        Wrap every writer in :class:`SafeWriter` so a failing backend disables
        itself instead of interrupting training. Ignored when ``strict=True``.
    csv_kwargs, jsonl_kwargs : dict, optional
        Extra keyword arguments for the corresponding writer.
    console_every, flush_every, drop_non_finite, strict
        Forwarded to `Logger`.

    Returns
    -------
    Logger
    """
    logger = Logger(
        log_dir=str(log_dir),
        exp_name=str(exp_name),
        run_id=run_id,
        overwrite=bool(overwrite),
        writers=None,
        console_every=int(console_every),
        flush_every=int(flush_every),
        drop_non_finite=bool(drop_non_finite),
        strict=bool(strict),
    )

    writers: List[Writer] = []
    if use_csv:
        writers.append(CSVWriter(logger.run_dir, **dict(csv_kwargs or {})))
    if use_jsonl:
        writers.append(JSONLWriter(logger.run_dir, **dict(jsonl_kwargs or {})))
    if use_tensorboard:
        writers.append(TensorBoardWriter(logger.run_dir))

    for w in writers:
        logger.add_writer(SafeWriter(w) if (safe_writers and not strict) else w)
    return logger
