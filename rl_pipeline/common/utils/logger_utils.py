from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional, TextIO, Tuple
import json
import math
import os
import uuid

from .common_utils import _to_scalar


# Keys treated as row metadata rather than plotted metrics.
META_KEYS: Tuple[str, str, str] = ("step", "wall_time", "timestamp")


# =============================================================================
# Run directory utilities
# =============================================================================
def _generate_run_id() -> str:
    """Return ``"{YYYY-mm-dd_HH-MM-SS}_{8-hex}"``, sortable and collision-resistant."""
    ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    return f"{ts}_{uuid.uuid4().hex[:8]}"


def _make_run_dir(
    log_dir: str,
    exp_name: str,
    *,
    run_id: Optional[str] = None,
    overwrite: bool = False,
) -> str:
    """
    Resolve ``{log_dir}/{exp_name}/{run_id}`` for a fresh run.

    When ``run_id`` is None a timestamped id is generated. If the directory
    already exists and ``overwrite`` is False, the first free ``_{k}`` suffix
    is appended.
    """
    path = os.path.join(str(log_dir), str(exp_name), str(run_id or _generate_run_id()))
    if overwrite or not os.path.exists(path):
        return path

    k = 1
    while os.path.exists(f"{path}_{k}"):
        k += 1
    return f"{path}_{k}"


# =============================================================================
# Metric row helpers
# =============================================================================
def _flatten_metrics(
    metrics: Mapping[str, Any],
    *,
    prefix: str = "",
    drop_non_finite: bool = True,
) -> Dict[str, float]:
    """
    Keep scalar-like values, join keys with ``prefix/`` and optionally drop NaN/Inf.

    Non-scalar values (arrays with more than one element, strings, None) are
    skipped: writers only deal with floats.
    """
    pfx = prefix.strip("/")
    out: Dict[str, float] = {}
    for k, v in metrics.items():
        s = _to_scalar(v)
        if s is None:
            continue
        if drop_non_finite and not math.isfinite(s):
            continue
        key = str(k).strip("/")
        if pfx and not key.startswith(pfx + "/"):
            key = f"{pfx}/{key}"
        out[key] = s
    return out


def _split_meta(row: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Split a row into ``(meta, metrics)`` according to `META_KEYS`."""
    meta = {k: row[k] for k in META_KEYS if k in row}
    metrics = {k: v for k, v in row.items() if k not in META_KEYS}
    return meta, metrics


# =============================================================================
# Serialization / filesystem helpers
# =============================================================================
def _json_dumps(obj: Any) -> str:
    # default=str keeps dataclass enums and devices readable in config dumps
    return json.dumps(obj, ensure_ascii=False, default=str, sort_keys=True)


def _open_append(path: str, *, newline: Optional[str] = None, encoding: str = "utf-8") -> TextIO:
    """Open ``path`` for appending, creating parent directories. Caller closes it."""
    dirpath = os.path.dirname(path)
    if dirpath:
        os.makedirs(dirpath, exist_ok=True)
    return open(path, "a", newline=newline, encoding=encoding)
