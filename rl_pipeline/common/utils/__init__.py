"""
Utils
=====

Small helpers shared across the package.

Modules
-------
- common_utils
    NumPy/Torch conversion and scalar coercion.
- logger_utils
    Run-directory resolution, metric flattening and JSON serialization.
- network_utils
    Hidden-size validation, activation lookup and weight initialization.
- train_utils
    Seeding and progress bars.

Functions prefixed with '_' are semi-private: importable for internal use,
not a stable public API.
"""

from __future__ import annotations

from .common_utils import (
    _mean,
    _to_cpu_state_dict,
    _to_numpy,
    _to_scalar,
    _to_tensor,
)
from .logger_utils import (
    META_KEYS,
    _flatten_metrics,
    _generate_run_id,
    _json_dumps,
    _make_run_dir,
    _open_append,
    _split_meta,
)
from .network_utils import _make_weights_init, _resolve_activation, _validate_hidden_sizes
from .train_utils import _make_pbar, _set_random_seed

__all__ = [
    "_mean",
    "_to_cpu_state_dict",
    "_to_numpy",
    "_to_scalar",
    "_to_tensor",
    "META_KEYS",
    "_flatten_metrics",
    "_generate_run_id",
    "_json_dumps",
    "_make_run_dir",
    "_open_append",
    "_split_meta",
    "_make_weights_init",
    "_resolve_activation",
    "_validate_hidden_sizes",
    "_make_pbar",
    "_set_random_seed",
]
