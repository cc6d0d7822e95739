from __future__ import annotations

from typing import Any

import os
import random

import numpy as np
import torch as th
from tqdm import tqdm


def _make_pbar(**kwargs: Any) -> tqdm:
    """Create a tqdm progress bar. ``disable=True`` keeps the counter but prints nothing."""
    kwargs.setdefault("dynamic_ncols", True)
    return tqdm(**kwargs)


# =============================================================================
# RNG seeding
# =============================================================================
def _set_random_seed(seed: int, *, deterministic: bool = False, verbose: bool = False) -> None:
    """
    Seed Python/NumPy/PyTorch RNGs for reproducibility.

    Parameters
    ----------
    seed : int
        Base seed.
    deterministic : bool, default=False
        If True, also switches cuDNN to deterministic kernels. Full determinism
        across GPU drivers is not guaranteed.
    verbose : bool, default=False
        Print a one-line summary.
    """
    seed = int(seed)

    random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)
    np.random.seed(seed)
    th.manual_seed(seed)
    if th.cuda.is_available():
        th.cuda.manual_seed_all(seed)

    if deterministic:
        th.backends.cudnn.benchmark = False
        th.backends.cudnn.deterministic = True

    if verbose:
        print(f"[set_random_seed] seed={seed}, deterministic={deterministic}, cuda={th.cuda.is_available()}")
