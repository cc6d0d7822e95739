from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Union

import numpy as np
import torch as th


# =============================================================================
# NumPy / Torch conversion utilities
# =============================================================================
def _to_numpy(x: Any) -> np.ndarray:
    """
    Convert an input to a NumPy array on CPU.

    Torch tensors are detached and moved to CPU first; everything else goes
    through ``np.asarray`` (no copy when the input already is an array).
    """
    if isinstance(x, np.ndarray):
        return x
    if th.is_tensor(x):
        return x.detach().cpu().numpy()
    return np.asarray(x)


def _to_tensor(
    x: Any,
    device: Union[str, th.device] = "cpu",
    dtype: Optional[th.dtype] = th.float32,
) -> th.Tensor:
    """
    Convert input to a torch.Tensor on the given device.

    Parameters
    ----------
    x : Any
        ``np.ndarray``, ``torch.Tensor`` or Python scalars / lists.
    device : Union[str, torch.device], default="cpu"
        Target device.
    dtype : Optional[torch.dtype], default=torch.float32
        Target dtype. ``None`` keeps the dtype inferred from the input, which is
        what buffer storage wants for integer step kinds and discrete actions.

    Returns
    -------
    torch.Tensor
    """
    dev = th.device(device)
    if th.is_tensor(x):
        return x.to(device=dev) if dtype is None else x.to(device=dev, dtype=dtype)
    if isinstance(x, np.ndarray):
        t = th.from_numpy(np.ascontiguousarray(x))
        return t.to(device=dev) if dtype is None else t.to(device=dev, dtype=dtype)
    return th.as_tensor(x, dtype=dtype, device=dev)


def _to_scalar(x: Any) -> Optional[float]:
    """
    Convert a scalar-like input to a Python float, or return None.

    Tensors/arrays with more than one element return None rather than being
    silently reduced.
    """
    if th.is_tensor(x):
        if x.numel() == 1:
            return float(x.detach().cpu().item())
        return None

    if isinstance(x, (bool, int, float, np.number)):
        return float(x)

    try:
        arr = np.asarray(x)
    except (TypeError, ValueError):
        return None
    if arr.dtype.kind in "biuf" and arr.size == 1:
        return float(arr.reshape(-1)[0])
    return None


def _to_cpu_state_dict(state_dict: Mapping[str, Any]) -> Dict[str, Any]:
    """Detach and move every tensor of a (possibly nested) state dict to CPU."""
    out: Dict[str, Any] = {}
    for k, v in state_dict.items():
        if th.is_tensor(v):
            out[k] = v.detach().cpu()
        elif isinstance(v, Mapping):
            out[k] = _to_cpu_state_dict(v)
        else:
            out[k] = v
    return out


def _mean(xs: Any) -> float:
    """Mean of a non-empty sequence; raises ``RuntimeError`` when empty."""
    xs = list(xs)
    if not xs:
        raise RuntimeError("Cannot take the mean of an empty sequence.")
    return float(sum(float(x) for x in xs) / len(xs))
