"""Shared helpers for the HDF5 input/output utilities."""

from pathlib import Path
from typing import Optional

import h5py
import numpy as np


def _ensure_dir(path: str | Path) -> None:
    """Create *path* (and parents) if it does not exist."""
    Path(path).mkdir(parents=True, exist_ok=True)


def _write_dataset(
    group: h5py.Group,
    name: str,
    data: np.ndarray,
    *,
    compression: Optional[str] = None,
    level: int = 4,
) -> h5py.Dataset:
    """Write *data* as a dataset of *group*, compressing non-scalar arrays on request."""
    arr = np.asarray(data)
    if compression is not None and arr.ndim > 0 and arr.size > 1:
        return group.create_dataset(name, data=arr, compression=compression, compression_opts=level)
    return group.create_dataset(name, data=arr)
