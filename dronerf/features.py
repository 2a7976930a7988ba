"""Raster -> flat, min-max normalised feature vector."""

from __future__ import annotations

from typing import List

import numpy as np


def feature_names(size: int) -> List[str]:
    return [f"px_{i:05d}" for i in range(size * size)]


def extract_features(raster: np.ndarray, flip_vertical: bool = True) -> np.ndarray:
    """
    Flip (optional), min-max to [0, 1] over the whole raster, flatten row-major.
    Works for uint8 counts or float intensities alike. A constant raster maps
    to an all-zero vector.
    """
    R = np.asarray(raster)
    if R.ndim == 3:
        R = R[..., 0]
    if R.ndim != 2 or R.shape[0] != R.shape[1]:
        raise ValueError(f"expected a square single-channel raster, got shape {R.shape}")

    R = R.astype(np.float64)
    if flip_vertical:
        R = R[::-1, :]

    mn = float(R.min())
    mx = float(R.max())
    if mx > mn:
        R = (R - mn) / (mx - mn)
    else:
        R = np.zeros_like(R)
    return R.ravel().astype(np.float32)
