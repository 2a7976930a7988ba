from __future__ import annotations

import numpy as np


def undersample_indices(y: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """
    Row indices that keep every class at the size of the smallest class.
    The smallest class is kept whole; larger classes are drawn without
    replacement. Returned indices are sorted.
    """
    y = np.asarray(y)
    classes, counts = np.unique(y, return_counts=True)
    if classes.size == 0:
        return np.arange(0)
    n_keep = int(counts.min())
    keep = []
    for c, n in zip(classes, counts):
        idx_c = np.where(y == c)[0]
        if n > n_keep:
            idx_c = rng.choice(idx_c, size=n_keep, replace=False)
        keep.append(idx_c)
    return np.sort(np.concatenate(keep))
