"""Fold-local preprocessing: near-zero-variance filter, then centre/scale."""

from __future__ import annotations

from typing import Dict

import numpy as np
from sklearn.feature_selection import VarianceThreshold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler


def build_preprocessor(nzv_threshold: float) -> Pipeline:
    return Pipeline([
        ("nzv", VarianceThreshold(threshold=nzv_threshold)),
        ("scaler", StandardScaler()),
    ])


def fit_preprocessor(X: np.ndarray, nzv_threshold: float) -> Pipeline:
    """Fit on training rows only. Raises ValueError if every feature is filtered out."""
    pre = build_preprocessor(nzv_threshold)
    pre.fit(X)
    return pre


def preprocessor_stats(pre: Pipeline) -> Dict[str, np.ndarray]:
    nzv = pre.named_steps["nzv"]
    sc = pre.named_steps["scaler"]
    return {
        "kept": nzv.get_support(),
        "variances": nzv.variances_,
        "mean": sc.mean_,
        "scale": sc.scale_,
    }
