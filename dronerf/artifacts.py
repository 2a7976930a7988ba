"""Run folders, CSV writing and confusion-matrix figures."""

from __future__ import annotations

import csv
import json
import time
from pathlib import Path
from typing import Optional

import numpy as np

import matplotlib
matplotlib.use("Agg")  # headless
import matplotlib.pyplot as plt

PREP_PREFIX = "prep_run_"
TRAIN_PREFIX = "train_run_"
FEATURE_FILES = ("features.npz", "features.csv")


def now_run_dir(root: Path, prefix: str, name: Optional[str] = None) -> Path:
    out = Path(root) / (name or f"{prefix}{time.strftime('%Y%m%d_%H%M%S')}")
    out.mkdir(parents=True, exist_ok=True)
    return out


def latest_prep_dir(root: Path) -> Optional[Path]:
    """Return most recent <root>/prep_run_* directory holding a feature table."""
    root = Path(root)
    if not root.exists():
        return None
    candidates = sorted(
        [p for p in root.iterdir()
         if p.is_dir() and p.name.startswith(PREP_PREFIX) and any((p / f).exists() for f in FEATURE_FILES)],
        key=lambda p: p.name,
        reverse=True,
    )
    return candidates[0] if candidates else None


def resolve_features(arg: Optional[str], out_root: Path) -> Path:
    """
    If arg is a file, use it; if it is a directory, use the table inside it.
    Otherwise pick the latest prep_run_* under out_root.
    """
    if arg:
        p = Path(arg)
        if not p.exists():
            raise FileNotFoundError(f"--features does not exist: {p}")
        if p.is_file():
            return p
        d = p
    else:
        d = latest_prep_dir(out_root)
        if d is None:
            raise FileNotFoundError(
                f"No --features provided and no {PREP_PREFIX}* folders found under {out_root}.\n"
                f"Run dronerf-prepare first."
            )
    for f in FEATURE_FILES:
        if (d / f).exists():
            return d / f
    raise FileNotFoundError(f"{d} holds none of {FEATURE_FILES}")


def save_csv_dict(path: Path, rows, fieldnames):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()
        for r in rows:
            w.writerow(r)


def save_json(path: Path, obj) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, default=str)


def plot_confusion_matrix(cm: np.ndarray, classes, normalize: bool, title: str, out_png: Path):
    M = cm.astype(float)
    if normalize:
        with np.errstate(divide="ignore", invalid="ignore"):
            M = M / np.maximum(M.sum(axis=1, keepdims=True), 1)
    plt.figure(figsize=(7, 6))
    plt.imshow(M, interpolation="nearest", cmap="viridis")
    plt.title(title)
    plt.xlabel("Predicted")
    plt.ylabel("True")
    plt.xticks(np.arange(len(classes)), classes, rotation=45, ha="right")
    plt.yticks(np.arange(len(classes)), classes)
    for i in range(M.shape[0]):
        for j in range(M.shape[1]):
            txt = f"{(100*M[i,j]):.1f}%" if normalize else f"{int(cm[i,j])}"
            plt.text(j, i, txt, ha="center", va="center", color="white")
    plt.tight_layout()
    plt.savefig(out_png, dpi=150)
    plt.close()
