"""
Corpus -> feature table, label views and the stratified train/hold-out split.

Layout expected on disk:
  <corpus>/<class>/*.csv|*.txt      raw sample dumps, one recording per file
  <rasters>/<class>/<id>.png        rendered rasters (optional artifact)

Recordings are streamed through the spectrogram/feature code chunk by chunk
and written into a preallocated float32 matrix, so only one chunk of
intermediates is held at a time.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.model_selection import train_test_split

from .config import BACKGROUND_LABEL, DRONE_LABEL, PipelineConfig, SpectrogramConfig
from .errors import ConfigurationError, RecordingError
from .features import extract_features, feature_names
from .spectrogram import load_raster, load_recording, render_recording, save_raster

RECORDING_PATTERNS = ("*.csv", "*.txt")
RASTER_PATTERNS = ("*.png",)
LABEL_COLUMN = "label"


@dataclass(frozen=True)
class Failure:
    identifier: str
    path: str
    reason: str


@dataclass
class FeatureTable:
    X: np.ndarray
    labels: np.ndarray
    identifiers: np.ndarray
    class_names: Tuple[str, ...]
    raster_size: int
    failures: List[Failure] = field(default_factory=list)

    def __post_init__(self):
        self.X = np.asarray(self.X, dtype=np.float32)
        self.labels = np.asarray(self.labels, dtype=str)
        self.identifiers = np.asarray(self.identifiers, dtype=str)
        self.class_names = tuple(self.class_names)
        n_feat = self.raster_size * self.raster_size
        if self.X.ndim != 2 or self.X.shape[1] != n_feat:
            raise ConfigurationError(
                f"feature matrix must be (n, {n_feat}) for raster size {self.raster_size}, got {self.X.shape}"
            )
        if not (self.X.shape[0] == self.labels.size == self.identifiers.size):
            raise ConfigurationError(
                f"row count mismatch: X={self.X.shape[0]} labels={self.labels.size} ids={self.identifiers.size}"
            )
        unknown = sorted(set(self.labels.tolist()) - set(self.class_names))
        if unknown:
            raise ConfigurationError(f"labels {unknown} are not among declared classes {self.class_names}")

    def __len__(self) -> int:
        return int(self.X.shape[0])

    def class_counts(self) -> Dict[str, int]:
        c = Counter(self.labels.tolist())
        return {name: int(c.get(name, 0)) for name in self.class_names}

    def check_complete(self) -> None:
        for name, n in self.class_counts().items():
            if n == 0:
                raise ConfigurationError(f"Class '{name}' has no examples after corpus assembly")

    def label_view(self, view: str = "multiclass", background_label: str = BACKGROUND_LABEL) -> np.ndarray:
        if view == "multiclass":
            return self.labels.copy()
        if view == "binary":
            if background_label not in self.class_names:
                raise ConfigurationError(
                    f"binary view needs background class '{background_label}' among {self.class_names}"
                )
            return binary_labels(self.labels, background_label)
        raise ConfigurationError(f"Unknown label view '{view}' (use 'multiclass' or 'binary')")

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self.X, columns=feature_names(self.raster_size))
        df.insert(0, LABEL_COLUMN, self.labels)
        return df

    def save(self, out_dir: Path) -> Dict[str, Path]:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        paths = {
            "csv": out_dir / "features.csv",
            "npz": out_dir / "features.npz",
            "failures": out_dir / "failures.csv",
        }
        self.to_frame().to_csv(paths["csv"], index=False)
        np.savez_compressed(
            paths["npz"],
            X=self.X,
            y=self.labels,
            identifiers=self.identifiers,
            class_names=np.array(self.class_names, dtype=object),
            raster_size=np.array([self.raster_size], dtype=np.int64),
        )
        pd.DataFrame(
            [{"identifier": f.identifier, "path": f.path, "reason": f.reason} for f in self.failures],
            columns=["identifier", "path", "reason"],
        ).to_csv(paths["failures"], index=False)
        return paths


@dataclass(frozen=True)
class Partition:
    train_idx: np.ndarray
    holdout_idx: np.ndarray


def binary_labels(labels: Sequence[str], background_label: str = BACKGROUND_LABEL) -> np.ndarray:
    labels = np.asarray(labels, dtype=str)
    return np.where(labels == background_label, background_label, DRONE_LABEL)


def stratified_partition(labels: Sequence[str], holdout_fraction: float, seed: int) -> Partition:
    labels = np.asarray(labels)
    idx = np.arange(labels.size)
    try:
        tr, ho = train_test_split(
            idx, test_size=holdout_fraction, stratify=labels, random_state=seed, shuffle=True
        )
    except ValueError as e:
        raise ConfigurationError(f"Cannot stratify partition: {e}") from e
    return Partition(train_idx=np.sort(tr), holdout_idx=np.sort(ho))


# ----------------------- Corpus scanning -----------------------
def discover_corpus(root: Path, classes: Optional[Sequence[str]] = None,
                    patterns: Sequence[str] = RECORDING_PATTERNS) -> List[Tuple[str, Path]]:
    """Return (class, path) pairs sorted by class order then file name."""
    root = Path(root)
    if not root.is_dir():
        raise ConfigurationError(f"Corpus directory does not exist: {root}")
    if classes is None:
        classes = sorted(p.name for p in root.iterdir() if p.is_dir())
        if not classes:
            raise ConfigurationError(f"No class subdirectories under {root}")

    items: List[Tuple[str, Path]] = []
    for cls in classes:
        d = root / cls
        files = sorted({f for pat in patterns for f in d.glob(pat)}) if d.is_dir() else []
        if not files:
            raise ConfigurationError(f"Class '{cls}' has no files under {d}")
        items.extend((cls, f) for f in files)
    return items


# ----------------------- Per-item workers -----------------------
def _recording_to_vector(path: Path, label: str, cfg: SpectrogramConfig, raster_dir: Optional[Path]):
    try:
        rec = load_recording(path, label, cfg.sample_rate_hz)
        raster = render_recording(rec, cfg)
        if raster_dir is not None:
            save_raster(Path(raster_dir) / label / f"{rec.identifier}.png", raster)
        return extract_features(raster, cfg.flip_vertical), None
    except RecordingError as e:
        return None, e.reason
    except (OSError, ValueError) as e:
        return None, f"{type(e).__name__}: {e}"


def _raster_to_vector(path: Path, label: str, cfg: SpectrogramConfig, raster_dir: Optional[Path] = None):
    try:
        raster = load_raster(path)
        if raster.shape != (cfg.raster_size, cfg.raster_size):
            raise RecordingError(Path(path).stem, f"raster shape {raster.shape} != {cfg.raster_size}x{cfg.raster_size}")
        return extract_features(raster, cfg.flip_vertical), None
    except RecordingError as e:
        return None, e.reason
    except (OSError, ValueError) as e:
        return None, f"{type(e).__name__}: {e}"


def _assemble(items: List[Tuple[str, Path]], cfg: PipelineConfig, worker: Callable,
              raster_dir: Optional[Path], verbose: bool) -> FeatureTable:
    n = len(items)
    S = cfg.spectrogram.raster_size
    X = np.empty((n, S * S), dtype=np.float32)
    labels: List[str] = []
    idents: List[str] = []
    failures: List[Failure] = []
    row = 0

    with Parallel(n_jobs=cfg.n_jobs) as parallel:
        for start in range(0, n, cfg.chunk_size):
            chunk = items[start:start + cfg.chunk_size]
            results = parallel(
                delayed(worker)(p, lab, cfg.spectrogram, raster_dir) for lab, p in chunk
            )
            for (lab, p), (vec, reason) in zip(chunk, results):
                if vec is None:
                    failures.append(Failure(identifier=p.stem, path=str(p), reason=reason))
                    if verbose:
                        print(f"  [WARN] {p.name} -> {reason}")
                    continue
                X[row] = vec
                labels.append(lab)
                idents.append(p.stem)
                row += 1
            del results
            if verbose:
                print(f"[prep] {start + len(chunk)}/{n} processed, {len(failures)} failed")

    table = FeatureTable(
        X=X[:row],
        labels=np.array(labels, dtype=str),
        identifiers=np.array(idents, dtype=str),
        class_names=tuple(dict.fromkeys(lab for lab, _ in items)),
        raster_size=S,
        failures=failures,
    )
    table.check_complete()
    return table


def build_feature_table(corpus_root: Path, cfg: PipelineConfig, raster_dir: Optional[Path] = None,
                        classes: Optional[Sequence[str]] = None, verbose: bool = False) -> FeatureTable:
    """Raw recordings -> rasters (optionally saved) -> feature table."""
    cfg.validate()
    items = discover_corpus(corpus_root, classes if classes is not None else cfg.classes)
    if verbose:
        counts = Counter(lab for lab, _ in items)
        for lab, c in counts.items():
            print(f"  {lab}: {c} files")
    return _assemble(items, cfg, _recording_to_vector, raster_dir, verbose)


def build_feature_table_from_rasters(raster_root: Path, cfg: PipelineConfig,
                                     classes: Optional[Sequence[str]] = None,
                                     verbose: bool = False) -> FeatureTable:
    """Previously rendered rasters -> feature table."""
    cfg.validate()
    items = discover_corpus(raster_root, classes if classes is not None else cfg.classes, RASTER_PATTERNS)
    return _assemble(items, cfg, _raster_to_vector, None, verbose)


# ----------------------- Persistence -----------------------
def load_feature_table(path: Path, classes: Optional[Sequence[str]] = None) -> FeatureTable:
    """Load features.csv or features.npz written by FeatureTable.save."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"feature table does not exist: {path}")
    ext = path.suffix.lower()

    if ext == ".npz":
        d = np.load(path, allow_pickle=True)
        X = d["X"]
        y = d["y"].astype(str)
        ids = d["identifiers"].astype(str) if "identifiers" in d.files else np.array([f"row_{i}" for i in range(len(y))])
        names = [str(c) for c in d["class_names"].tolist()] if "class_names" in d.files else sorted(set(y.tolist()))
        size = int(d["raster_size"][0]) if "raster_size" in d.files else int(round(np.sqrt(X.shape[1])))
    elif ext == ".csv":
        df = pd.read_csv(path)
        if LABEL_COLUMN not in df.columns:
            raise ConfigurationError(f"'{LABEL_COLUMN}' column not found in {path}")
        y = df[LABEL_COLUMN].astype(str).to_numpy()
        X = df.drop(columns=[LABEL_COLUMN]).to_numpy(dtype=np.float32)
        ids = np.array([f"row_{i}" for i in range(len(y))])
        names = sorted(set(y.tolist()))
        size = int(round(np.sqrt(X.shape[1])))
    else:
        raise ConfigurationError(f"Unsupported feature table format '{ext}'. Use .csv or .npz")

    if classes is not None:
        names = list(classes)
    table = FeatureTable(X=X, labels=y, identifiers=ids, class_names=tuple(names), raster_size=size)
    table.check_complete()
    return table
