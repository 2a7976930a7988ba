"""
Run configuration for the drone RF pipeline.

Every component receives a PipelineConfig (or one of its parts) explicitly.
Values can come from the defaults below, a JSON file and CLI flags, in that
order of precedence (later wins). The dict returned by ``to_dict`` is what
gets written to meta.json next to the artifacts of each run.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError

# ----------------------- Defaults -----------------------
DEFAULT_SAMPLE_RATE_HZ = 40_000_000.0
DEFAULT_WINDOW_S = 2.56e-5           # 1024 samples @ 40 MHz
DEFAULT_WINDOW = "hamming"
DEFAULT_OVERLAP = 0.5
DEFAULT_RASTER_SIZE = 122
EPS = 1e-12

DEFAULT_CLASSES = ("ar", "bebop", "phantom", "background")
BACKGROUND_LABEL = "background"
DRONE_LABEL = "drone"

DEFAULT_HOLDOUT_FRACTION = 0.25
SEED = 42
DEFAULT_FOLDS = 5
DEFAULT_NZV_THRESHOLD = 1e-5

SUPPORTED_WINDOWS = ("hamming", "hann", "blackman", "boxcar", "bartlett")
SUPPORTED_SCALES = ("db", "linear")

DEFAULT_GRIDS: Dict[str, Dict[str, List]] = {
    "logreg": {
        "C": [0.001, 0.01, 0.1, 1.0],
    },
    "rf": {
        "n_estimators": [300],
        "max_features": ["sqrt", 0.05],
        "min_samples_leaf": [1, 3],
    },
    "xgb": {
        "n_estimators": [200],
        "max_depth": [4, 6],
        "learning_rate": [0.05, 0.1],
    },
}


@dataclass(frozen=True)
class SpectrogramConfig:
    sample_rate_hz: float = DEFAULT_SAMPLE_RATE_HZ
    window_s: float = DEFAULT_WINDOW_S
    window: str = DEFAULT_WINDOW
    overlap: float = DEFAULT_OVERLAP
    raster_size: int = DEFAULT_RASTER_SIZE
    pad_short: bool = True
    amplitude_scale: str = "db"
    flip_vertical: bool = True

    @property
    def window_length(self) -> int:
        return int(round(self.window_s * self.sample_rate_hz))

    @property
    def step(self) -> int:
        return max(1, int(round(self.window_length * (1.0 - self.overlap))))

    @property
    def n_features(self) -> int:
        return self.raster_size * self.raster_size

    def validate(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ConfigurationError(f"sample_rate_hz must be positive, got {self.sample_rate_hz}")
        if self.window_length < 2:
            raise ConfigurationError(
                f"window of {self.window_s}s at {self.sample_rate_hz} Hz is {self.window_length} samples; need >= 2"
            )
        if not 0.0 <= self.overlap < 1.0:
            raise ConfigurationError(f"overlap must be in [0, 1), got {self.overlap}")
        if self.window not in SUPPORTED_WINDOWS:
            raise ConfigurationError(f"Unknown window '{self.window}'. Use one of {SUPPORTED_WINDOWS}")
        if self.amplitude_scale not in SUPPORTED_SCALES:
            raise ConfigurationError(f"Unknown amplitude_scale '{self.amplitude_scale}'")
        if self.raster_size < 2:
            raise ConfigurationError(f"raster_size must be >= 2, got {self.raster_size}")


@dataclass(frozen=True)
class SplitConfig:
    holdout_fraction: float = DEFAULT_HOLDOUT_FRACTION
    seed: int = SEED

    def validate(self) -> None:
        if not 0.0 < self.holdout_fraction < 1.0:
            raise ConfigurationError(f"holdout_fraction must be in (0, 1), got {self.holdout_fraction}")


@dataclass(frozen=True)
class TrainConfig:
    n_folds: int = DEFAULT_FOLDS
    undersample: bool = True
    nzv_threshold: float = DEFAULT_NZV_THRESHOLD
    seed: int = SEED
    n_jobs: int = 1
    learners: Tuple[str, ...] = ("logreg", "rf")
    grids: Dict[str, Dict[str, List]] = field(default_factory=lambda: {k: dict(v) for k, v in DEFAULT_GRIDS.items()})

    def grid_for(self, learner: str) -> Dict[str, List]:
        if learner not in self.grids:
            raise ConfigurationError(f"No hyperparameter grid configured for learner '{learner}'")
        return self.grids[learner]

    def validate(self) -> None:
        if self.n_folds < 2:
            raise ConfigurationError(f"n_folds must be >= 2, got {self.n_folds}")
        if self.nzv_threshold < 0:
            raise ConfigurationError(f"nzv_threshold must be >= 0, got {self.nzv_threshold}")
        for name in self.learners:
            grid = self.grid_for(name)
            for key, values in grid.items():
                if not isinstance(values, (list, tuple)) or len(values) == 0:
                    raise ConfigurationError(f"grid '{name}.{key}' must be a non-empty list")


@dataclass(frozen=True)
class PipelineConfig:
    spectrogram: SpectrogramConfig = field(default_factory=SpectrogramConfig)
    split: SplitConfig = field(default_factory=SplitConfig)
    train: TrainConfig = field(default_factory=TrainConfig)
    classes: Tuple[str, ...] = DEFAULT_CLASSES
    background_label: str = BACKGROUND_LABEL
    n_jobs: int = 1
    chunk_size: int = 64

    def validate(self) -> "PipelineConfig":
        self.spectrogram.validate()
        self.split.validate()
        self.train.validate()
        if len(set(self.classes)) != len(self.classes):
            raise ConfigurationError(f"Duplicate class names in {self.classes}")
        if self.chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {self.chunk_size}")
        return self

    def with_overrides(self, spectrogram: Optional[dict] = None, split: Optional[dict] = None,
                       train: Optional[dict] = None, **top) -> "PipelineConfig":
        """Return a copy with the given fields replaced. None values are ignored."""
        def clean(d):
            return {k: v for k, v in (d or {}).items() if v is not None}

        cfg = self
        if clean(spectrogram):
            cfg = replace(cfg, spectrogram=replace(cfg.spectrogram, **clean(spectrogram)))
        if clean(split):
            cfg = replace(cfg, split=replace(cfg.split, **clean(split)))
        if clean(train):
            t = clean(train)
            if "learners" in t:
                t["learners"] = tuple(t["learners"])
            if "grids" in t:
                t["grids"] = {**cfg.train.grids, **t["grids"]}
            cfg = replace(cfg, train=replace(cfg.train, **t))
        top = clean(top)
        if "classes" in top:
            top["classes"] = tuple(top["classes"])
        if top:
            cfg = replace(cfg, **top)
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "PipelineConfig":
        known = {"spectrogram", "split", "train", "classes", "background_label", "n_jobs", "chunk_size"}
        unknown = set(d) - known
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {sorted(unknown)}")
        try:
            top = {k: v for k, v in d.items() if k not in ("spectrogram", "split", "train")}
            return cls().with_overrides(
                spectrogram=d.get("spectrogram"), split=d.get("split"), train=d.get("train"), **top
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid config: {e}") from e

    @classmethod
    def from_json(cls, path: Path) -> "PipelineConfig":
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file does not exist: {path}")
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def binary_label(native: str, background_label: str = BACKGROUND_LABEL) -> str:
    return background_label if native == background_label else DRONE_LABEL
