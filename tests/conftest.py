from pathlib import Path

import numpy as np
import pytest

from dronerf.config import PipelineConfig, SpectrogramConfig, SplitConfig, TrainConfig

FS_HZ = 1000.0
TONES_HZ = {"ar": 80.0, "bebop": 190.0, "phantom": 320.0}


def tone_recording(label: str, n_samples: int, rng: np.random.Generator) -> np.ndarray:
    t = np.arange(n_samples) / FS_HZ
    x = 0.2 * rng.standard_normal(n_samples)
    f0 = TONES_HZ.get(label)
    if f0 is not None:
        x += np.sin(2 * np.pi * (f0 + rng.uniform(-5, 5)) * t + rng.uniform(0, 2 * np.pi))
    return x


def write_corpus(root: Path, counts: dict, n_samples: int = 512, seed: int = 0) -> Path:
    rng = np.random.default_rng(seed)
    for label, n in counts.items():
        d = root / label
        d.mkdir(parents=True, exist_ok=True)
        for i in range(n):
            x = tone_recording(label, n_samples, rng)
            np.savetxt(d / f"{label}_{i:03d}.csv", x[None, :], delimiter=",", fmt="%.6f")
    return root


@pytest.fixture
def spec_cfg():
    # 64-sample Hamming window, 32-sample step, 16x16 raster
    return SpectrogramConfig(sample_rate_hz=FS_HZ, window_s=0.064, overlap=0.5, raster_size=16)


@pytest.fixture
def small_cfg(spec_cfg):
    return PipelineConfig(
        spectrogram=spec_cfg,
        split=SplitConfig(holdout_fraction=0.25, seed=7),
        train=TrainConfig(n_folds=5, learners=("logreg",), grids={"logreg": {"C": [0.1, 1.0]}}),
        classes=("ar", "bebop", "phantom", "background"),
        chunk_size=5,
    )


@pytest.fixture
def corpus(tmp_path):
    counts = {"ar": 12, "bebop": 12, "phantom": 12, "background": 12}
    return write_corpus(tmp_path / "corpus", counts)


@pytest.fixture
def blobs():
    """Three well separated Gaussian classes in 20 dims, plus two constant columns."""
    rng = np.random.default_rng(3)
    centers = rng.normal(0, 3, size=(3, 20))
    sizes = [30, 20, 10]
    X = np.vstack([c + rng.normal(0, 1, size=(n, 20)) for c, n in zip(centers, sizes)])
    X[:, 5] = 0.0
    X[:, 11] = 1.5
    y = np.repeat(np.array(["a", "b", "c"]), sizes)
    return X, y
