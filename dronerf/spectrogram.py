"""
Recording loading, STFT magnitude spectrogram and fixed-size raster rendering.

Raster convention (applies to every recording):
  - shape (S, S), dtype uint8
  - rows are frequency, row 0 = highest frequency (as a plotted spectrogram)
  - columns are time, column 0 = start of the recording
  - low amplitude -> white (255), high amplitude -> black (0)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
from scipy import signal

import matplotlib
matplotlib.use("Agg")  # headless
import matplotlib.pyplot as plt

from .config import EPS, SpectrogramConfig
from .errors import RecordingError, RecordingTooShortError


@dataclass(frozen=True)
class Recording:
    samples: np.ndarray
    sample_rate_hz: float
    label: str
    identifier: str

    def __post_init__(self):
        self.samples.setflags(write=False)

    @property
    def duration_s(self) -> float:
        return self.samples.size / self.sample_rate_hz


@dataclass(frozen=True)
class Spectrogram:
    magnitude: np.ndarray   # (n_time_bins, n_freq_bins)
    freqs_hz: np.ndarray
    times_s: np.ndarray
    padded: bool = False

    @property
    def n_time_bins(self) -> int:
        return int(self.magnitude.shape[0])

    @property
    def n_freq_bins(self) -> int:
        return int(self.magnitude.shape[1])


# ----------------------- IO -----------------------
def load_recording(path: Path, label: str, sample_rate_hz: float) -> Recording:
    """Read a numeric text/CSV sample dump (one row or one column of values)."""
    path = Path(path)
    ident = path.stem
    try:
        with open(path, "r", encoding="utf-8") as f:
            head = f.read(4096)
        delim = "," if "," in head else None
        x = np.loadtxt(path, delimiter=delim, dtype=np.float64, ndmin=1)
    except (OSError, ValueError, UnicodeDecodeError) as e:
        raise RecordingError(ident, f"unreadable: {e}") from e

    if x.ndim == 2 and min(x.shape) > 1:
        raise RecordingError(ident, f"expected a single channel, got shape {x.shape}")
    x = np.ascontiguousarray(x.ravel())
    if x.size == 0:
        raise RecordingError(ident, "empty recording")
    if not np.all(np.isfinite(x)):
        raise RecordingError(ident, "non-finite samples")
    return Recording(samples=x, sample_rate_hz=float(sample_rate_hz), label=label, identifier=ident)


def save_raster(path: Path, raster: np.ndarray) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    # grey as uint8 RGB so the PNG holds the exact raster values
    rgb = np.repeat(np.asarray(raster, dtype=np.uint8)[..., None], 3, axis=-1)
    plt.imsave(path, rgb)


def load_raster(path: Path) -> np.ndarray:
    """Read a raster PNG back as a (S, S) uint8 grid."""
    path = Path(path)
    try:
        img = plt.imread(path)
    except (OSError, ValueError, SyntaxError) as e:
        raise RecordingError(path.stem, f"unreadable raster: {e}") from e
    if img.ndim == 3:
        img = img[..., 0]
    if img.dtype != np.uint8:
        img = np.round(np.clip(img, 0.0, 1.0) * 255.0).astype(np.uint8)
    return img


# ----------------------- STFT -----------------------
def compute_spectrogram(samples: np.ndarray, cfg: SpectrogramConfig, identifier: str = "recording") -> Spectrogram:
    """
    Magnitude STFT with floor((N - N_w) / step) + 1 time bins and N_w//2 + 1
    frequency bins. No boundary extension; recordings shorter than one window
    are zero-padded to exactly one window when cfg.pad_short is set.
    """
    x = np.asarray(samples, dtype=np.float64).ravel()
    n_w = cfg.window_length
    padded = False
    if x.size < n_w:
        if not cfg.pad_short:
            raise RecordingTooShortError(identifier, f"{x.size} samples < window of {n_w}")
        x = np.pad(x, (0, n_w - x.size))
        padded = True

    f, t, Sxx = signal.spectrogram(
        x,
        fs=cfg.sample_rate_hz,
        window=cfg.window,
        nperseg=n_w,
        noverlap=n_w - cfg.step,
        detrend=False,
        return_onesided=True,
        scaling="spectrum",
        mode="magnitude",
    )  # Sxx: (F, T)
    return Spectrogram(magnitude=Sxx.T, freqs_hz=f, times_s=t, padded=padded)


# ----------------------- Raster -----------------------
def _resample_axis(a: np.ndarray, size: int, axis: int) -> np.ndarray:
    """Block-average down or linearly interpolate up to `size` along `axis`."""
    n = a.shape[axis]
    if n == size:
        return a
    shape = [1] * a.ndim
    shape[axis] = size
    if n > size:
        edges = np.floor(np.linspace(0, n, size + 1)).astype(int)
        sums = np.add.reduceat(a, edges[:-1], axis=axis)
        return sums / np.diff(edges).reshape(shape)
    pos = np.linspace(0.0, n - 1, size)
    lo = np.floor(pos).astype(int)
    hi = np.minimum(lo + 1, n - 1)
    w = (pos - lo).reshape(shape)
    return np.take(a, lo, axis=axis) * (1.0 - w) + np.take(a, hi, axis=axis) * w


def rasterize(spec: Spectrogram, cfg: SpectrogramConfig) -> np.ndarray:
    S = cfg.raster_size
    A = spec.magnitude.T[::-1, :]            # (F, T), highest frequency on top
    A = _resample_axis(A, S, axis=0)
    A = _resample_axis(A, S, axis=1)
    if cfg.amplitude_scale == "db":
        A = 20.0 * np.log10(A + EPS)

    lo, hi = float(A.min()), float(A.max())
    if hi > lo:
        u = (A - lo) / (hi - lo)
    else:
        u = np.zeros_like(A)
    intensity = 1.0 - u                      # white = low amplitude
    return np.round(intensity * 255.0).astype(np.uint8)


def render_recording(rec: Recording, cfg: SpectrogramConfig) -> np.ndarray:
    spec = compute_spectrogram(rec.samples, cfg, identifier=rec.identifier)
    return rasterize(spec, cfg)
