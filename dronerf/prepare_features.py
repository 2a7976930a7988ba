# prepare_features.py
"""
Render RF recordings to spectrogram rasters and cache the feature table.

Input:
  <corpus>/<class>/*.csv|*.txt     one recording per file, fixed sample rate
Outputs under <out>/prep_run_YYYYmmdd_HHMMSS/:
  rasters/<class>/<id>.png         S x S greyscale rasters (unless --no_rasters)
  features.csv                     label + S*S pixel columns
  features.npz                     same table, compressed, with identifiers
  failures.csv                     recordings skipped and why
  meta.json                        configuration + class counts
"""

from __future__ import annotations

import argparse
import time
from pathlib import Path

from .artifacts import PREP_PREFIX, now_run_dir, save_json
from .config import PipelineConfig
from .dataset import build_feature_table, build_feature_table_from_rasters


# ----------------------- CLI -----------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Extract spectrogram raster features from an RF corpus.")
    p.add_argument("--corpus", type=str, required=True,
                   help="Root with one subfolder per class (or rendered rasters with --from_rasters).")
    p.add_argument("--out", type=str, default="./artifacts",
                   help="Artifacts root; outputs saved under out/prep_run_YYYYmmdd_HHMMSS")
    p.add_argument("--run_name", type=str, default=None)
    p.add_argument("--config", type=str, default=None, help="JSON config file (flags below override it).")
    p.add_argument("--classes", type=str, default=None,
                   help="Comma-separated class names (= subfolder names).")
    p.add_argument("--sample_rate", type=float, default=None, help="Sampling rate (Hz).")
    p.add_argument("--window_s", type=float, default=None, help="STFT window duration (s).")
    p.add_argument("--window", type=str, default=None, help="Window function (hamming, hann, ...).")
    p.add_argument("--overlap", type=float, default=None, help="Window overlap fraction in [0, 1).")
    p.add_argument("--raster_size", type=int, default=None, help="Raster side S (S*S features).")
    p.add_argument("--no_pad", action="store_true",
                   help="Skip recordings shorter than one window instead of zero-padding them.")
    p.add_argument("--no_flip", action="store_true", help="Do not flip rasters vertically before flattening.")
    p.add_argument("--n_jobs", type=int, default=None)
    p.add_argument("--chunk_size", type=int, default=None)
    p.add_argument("--from_rasters", action="store_true",
                   help="--corpus holds previously rendered rasters; skip the STFT stage.")
    p.add_argument("--no_rasters", action="store_true", help="Do not write raster PNGs.")
    return p.parse_args(argv)


def config_from_args(a) -> PipelineConfig:
    cfg = PipelineConfig.from_json(Path(a.config)) if a.config else PipelineConfig()
    classes = [c.strip() for c in a.classes.split(",") if c.strip()] if a.classes else None
    return cfg.with_overrides(
        spectrogram=dict(
            sample_rate_hz=a.sample_rate,
            window_s=a.window_s,
            window=a.window,
            overlap=a.overlap,
            raster_size=a.raster_size,
            pad_short=False if a.no_pad else None,
            flip_vertical=False if a.no_flip else None,
        ),
        classes=classes,
        n_jobs=a.n_jobs,
        chunk_size=a.chunk_size,
    ).validate()


# ----------------------- Main -----------------------
def main(argv=None):
    a = parse_args(argv)
    cfg = config_from_args(a)
    corpus = Path(a.corpus)
    out_dir = now_run_dir(Path(a.out), PREP_PREFIX, a.run_name)

    sc = cfg.spectrogram
    print(f"[INFO] Using corpus: {corpus}")
    print(f"[INFO] fs={sc.sample_rate_hz:g} Hz  window={sc.window}/{sc.window_length} samples  "
          f"step={sc.step}  raster={sc.raster_size}x{sc.raster_size}")

    t0 = time.time()
    if a.from_rasters:
        table = build_feature_table_from_rasters(corpus, cfg, verbose=True)
    else:
        raster_dir = None if a.no_rasters else out_dir / "rasters"
        table = build_feature_table(corpus, cfg, raster_dir=raster_dir, verbose=True)

    paths = table.save(out_dir)
    counts = table.class_counts()
    save_json(out_dir / "meta.json", {
        "config": cfg.to_dict(),
        "corpus": str(corpus),
        "from_rasters": bool(a.from_rasters),
        "class_counts": counts,
        "n_rows": len(table),
        "n_features": int(table.X.shape[1]),
        "n_failures": len(table.failures),
        "elapsed_s": round(time.time() - t0, 3),
    })

    print(f"[prep] saved -> {paths['csv']}  shape={table.X.shape}")
    for cls, n in counts.items():
        print(f"  {cls}: {n}")
    if table.failures:
        print(f"[WARN] {len(table.failures)} recordings skipped (see {paths['failures']}):")
        for f in table.failures:
            print(f"  {f.identifier}: {f.reason}")
    print(f"Done. Artifacts under: {out_dir}")
    return out_dir


if __name__ == "__main__":
    main()
