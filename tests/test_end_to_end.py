import json
from collections import Counter

import pandas as pd
import pytest

from dronerf import prepare_features, train_eval
from dronerf.dataset import build_feature_table
from dronerf.errors import ConfigurationError
from dronerf.train_eval import run_task


@pytest.fixture
def table(corpus, small_cfg):
    return build_feature_table(corpus, small_cfg)


@pytest.mark.parametrize("task,classes", [
    ("multiclass", ["ar", "background", "bebop", "phantom"]),
    ("binary", ["background", "drone"]),
])
def test_run_task(table, small_cfg, task, classes):
    (res,) = run_task(table, task, small_cfg)
    ev = res.evaluation
    assert list(ev.classes) == classes
    assert res.search.best.usable

    labels = table.label_view(task)
    y_ho = labels[res.partition.holdout_idx]
    assert ev.confusion.sum(axis=1).tolist() == [int((y_ho == c).sum()) for c in classes]
    assert ev.confusion.sum(axis=0).tolist() == [int((ev.y_pred == c).sum()) for c in classes]
    assert ev.confusion.sum() == res.partition.holdout_idx.size
    # tones are easy to tell apart from noise
    assert ev.metrics["balanced_accuracy"] > 0.7


def test_tasks_use_their_own_partitions(table, small_cfg):
    (mc,) = run_task(table, "multiclass", small_cfg)
    (bi,) = run_task(table, "binary", small_cfg)
    assert mc.partition.holdout_idx.size == bi.partition.holdout_idx.size == 12
    assert Counter(table.labels[mc.partition.holdout_idx].tolist()) == {
        "ar": 3, "bebop": 3, "phantom": 3, "background": 3,
    }
    assert Counter(table.label_view("binary")[bi.partition.holdout_idx].tolist()) == {
        "drone": 9, "background": 3,
    }


def test_unknown_task(table, small_cfg):
    with pytest.raises(ConfigurationError, match="Unknown task"):
        run_task(table, "regression", small_cfg)


def test_cli_prepare_then_train(corpus, tmp_path):
    cfg_path = tmp_path / "cfg.json"
    cfg_path.write_text(json.dumps({
        "spectrogram": {"sample_rate_hz": 1000.0, "window_s": 0.064, "raster_size": 16},
        "split": {"holdout_fraction": 0.25, "seed": 7},
        "train": {"n_folds": 3, "learners": ["logreg"], "grids": {"logreg": {"C": [0.1, 1.0]}}},
        "classes": ["ar", "bebop", "phantom", "background"],
        "chunk_size": 10,
    }))
    art = tmp_path / "artifacts"

    prep_dir = prepare_features.main(["--corpus", str(corpus), "--out", str(art), "--config", str(cfg_path)])
    assert prep_dir.name.startswith("prep_run_")
    for name in ("features.csv", "features.npz", "failures.csv", "meta.json"):
        assert (prep_dir / name).exists()
    assert len(list((prep_dir / "rasters" / "ar").glob("*.png"))) == 12
    meta = json.loads((prep_dir / "meta.json").read_text())
    assert meta["n_rows"] == 48 and meta["n_features"] == 256

    run_dir = train_eval.main(["--out", str(art), "--config", str(cfg_path), "--run_name", "train"])
    assert run_dir == art / "train"
    for task in ("binary", "multiclass"):
        d = run_dir / task / "logreg"
        for name in ("cv_results.csv", "best_params.txt", "model.joblib", "holdout_cm.csv",
                     "holdout_cm.png", "holdout_cm_rownorm.png", "holdout_metrics.csv",
                     "holdout_per_class.csv", "summary.txt"):
            assert (d / name).exists(), f"{task}/{name}"
        cv = pd.read_csv(d / "cv_results.csv")
        assert len(cv) == 2 and cv["selected"].sum() == 1

    summary = pd.read_csv(run_dir / "summary.csv")
    assert sorted(summary["task"]) == ["binary", "multiclass"]
    meta = json.loads((run_dir / "run_meta.json").read_text())
    assert meta["config"]["train"]["n_folds"] == 3
