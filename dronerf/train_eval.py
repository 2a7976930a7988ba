# train_eval.py
"""
Cross-validated model selection and hold-out evaluation on a cached feature table.

Tasks:
  binary      background vs drone (every non-background class collapsed)
  multiclass  native labels
Each task draws its own stratified train/hold-out partition from the same
feature rows. For every learner: k-fold grid search on the training
partition, final refit, scoring on the untouched hold-out partition.

Outputs under <out>/train_run_YYYYmmdd_HHMMSS/<task>/<learner>/:
  cv_results.csv, best_params.txt, model.joblib,
  holdout_cm.csv, holdout_cm.png, holdout_cm_rownorm.png,
  holdout_metrics.csv, holdout_per_class.csv, summary.txt
and <out>/train_run_*/summary.csv, run_meta.json.
"""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

from .artifacts import TRAIN_PREFIX, now_run_dir, plot_confusion_matrix, resolve_features, save_csv_dict, save_json
from .config import PipelineConfig
from .dataset import FeatureTable, Partition, load_feature_table, stratified_partition
from .errors import ConfigurationError
from .evaluate import EvaluationResult, evaluate
from .trainer import SearchResult, grid_search

TASKS = ("binary", "multiclass")


@dataclass
class TaskResult:
    task: str
    learner: str
    partition: Partition
    search: SearchResult
    evaluation: EvaluationResult


def run_task(table: FeatureTable, task: str, cfg: PipelineConfig,
             learners: Optional[Sequence[str]] = None, verbose: bool = False) -> List[TaskResult]:
    if task not in TASKS:
        raise ConfigurationError(f"Unknown task '{task}'. Use one of {TASKS}")
    table.check_complete()
    labels = table.label_view(task, cfg.background_label)
    part = stratified_partition(labels, cfg.split.holdout_fraction, cfg.split.seed)
    Xtr, ytr = table.X[part.train_idx], labels[part.train_idx]
    Xho, yho = table.X[part.holdout_idx], labels[part.holdout_idx]
    if verbose:
        print(f"[{task}] train {Xtr.shape}  holdout {Xho.shape}")
        for c in sorted(set(labels.tolist())):
            print(f"  {c}: train={int((ytr == c).sum())} holdout={int((yho == c).sum())}")

    results = []
    for name in (learners or cfg.train.learners):
        search = grid_search(Xtr, ytr, name, cfg.train.grid_for(name), cfg.train, verbose=verbose)
        ev = evaluate(search.model, Xho, yho)
        if verbose:
            print(f"[eval] {task}/{name}: balanced_accuracy={ev.metrics['balanced_accuracy']:.4f}")
        results.append(TaskResult(task=task, learner=name, partition=part, search=search, evaluation=ev))
    return results


def write_task_artifacts(res: TaskResult, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    res.search.to_frame().to_csv(out_dir / "cv_results.csv", index=False)

    with open(out_dir / "best_params.txt", "w", encoding="utf-8") as f:
        for k, v in res.search.best_params.items():
            f.write(f"{k} = {v}\n")
        f.write(f"best_cv_auc = {res.search.best_score:.6f}\n")
        f.write(f"folds_scored = {res.search.best.n_folds_scored}/{res.search.n_folds}\n")

    res.search.model.save(out_dir / "model.joblib")

    ev = res.evaluation
    np.savetxt(out_dir / "holdout_cm.csv", ev.confusion, fmt="%d", delimiter=",")
    title = f"{res.learner.upper()} {res.task} HOLD-OUT CM"
    plot_confusion_matrix(ev.confusion, ev.classes, False, title, out_dir / "holdout_cm.png")
    plot_confusion_matrix(ev.confusion, ev.classes, True, f"{title} (row-norm)", out_dir / "holdout_cm_rownorm.png")
    save_csv_dict(out_dir / "holdout_metrics.csv", ev.summary_rows(), ["metric", "value"])
    ev.per_class.to_csv(out_dir / "holdout_per_class.csv", index=False)

    with open(out_dir / "summary.txt", "w", encoding="utf-8") as f:
        f.write(f"task = {res.task}\n")
        f.write(f"learner = {res.learner}\n")
        f.write(f"cv_auc = {res.search.best_score:.6f}\n")
        for k, v in ev.metrics.items():
            f.write(f"holdout_{k} = {v:.6f}\n")


# ----------------------- CLI -----------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Cross-validated training and hold-out evaluation on cached features.")
    p.add_argument("--features", type=str, default=None,
                   help="features.npz / features.csv or a prep_run_* folder "
                        "(defaults to latest prep_run_* under --out).")
    p.add_argument("--out", type=str, default="./artifacts", help="Artifacts root.")
    p.add_argument("--run_name", type=str, default=None)
    p.add_argument("--config", type=str, default=None, help="JSON config file (flags below override it).")
    p.add_argument("--tasks", type=str, default=",".join(TASKS), help="Comma list of binary,multiclass.")
    p.add_argument("--learners", type=str, default=None, help="Comma list of logreg,rf,xgb.")
    p.add_argument("--folds", type=int, default=None)
    p.add_argument("--holdout", type=float, default=None, help="Hold-out fraction.")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--nzv_threshold", type=float, default=None)
    p.add_argument("--no_undersample", action="store_true")
    p.add_argument("--n_jobs", type=int, default=None)
    return p.parse_args(argv)


def config_from_args(a) -> PipelineConfig:
    cfg = PipelineConfig.from_json(Path(a.config)) if a.config else PipelineConfig()
    learners = [s.strip() for s in a.learners.split(",") if s.strip()] if a.learners else None
    return cfg.with_overrides(
        split=dict(holdout_fraction=a.holdout, seed=a.seed),
        train=dict(
            n_folds=a.folds,
            seed=a.seed,
            nzv_threshold=a.nzv_threshold,
            undersample=False if a.no_undersample else None,
            n_jobs=a.n_jobs,
            learners=learners,
        ),
    ).validate()


def main(argv=None):
    a = parse_args(argv)
    cfg = config_from_args(a)
    out_root = Path(a.out)
    tasks = [t.strip() for t in a.tasks.split(",") if t.strip()]

    feats = resolve_features(a.features, out_root)
    print(f"Using features: {feats}")
    table = load_feature_table(feats)
    print(f"Rows {len(table)}  #Features: {table.X.shape[1]} | Classes: {table.class_counts()}")

    run_dir = now_run_dir(out_root, TRAIN_PREFIX, a.run_name)
    t0 = time.time()
    summary = []
    for task in tasks:
        for res in run_task(table, task, cfg, verbose=True):
            d = run_dir / task / res.learner
            write_task_artifacts(res, d)
            row = {"task": task, "learner": res.learner, "cv_auc": res.search.best_score}
            row.update({f"holdout_{k}": v for k, v in res.evaluation.metrics.items()})
            summary.append(row)
            print(f"[{task}] {res.learner} done -> {d}")

    fields = sorted({k for r in summary for k in r}, key=lambda k: (k not in ("task", "learner", "cv_auc"), k))
    save_csv_dict(run_dir / "summary.csv", summary, fields)
    save_json(run_dir / "run_meta.json", {
        "features": str(feats),
        "config": cfg.to_dict(),
        "tasks": tasks,
        "class_counts": table.class_counts(),
        "elapsed_s": round(time.time() - t0, 3),
    })
    print(f"Done. Artifacts under: {run_dir}")
    return run_dir


if __name__ == "__main__":
    main()
