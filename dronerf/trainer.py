"""
Cross-validated grid search with fold-local preprocessing and undersampling.

For every (hyperparameter combination, fold) unit:
  1. fit the NZV filter + scaler on fold-train rows only
  2. undersample the transformed fold-train rows to the smallest class
  3. fit the learner
  4. transform fold-validation with the fold-train preprocessor, score AUC
Units are independent and run through joblib. Scores are averaged per
combination; the best usable combination (ties -> first in grid order) is
refit on the whole training partition with the same steps.
"""

from __future__ import annotations

import json
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed, dump, load
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics import roc_auc_score
from sklearn.model_selection import ParameterGrid, StratifiedKFold
from sklearn.pipeline import Pipeline

from .config import TrainConfig
from .errors import ConfigurationError, FitError, ModelSelectionError
from .learners import Learner, get_learner
from .preprocess import fit_preprocessor
from .resample import undersample_indices

STATUS_OK = "ok"
STATUS_MISSING_CLASS = "missing_class"
STATUS_FIT_FAILED = "fit_failed"


@dataclass(frozen=True)
class FoldOutcome:
    candidate: int
    fold: int
    status: str
    score: float = float("nan")
    n_train: int = 0
    n_resampled: int = 0
    n_validation: int = 0
    n_features_kept: int = 0
    detail: str = ""
    preprocessor: Optional[Pipeline] = None


@dataclass
class CandidateResult:
    index: int
    params: Dict[str, Any]
    folds: List[FoldOutcome] = field(default_factory=list)

    @property
    def scores(self) -> np.ndarray:
        return np.array([f.score for f in self.folds if f.status == STATUS_OK], dtype=float)

    @property
    def n_folds_scored(self) -> int:
        return int(self.scores.size)

    @property
    def usable(self) -> bool:
        if any(f.status == STATUS_FIT_FAILED for f in self.folds):
            return False
        return self.n_folds_scored > 0

    @property
    def mean_score(self) -> float:
        s = self.scores
        return float(s.mean()) if s.size else float("nan")

    @property
    def std_score(self) -> float:
        s = self.scores
        return float(s.std()) if s.size else float("nan")

    def notes(self) -> str:
        return "; ".join(f"fold{f.fold}:{f.status}:{f.detail}" for f in self.folds if f.status != STATUS_OK)


@dataclass
class FittedModel:
    learner: str
    params: Dict[str, Any]
    classes: Tuple[str, ...]
    preprocessor: Pipeline
    estimator: Any
    n_train: int = 0
    n_resampled: int = 0

    def transform(self, X: np.ndarray) -> np.ndarray:
        return self.preprocessor.transform(X)

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        return self.estimator.predict_proba(self.transform(X))

    def predict(self, X: np.ndarray) -> np.ndarray:
        codes = np.asarray(self.estimator.predict(self.transform(X))).astype(int).ravel()
        return np.asarray(self.classes, dtype=str)[codes]

    def save(self, path: Path) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        dump(self, path)

    @classmethod
    def load(cls, path: Path) -> "FittedModel":
        obj = load(path)
        if not isinstance(obj, cls):
            raise TypeError(f"{path} does not contain a FittedModel")
        return obj


@dataclass
class SearchResult:
    learner: str
    classes: Tuple[str, ...]
    n_folds: int
    candidates: List[CandidateResult]
    best_index: int
    model: FittedModel

    @property
    def best(self) -> CandidateResult:
        return self.candidates[self.best_index]

    @property
    def best_params(self) -> Dict[str, Any]:
        return dict(self.best.params)

    @property
    def best_score(self) -> float:
        return self.best.mean_score

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for c in self.candidates:
            r = {
                "candidate": c.index,
                "params": json.dumps(c.params, sort_keys=True, default=str),
                "mean_auc": c.mean_score,
                "std_auc": c.std_score,
                "n_folds_scored": c.n_folds_scored,
                "n_folds": self.n_folds,
                "usable": c.usable,
                "selected": c.index == self.best_index,
                "notes": c.notes(),
            }
            for f in c.folds:
                r[f"fold{f.fold}_auc"] = f.score
            rows.append(r)
        return pd.DataFrame(rows)


# ----------------------- Units -----------------------
def auc_score(y_codes: np.ndarray, proba: np.ndarray, n_classes: int) -> float:
    """ROC AUC for two classes, macro one-vs-rest AUC otherwise."""
    if n_classes == 2:
        return float(roc_auc_score(y_codes, proba[:, 1]))
    return float(roc_auc_score(y_codes, proba, multi_class="ovr", average="macro", labels=np.arange(n_classes)))


def fit_steps(X: np.ndarray, y_codes: np.ndarray, learner: Learner, params: Dict, n_classes: int,
              train_cfg: TrainConfig, rng: np.random.Generator) -> Tuple[Pipeline, Any, int]:
    """NZV + scale on these rows, undersample, fit. Returns (preprocessor, estimator, n_resampled)."""
    pre = fit_preprocessor(X, train_cfg.nzv_threshold)
    Z = pre.transform(X)
    y = y_codes
    if train_cfg.undersample:
        keep = undersample_indices(y, rng)
        Z, y = Z[keep], y[keep]

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        est = learner.fit(Z, y, params, n_classes=n_classes, seed=train_cfg.seed)
    non_conv = [w for w in caught if issubclass(w.category, ConvergenceWarning)]
    for w in caught:
        if w not in non_conv:
            warnings.warn(w.message, w.category)
    if non_conv:
        raise FitError(f"did not converge: {non_conv[0].message}")
    return pre, est, int(y.size)


def run_fold(X: np.ndarray, y_codes: np.ndarray, train_idx: np.ndarray, val_idx: np.ndarray,
             learner: Learner, params: Dict, n_classes: int, train_cfg: TrainConfig,
             candidate: int = 0, fold: int = 0, keep_fitted: bool = False) -> FoldOutcome:
    ytr = y_codes[train_idx]
    yva = y_codes[val_idx]
    base = dict(candidate=candidate, fold=fold, n_train=int(train_idx.size), n_validation=int(val_idx.size))

    every = set(range(n_classes))
    missing_tr = sorted(every - set(np.unique(ytr).tolist()))
    missing_va = sorted(every - set(np.unique(yva).tolist()))
    if missing_tr or missing_va:
        return FoldOutcome(status=STATUS_MISSING_CLASS,
                           detail=f"missing train={missing_tr} val={missing_va}", **base)

    rng = np.random.default_rng([train_cfg.seed, candidate, fold])
    try:
        pre, est, n_res = fit_steps(X[train_idx], ytr, learner, params, n_classes, train_cfg, rng)
        proba = est.predict_proba(pre.transform(X[val_idx]))
        score = auc_score(yva, proba, n_classes)
        if not np.isfinite(score):
            raise FitError(f"non-finite score {score}")
    except Exception as e:
        return FoldOutcome(status=STATUS_FIT_FAILED, detail=f"{type(e).__name__}: {e}", **base)

    return FoldOutcome(
        status=STATUS_OK,
        score=score,
        n_resampled=n_res,
        n_features_kept=int(pre.named_steps["nzv"].get_support().sum()),
        preprocessor=pre if keep_fitted else None,
        **base,
    )


# ----------------------- Search -----------------------
def encode_labels(y: Sequence[str], classes: Optional[Sequence[str]] = None) -> Tuple[np.ndarray, Tuple[str, ...]]:
    y = np.asarray(y, dtype=str)
    if classes is None:
        classes = sorted(set(y.tolist()))
    classes = tuple(classes)
    lookup = {c: i for i, c in enumerate(classes)}
    unknown = sorted(set(y.tolist()) - set(lookup))
    if unknown:
        raise ConfigurationError(f"labels {unknown} not in class list {classes}")
    return np.array([lookup[v] for v in y], dtype=int), classes


def make_folds(y_codes: np.ndarray, n_folds: int, seed: int) -> List[Tuple[np.ndarray, np.ndarray]]:
    skf = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed)
    try:
        return list(skf.split(np.zeros(y_codes.size), y_codes))
    except ValueError as e:
        raise ConfigurationError(f"Cannot build {n_folds} stratified folds: {e}") from e


def grid_search(X: np.ndarray, y: Sequence[str], learner: Union[str, Learner], grid: Dict[str, List],
                train_cfg: TrainConfig, classes: Optional[Sequence[str]] = None,
                verbose: bool = False) -> SearchResult:
    """Cross-validate every grid combination, select the best, refit on all rows."""
    if train_cfg.n_folds < 2:
        raise ConfigurationError(f"n_folds must be >= 2, got {train_cfg.n_folds}")
    if isinstance(learner, str):
        learner = get_learner(learner)
    X = np.asarray(X)
    codes, classes = encode_labels(y, classes)
    n_classes = len(classes)
    if n_classes < 2:
        raise ConfigurationError(f"Need at least two classes to train, got {classes}")

    combos = list(ParameterGrid(grid))
    folds = make_folds(codes, train_cfg.n_folds, train_cfg.seed)
    if verbose:
        print(f"[cv] {learner.name}: {len(combos)} combinations x {len(folds)} folds "
              f"on {X.shape[0]} rows, classes={list(classes)}")

    outcomes = Parallel(n_jobs=train_cfg.n_jobs)(
        delayed(run_fold)(X, codes, tr, va, learner, params, n_classes, train_cfg, ci, fi)
        for ci, params in enumerate(combos)
        for fi, (tr, va) in enumerate(folds)
    )

    candidates = [CandidateResult(index=ci, params=dict(p)) for ci, p in enumerate(combos)]
    for o in outcomes:
        candidates[o.candidate].folds.append(o)
    for c in candidates:
        c.folds.sort(key=lambda f: f.fold)
        if verbose:
            flag = "" if c.usable else "  [excluded]"
            print(f"[cv] {learner.name} {c.params}: AUC {c.mean_score:.4f} +/- {c.std_score:.4f} "
                  f"({c.n_folds_scored}/{len(folds)} folds){flag}")

    usable = [c for c in candidates if c.usable]
    if not usable:
        detail = "; ".join(f"{c.params}: {c.notes()}" for c in candidates)
        raise ModelSelectionError(f"{learner.name}: no usable hyperparameter combination ({detail})")
    best = max(usable, key=lambda c: (c.mean_score, -c.index))

    rng = np.random.default_rng(train_cfg.seed)
    try:
        pre, est, n_res = fit_steps(X, codes, learner, best.params, n_classes, train_cfg, rng)
    except Exception as e:
        raise ModelSelectionError(f"{learner.name}: final fit with {best.params} failed: {e}") from e

    model = FittedModel(
        learner=learner.name,
        params=dict(best.params),
        classes=classes,
        preprocessor=pre,
        estimator=est,
        n_train=int(X.shape[0]),
        n_resampled=n_res,
    )
    if verbose:
        print(f"[cv] {learner.name} selected {best.params} (AUC {best.mean_score:.4f}); "
              f"final fit on {n_res}/{X.shape[0]} rows")
    return SearchResult(
        learner=learner.name,
        classes=classes,
        n_folds=len(folds),
        candidates=candidates,
        best_index=best.index,
        model=model,
    )
