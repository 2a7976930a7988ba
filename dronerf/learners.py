"""
Pluggable learner families.

A learner turns (X, y, hyperparameters) into a fitted estimator exposing
``predict`` and ``predict_proba``. Labels passed in are integer codes
0..K-1; the trainer owns the mapping back to class names.
"""

from __future__ import annotations

from typing import Dict, Optional

import numpy as np
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from xgboost import XGBClassifier

from .config import SEED
from .errors import ConfigurationError


class Learner:
    name = "base"

    def build(self, params: Dict, n_classes: int, seed: int):
        raise NotImplementedError

    def fit(self, X: np.ndarray, y: np.ndarray, params: Dict, n_classes: Optional[int] = None, seed: int = SEED):
        k = n_classes if n_classes is not None else int(np.unique(y).size)
        est = self.build(dict(params), k, seed)
        est.fit(X, y)
        return est


class LogRegLearner(Learner):
    """L2-regularised logistic regression; C is the inverse penalty strength."""

    name = "logreg"

    def build(self, params, n_classes, seed):
        kw = dict(solver="lbfgs", max_iter=2000, random_state=seed)
        kw.update(params)
        return LogisticRegression(**kw)


class RandomForestLearner(Learner):
    name = "rf"

    def build(self, params, n_classes, seed):
        kw = dict(n_estimators=300, max_features="sqrt", n_jobs=1, random_state=seed)
        kw.update(params)
        return RandomForestClassifier(**kw)


class XGBLearner(Learner):
    name = "xgb"

    def build(self, params, n_classes, seed):
        if n_classes == 2:
            kw = dict(objective="binary:logistic", eval_metric="logloss")
        else:
            kw = dict(objective="multi:softprob", num_class=n_classes, eval_metric="mlogloss")
        kw.update(
            tree_method="hist",
            n_estimators=200,
            max_depth=6,
            learning_rate=0.1,
            subsample=0.9,
            colsample_bytree=0.9,
            random_state=seed,
            n_jobs=1,
        )
        kw.update(params)
        return XGBClassifier(**kw)


LEARNERS: Dict[str, Learner] = {
    l.name: l for l in (LogRegLearner(), RandomForestLearner(), XGBLearner())
}


def get_learner(name: str) -> Learner:
    if name not in LEARNERS:
        raise ConfigurationError(f"Unknown learner '{name}'. Use one of {sorted(LEARNERS)}")
    return LEARNERS[name]
