"""Hold-out scoring of a fitted model: confusion matrix and summary metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import balanced_accuracy_score, confusion_matrix

from .config import DRONE_LABEL
from .errors import ConfigurationError
from .trainer import FittedModel


@dataclass
class EvaluationResult:
    classes: Tuple[str, ...]
    confusion: np.ndarray          # rows = true, columns = predicted
    y_true: np.ndarray
    y_pred: np.ndarray
    metrics: Dict[str, float] = field(default_factory=dict)
    per_class: pd.DataFrame = field(default_factory=pd.DataFrame)

    @property
    def is_binary(self) -> bool:
        return len(self.classes) == 2

    def summary_rows(self):
        return [{"metric": k, "value": v} for k, v in self.metrics.items()]


def per_class_rates(cm: np.ndarray, classes: Sequence[str]) -> pd.DataFrame:
    """One-vs-rest sensitivity, specificity and balanced accuracy per class."""
    cm = np.asarray(cm, dtype=float)
    total = cm.sum()
    rows = []
    for i, c in enumerate(classes):
        tp = cm[i, i]
        fn = cm[i, :].sum() - tp
        fp = cm[:, i].sum() - tp
        tn = total - tp - fn - fp
        sens = tp / max(1.0, tp + fn)
        spec = tn / max(1.0, tn + fp)
        rows.append({
            "class": c,
            "support": int(tp + fn),
            "sensitivity": float(sens),
            "specificity": float(spec),
            "balanced_accuracy": float((sens + spec) / 2.0),
        })
    return pd.DataFrame(rows, columns=["class", "support", "sensitivity", "specificity", "balanced_accuracy"])


def binary_metrics(cm: np.ndarray, classes: Sequence[str], positive_label: str) -> Dict[str, float]:
    if positive_label not in classes:
        raise ConfigurationError(f"positive label '{positive_label}' not in {tuple(classes)}")
    p = list(classes).index(positive_label)
    n = 1 - p
    tp, fn = cm[p, p], cm[p, n]
    fp, tn = cm[n, p], cm[n, n]
    precision = tp / max(1, tp + fp)
    recall = tp / max(1, tp + fn)
    f1 = 2 * precision * recall / (precision + recall) if (precision + recall) > 0 else 0.0
    specificity = tn / max(1, tn + fp)
    return {
        "precision": float(precision),
        "recall": float(recall),
        "f1": float(f1),
        "specificity": float(specificity),
        "balanced_accuracy": float((recall + specificity) / 2.0),
    }


def evaluate(model: FittedModel, X: np.ndarray, y_true: Sequence[str],
             positive_label: str = DRONE_LABEL) -> EvaluationResult:
    y_true = np.asarray(y_true, dtype=str)
    unknown = sorted(set(y_true.tolist()) - set(model.classes))
    if unknown:
        raise ConfigurationError(f"hold-out labels {unknown} unknown to model classes {model.classes}")

    y_pred = model.predict(X)
    classes = tuple(model.classes)
    cm = confusion_matrix(y_true, y_pred, labels=list(classes))
    per_class = per_class_rates(cm, classes)

    metrics: Dict[str, float] = {
        "n": float(y_true.size),
        "accuracy": float(np.trace(cm) / max(1, cm.sum())),
        "balanced_accuracy": float(balanced_accuracy_score(y_true, y_pred)) if y_true.size else float("nan"),
    }
    if len(classes) == 2:
        metrics.update(binary_metrics(cm, classes, positive_label))
    else:
        metrics["mean_sensitivity"] = float(per_class["sensitivity"].mean())
        metrics["mean_specificity"] = float(per_class["specificity"].mean())
        metrics["mean_balanced_accuracy"] = float(per_class["balanced_accuracy"].mean())

    return EvaluationResult(
        classes=classes,
        confusion=cm,
        y_true=y_true,
        y_pred=y_pred,
        metrics=metrics,
        per_class=per_class,
    )
