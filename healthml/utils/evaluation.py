from dataclasses import dataclass
from typing import Any, Mapping, Optional
import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    classification_report,
    confusion_matrix,
    f1_score,
    precision_score,
    recall_score,
    roc_auc_score,
)
from healthml.data.dataset import Dataset


@dataclass(frozen=True, eq=False)
class EvaluationResult:
    """Held-out metrics for one (model, test subset) pair."""
    metrics: Mapping[str, float]
    confusion_matrix: pd.DataFrame
    positive_class: Any
    n_records: int
    report: str = ""

    def __getitem__(self, name: str) -> float:
        return self.metrics[name]

    def format_report(self) -> str:
        lines = [f"Records: {self.n_records}  (positive class: {self.positive_class})"]
        for name, value in self.metrics.items():
            lines.append(f"{name}: {value:.4f}")
        lines.append("\nClassification Report (Test):")
        lines.append(self.report)
        lines.append("Confusion Matrix (rows predicted, columns actual):")
        lines.append(self.confusion_matrix.to_string())
        return "\n".join(lines)


def _positive_probabilities(model, X, positive) -> Optional[np.ndarray]:
    if not hasattr(model, "predict_proba"):
        return None
    classes = list(model.classes_)
    if positive not in classes:
        return None
    return np.asarray(model.predict_proba(X))[:, classes.index(positive)]


def evaluate(model, dataset: Dataset, positive_class=None, verbose: bool = False) -> EvaluationResult:
    """Score a fitted model on a labeled dataset.

    Precision and recall are for `positive_class` (default: the greatest label).
    AUC uses the positive-class probability when the model produces one and
    both classes are present; otherwise it is NaN.
    """
    X, y = dataset.features, dataset.labels
    y_pred = np.asarray(model.predict(X))

    labels = set(y.tolist()) | set(np.asarray(y_pred).tolist())
    if hasattr(model, "classes_"):
        labels |= set(np.asarray(model.classes_).tolist())
    labels = sorted(labels)
    positive = positive_class if positive_class is not None else labels[-1]
    if positive not in labels:
        raise ValueError(f"Positive class {positive!r} not among labels {labels}")

    y_true_bin = (np.asarray(y) == positive).astype(int)
    y_pred_bin = (y_pred == positive).astype(int)
    metrics = {
        "accuracy": float(accuracy_score(y, y_pred)),
        "precision": float(precision_score(y_true_bin, y_pred_bin, zero_division=0)),
        "recall": float(recall_score(y_true_bin, y_pred_bin, zero_division=0)),
        "f1": float(f1_score(y_true_bin, y_pred_bin, zero_division=0)),
    }

    probas = _positive_probabilities(model, X, positive)
    if probas is not None:
        if len(np.unique(y_true_bin)) == 2:
            metrics["auc"] = float(roc_auc_score(y_true_bin, probas))
        else:
            metrics["auc"] = float("nan")
        metrics["brier"] = float(np.mean((probas - y_true_bin) ** 2))

    counts = confusion_matrix(y, y_pred, labels=labels).T
    matrix = pd.DataFrame(
        counts,
        index=pd.Index(labels, name="predicted"),
        columns=pd.Index(labels, name="actual"),
    )
    report = classification_report(y, y_pred, labels=labels, zero_division=0)

    result = EvaluationResult(
        metrics=dict(metrics),
        confusion_matrix=matrix,
        positive_class=positive,
        n_records=len(dataset),
        report=report,
    )
    if verbose:
        print(result.format_report())
    return result
