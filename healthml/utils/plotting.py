from pathlib import Path
from typing import Optional, Union
import numpy as np
import pandas as pd
from sklearn.metrics import roc_curve, auc
from scipy.cluster.hierarchy import dendrogram

import matplotlib
matplotlib.use("Agg")  # ensure no GUI backend
import matplotlib.pyplot as plt

PathLike = Union[str, Path]


def _save(fig, savepath: PathLike) -> Path:
    savepath = Path(savepath)
    savepath.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(savepath, bbox_inches="tight", dpi=160)
    plt.close(fig)
    return savepath


def plot_roc(y_true, probas, savepath: PathLike, positive_class=1, title: str = "ROC Curve") -> Path:
    y_bin = (np.asarray(y_true) == positive_class).astype(int)
    fpr, tpr, _ = roc_curve(y_bin, probas)
    fig, ax = plt.subplots(figsize=(7, 5))
    ax.plot(fpr, tpr, linewidth=1.5, label=f"AUC={auc(fpr, tpr):.3f}")
    ax.plot([0, 1], [0, 1], color="gray", linewidth=1, linestyle=":")
    ax.set_title(title)
    ax.set_xlabel("False Positive Rate")
    ax.set_ylabel("True Positive Rate")
    ax.legend(loc="lower right", fontsize=8)
    ax.grid(True, alpha=0.3)
    return _save(fig, savepath)


def plot_confusion_matrix(matrix: pd.DataFrame, savepath: PathLike, title: str = "Confusion Matrix") -> Path:
    fig, ax = plt.subplots(figsize=(5, 4))
    im = ax.imshow(matrix.to_numpy(), cmap="Blues")
    ax.set_xticks(range(matrix.shape[1]), [str(c) for c in matrix.columns])
    ax.set_yticks(range(matrix.shape[0]), [str(i) for i in matrix.index])
    ax.set_xlabel("Actual")
    ax.set_ylabel("Predicted")
    for i in range(matrix.shape[0]):
        for j in range(matrix.shape[1]):
            ax.text(j, i, int(matrix.iat[i, j]), ha="center", va="center")
    fig.colorbar(im, ax=ax)
    ax.set_title(title)
    return _save(fig, savepath)


def plot_importance(table: pd.DataFrame, savepath: PathLike, column: str = "mean_decrease_accuracy",
                    top: Optional[int] = 20) -> Path:
    data = table.sort_values(column, ascending=True)
    if top is not None:
        data = data.tail(top)
    fig, ax = plt.subplots(figsize=(7, max(3, 0.3 * len(data))))
    ax.barh(data["feature"], data[column])
    ax.set_xlabel(column.replace("_", " "))
    ax.set_title("Variable importance")
    return _save(fig, savepath)


def plot_scree(explained_variance_ratio: pd.Series, savepath: PathLike) -> Path:
    fig, ax = plt.subplots(figsize=(7, 4))
    x = np.arange(1, len(explained_variance_ratio) + 1)
    ax.plot(x, explained_variance_ratio.to_numpy(), marker="o", label="Proportion")
    ax.plot(x, explained_variance_ratio.cumsum().to_numpy(), marker="s", linestyle="--", label="Cumulative")
    ax.set_xticks(x)
    ax.set_xlabel("Principal component")
    ax.set_ylabel("Variance explained")
    ax.legend()
    return _save(fig, savepath)


def plot_dendrogram(linkage_matrix: np.ndarray, savepath: PathLike, k: Optional[int] = None) -> Path:
    fig, ax = plt.subplots(figsize=(10, 5))
    threshold = None
    if k is not None and 1 < k <= len(linkage_matrix):
        # height between the merges that leave k and k-1 clusters
        threshold = linkage_matrix[-(k - 1), 2] - 1e-9
    dendrogram(linkage_matrix, ax=ax, no_labels=True, color_threshold=threshold)
    ax.set_ylabel("Height")
    return _save(fig, savepath)
