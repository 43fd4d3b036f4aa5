from dataclasses import dataclass, field
from itertools import product
from typing import Any, Dict, List, Optional, Sequence
import logging
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from pydantic import ValidationError
from sklearn.metrics import accuracy_score, brier_score_loss, roc_auc_score
from sklearn.model_selection import StratifiedKFold
from healthml.ml.learners import ForestConfig, fit_learner
from healthml.utils.exceptions import TrainerConfigError
from config import settings

logger = logging.getLogger(__name__)


def _accuracy(estimator, X, y):
    return accuracy_score(y, estimator.predict(X))

def _roc_auc(estimator, X, y):
    probas = estimator.predict_proba(X)
    if len(estimator.classes_) == 2:
        return roc_auc_score(y, probas[:, 1])
    return roc_auc_score(y, probas, multi_class="ovr", labels=estimator.classes_)

def _neg_brier(estimator, X, y):
    positive = estimator.classes_[-1]
    return -brier_score_loss((np.asarray(y) == positive).astype(int), estimator.predict_proba(X)[:, -1])

METRICS = {
    "accuracy": _accuracy,
    "roc_auc": _roc_auc,
    "neg_brier": _neg_brier,
}


@dataclass
class HyperparameterGrid:
    """Finite set of configuration points, enumerated in declaration order.

    Either a mapping of parameter -> candidates (Cartesian product, last
    parameter varies fastest) or an explicit list of points.
    """
    params: Dict[str, Sequence[Any]] = field(default_factory=dict)
    points: Optional[List[Dict[str, Any]]] = None

    def __iter__(self):
        return iter(self.enumerate())

    def __len__(self):
        return len(self.enumerate())

    def enumerate(self) -> List[Dict[str, Any]]:
        if self.points is not None:
            return [dict(point) for point in self.points]
        if not self.params:
            return [{}]
        names = list(self.params)
        return [dict(zip(names, values)) for values in product(*(self.params[n] for n in names))]


@dataclass
class GridSearchResult:
    best_point: Dict[str, Any]
    best_score: float
    best_config: Any
    results: pd.DataFrame
    metric: str


def _fit_and_score(config, X, y, train_idx, test_idx, metric, seed):
    estimator = fit_learner(config, X.iloc[train_idx], y.iloc[train_idx], seed=seed, n_jobs=1)
    return METRICS[metric](estimator, X.iloc[test_idx], y.iloc[test_idx])


def grid_search(X: pd.DataFrame, y: pd.Series, grid: HyperparameterGrid, base_config=None, folds: Optional[int] = None,
                seed: Optional[int] = None, metric: str = "accuracy", n_jobs: Optional[int] = None,
                verbose: bool = False) -> GridSearchResult:
    """Score every grid point on the same stratified folds and keep the best.

    The point with the strictly highest mean score wins; an exact tie keeps the
    point enumerated first.
    """
    base_config = base_config if base_config is not None else ForestConfig()
    folds = folds if folds is not None else settings.cv_folds
    n_jobs = n_jobs if n_jobs is not None else settings.n_jobs
    if metric not in METRICS:
        raise TrainerConfigError(f"Unknown metric {metric!r}, expected one of {sorted(METRICS)}")
    if folds < 2:
        raise TrainerConfigError(f"Cross-validation needs at least 2 folds, got {folds}")
    smallest_class = y.value_counts().min()
    if folds > smallest_class:
        raise TrainerConfigError(f"{folds} folds requested but the smallest class has {smallest_class} records")

    points = grid.enumerate()
    if not points:
        raise TrainerConfigError("Hyperparameter grid is empty")
    configs = []
    for point in points:
        unknown = [name for name in point if name not in type(base_config).model_fields or name == "kind"]
        if unknown:
            raise TrainerConfigError(f"{base_config.kind} has no hyperparameters {unknown}")
        try:
            config = type(base_config).model_validate({**base_config.model_dump(), **point})
        except ValidationError as e:
            raise TrainerConfigError(f"Invalid grid point {point}: {e}") from e
        config.check(X.shape[1])
        configs.append(config)

    if seed is None:
        logger.warning("Grid search without a seed: fold assignment differs between runs")
    splitter = StratifiedKFold(n_splits=folds, shuffle=True, random_state=seed)
    fold_indices = list(splitter.split(X, y))

    tasks = [
        (p, f, config, train_idx, test_idx)
        for p, config in enumerate(configs)
        for f, (train_idx, test_idx) in enumerate(fold_indices)
    ]
    logger.info("Grid search: %d points x %d folds", len(configs), folds)
    scores = Parallel(n_jobs=n_jobs)(
        delayed(_fit_and_score)(config, X, y, train_idx, test_idx, metric, seed)
        for _, _, config, train_idx, test_idx in tasks
    )

    score_table = np.full((len(configs), folds), np.nan)
    for (p, f, *_), score in zip(tasks, scores):
        score_table[p, f] = score

    rows = []
    for p, point in enumerate(points):
        row = dict(point)
        row.update({f"split{f}_test_score": score_table[p, f] for f in range(folds)})
        row["mean_test_score"] = score_table[p].mean()
        row["std_test_score"] = score_table[p].std()
        rows.append(row)
    results = pd.DataFrame(rows)

    best = 0
    for p in range(1, len(points)):
        if results["mean_test_score"].iloc[p] > results["mean_test_score"].iloc[best]:
            best = p
    results["rank_test_score"] = results["mean_test_score"].rank(ascending=False, method="min").astype(int)

    if verbose:
        cols = [c for c in results.columns if "split" in c and "test_score" in c]
        print(results[list(points[0]) + cols + ["mean_test_score", "std_test_score"]])

    return GridSearchResult(
        best_point=points[best],
        best_score=float(results["mean_test_score"].iloc[best]),
        best_config=configs[best],
        results=results,
        metric=metric,
    )
