"""Stacked ensemble over a heterogeneous library of base learners.

Every learner is fit under repeated stratified k-fold cross-validation. The
out-of-fold probabilities feed a non-negative least squares combiner whose
weights are rescaled to sum to one, so the combiner never sees in-sample
predictions. Risk is the mean squared error of a probability against the
0/1 outcome.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional
import logging

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy.optimize import nnls
from sklearn.model_selection import RepeatedStratifiedKFold

from healthml.ml.learners import default_library, fit_learner
from healthml.utils.exceptions import NonConvergenceError, PipelineStateError, TrainerConfigError
from config import settings

logger = logging.getLogger(__name__)

OK, FAILED, SINGLE = "ok", "failed", "single_learner"


@dataclass
class LearnerResult:
    name: str
    kind: str
    status: str = OK
    risk: float = float("nan")
    weight: float = 0.0
    error: Optional[str] = None


def _positive_column(estimator, positive) -> int:
    return list(estimator.classes_).index(positive)


def _fit_fold(config, X, y, train_idx, test_idx, positive, seed):
    try:
        estimator = fit_learner(config, X.iloc[train_idx], y.iloc[train_idx], seed=seed, n_jobs=1)
    except NonConvergenceError as e:
        return None, str(e)
    probas = estimator.predict_proba(X.iloc[test_idx])
    return probas[:, _positive_column(estimator, positive)], None


class StackedEnsemble:
    def __init__(self, library: Optional[Dict] = None, folds: Optional[int] = None, repeats: Optional[int] = None,
                 seed: Optional[int] = None, n_jobs: Optional[int] = None) -> None:
        self.library = dict(library) if library is not None else default_library(settings.stacking.library)
        self.folds = folds if folds is not None else settings.stacking.folds
        self.repeats = repeats if repeats is not None else settings.stacking.repeats
        self.seed = seed
        self.n_jobs = n_jobs if n_jobs is not None else settings.n_jobs
        self.results: Dict[str, LearnerResult] = {}
        self.estimators: Dict = {}
        self.weights: Dict[str, float] = {}
        self.combined_risk = None
        self.oof_predictions: Optional[pd.DataFrame] = None
        self.classes_ = None
        self.caveats: List[str] = []

    def _validate(self, X: pd.DataFrame, y: pd.Series) -> None:
        if not self.library:
            raise TrainerConfigError("Stacking needs at least one base learner")
        classes = sorted(y.unique())
        if len(classes) != 2:
            raise TrainerConfigError(f"Stacking needs a binary outcome, got classes {classes}")
        if self.folds < 2 or self.repeats < 1:
            raise TrainerConfigError(f"Invalid cross-validation scheme: {self.folds} folds x {self.repeats} repeats")
        smallest_class = y.value_counts().min()
        if self.folds > smallest_class:
            raise TrainerConfigError(f"{self.folds} folds requested but the smallest class has {smallest_class} records")
        for config in self.library.values():
            config.check(X.shape[1])

    def train(self, X: pd.DataFrame, y: pd.Series) -> "StackedEnsemble":
        self._validate(X, y)
        self.classes_ = np.array(sorted(y.unique()))
        positive = self.classes_[1]
        target = (np.asarray(y) == positive).astype(float)
        if self.seed is None:
            msg = "stacking without a seed: folds and learner randomness differ between runs"
            logger.warning(msg)
            self.caveats.append(msg)

        cv = RepeatedStratifiedKFold(n_splits=self.folds, n_repeats=self.repeats, random_state=self.seed)
        splits = list(cv.split(X, y))
        names = list(self.library)
        tasks = [(s, name) for s in range(len(splits)) for name in names]
        logger.info("Stacking %d learners over %d folds x %d repeats", len(names), self.folds, self.repeats)
        outputs = Parallel(n_jobs=self.n_jobs)(
            delayed(_fit_fold)(self.library[name], X, y, splits[s][0], splits[s][1], positive, self.seed)
            for s, name in tasks
        )

        self.results = {name: LearnerResult(name=name, kind=self.library[name].kind) for name in names}
        oof = {name: np.full((self.repeats, len(X)), np.nan) for name in names}
        for (s, name), (preds, error) in zip(tasks, outputs):
            if error is not None:
                result = self.results[name]
                if result.status == OK:
                    logger.warning("Learner %s failed and is excluded from the combiner: %s", name, error)
                result.status, result.error = FAILED, error
                continue
            oof[name][s // self.folds, splits[s][1]] = preds

        survivors = [name for name in names if self.results[name].status == OK]
        if not survivors:
            raise NonConvergenceError("Every base learner failed to fit")
        for name in survivors:
            self.results[name].risk = float(np.mean((oof[name] - target) ** 2))

        Z = np.column_stack([oof[name].ravel() for name in survivors])
        tiled = np.tile(target, self.repeats)
        self.oof_predictions = pd.DataFrame(Z, columns=survivors)
        weights = self._combine(Z, tiled, survivors)
        self._refit(X, y, survivors, weights)

        # risk of the combination that actually predicts, after any refit failure
        final = np.array([self.weights.get(name, 0.0) for name in survivors])
        self.combined_risk = float(np.mean((Z @ final - tiled) ** 2))
        if len(self.weights) == 1:
            msg = f"stacked ensemble reduced to a single learner: {next(iter(self.weights))}"
            logger.warning(msg)
            self.caveats.append(msg)
        return self

    def _combine(self, Z: np.ndarray, target: np.ndarray, names: List[str]) -> np.ndarray:
        weights, _ = nnls(Z, target)
        if weights.sum() <= 0:
            best = int(np.argmin([self.results[name].risk for name in names]))
            logger.warning("NNLS returned all-zero weights, using %s alone", names[best])
            weights = np.zeros(len(names))
            weights[best] = 1.0
        return weights / weights.sum()

    def _refit(self, X, y, names, weights):
        self.estimators, self.weights = {}, {}
        for name, weight in zip(names, weights):
            self.results[name].weight = float(weight)
            if weight <= 0:
                continue
            try:
                self.estimators[name] = fit_learner(self.library[name], X, y, seed=self.seed, n_jobs=self.n_jobs)
            except NonConvergenceError as e:
                logger.warning("Learner %s failed on the full training subset: %s", name, e)
                result = self.results[name]
                result.status, result.error, result.weight = FAILED, str(e), 0.0
                continue
            self.weights[name] = float(weight)
        if not self.weights:
            raise NonConvergenceError("Every weighted base learner failed on the full training subset")
        total = sum(self.weights.values())
        for name in self.weights:
            self.weights[name] /= total
            self.results[name].weight = self.weights[name]

    def _require_fitted(self):
        if not self.estimators:
            raise PipelineStateError("Stacked ensemble has not been trained")

    def predict_proba(self, X: pd.DataFrame) -> np.ndarray:
        self._require_fitted()
        positive = self.classes_[1]
        p = np.zeros(len(X))
        for name, estimator in self.estimators.items():
            p += self.weights[name] * estimator.predict_proba(X)[:, _positive_column(estimator, positive)]
        p = np.clip(p, 0.0, 1.0)
        return np.column_stack([1 - p, p])

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        return self.classes_[(self.predict_proba(X)[:, 1] >= 0.5).astype(int)]

    def learner_predictions(self, X: pd.DataFrame) -> pd.DataFrame:
        self._require_fitted()
        positive = self.classes_[1]
        return pd.DataFrame({
            name: estimator.predict_proba(X)[:, _positive_column(estimator, positive)]
            for name, estimator in self.estimators.items()
        })

    def weight_vector(self) -> pd.Series:
        """Combiner weights over the whole library; failed learners carry 0."""
        return pd.Series({name: r.weight for name, r in self.results.items()}, dtype=float)

    def report(self) -> pd.DataFrame:
        if not self.results:
            raise PipelineStateError("Stacked ensemble has not been trained")
        rows = [
            {"learner": r.name, "kind": r.kind, "cv_risk": r.risk, "weight": r.weight, "status": r.status,
             "error": r.error}
            for r in self.results.values()
        ]
        rows.append({"learner": "stacked", "kind": "nnls", "cv_risk": self.combined_risk, "weight": 1.0,
                     "status": SINGLE if len(self.weights) == 1 else OK, "error": None})
        return pd.DataFrame(rows)
