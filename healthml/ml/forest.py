from typing import Optional
import logging
import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier
from healthml.ml.learners import ForestConfig
from healthml.utils.exceptions import PipelineStateError, TrainerConfigError
from config import settings

logger = logging.getLogger(__name__)


class ForestModel:
    """Random forest in single-model mode: fixed tree count, mtry and node size."""

    def __init__(self, config: Optional[ForestConfig] = None, seed: Optional[int] = None, n_jobs: Optional[int] = None) -> None:
        self.config = config if config is not None else ForestConfig()
        self.seed = seed
        self.n_jobs = n_jobs if n_jobs is not None else settings.n_jobs
        self.model: Optional[RandomForestClassifier] = None
        self.X_train, self.y_train = None, None
        self.caveats = []
        if seed is None:
            msg = "forest trained without a seed: bootstrap and feature draws differ between runs"
            logger.warning(msg)
            self.caveats.append(msg)

    @property
    def classes_(self):
        self._require_fitted()
        return self.model.classes_

    @property
    def feature_names(self):
        self._require_fitted()
        return list(self.X_train.columns)

    def _require_fitted(self):
        if self.model is None:
            raise PipelineStateError("Forest has not been trained")

    def train(self, X: pd.DataFrame, y: pd.Series) -> "ForestModel":
        self.config.check(X.shape[1])
        if len(X) != len(y):
            raise TrainerConfigError(f"X has {len(X)} rows but y has {len(y)}")
        self.model = self.config.build(seed=self.seed, n_jobs=self.n_jobs)
        self.model.fit(X, y)
        self.X_train, self.y_train = X.copy(), y.copy()
        logger.info("Trained forest of %d trees on %d records", self.config.n_trees, len(X))
        return self

    def _tree_votes(self, X) -> np.ndarray:
        values = np.asarray(X, dtype=np.float32)
        votes = np.zeros((len(values), len(self.model.classes_)), dtype=np.int64)
        rows = np.arange(len(values))
        for tree in self.model.estimators_:
            votes[rows, tree.predict_proba(values).argmax(axis=1)] += 1
        return votes

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        """Majority vote over trees; ties go to the first class in sorted order."""
        self._require_fitted()
        votes = self._tree_votes(X[self.feature_names])
        return self.model.classes_[votes.argmax(axis=1)]

    def predict_proba(self, X: pd.DataFrame) -> np.ndarray:
        self._require_fitted()
        return self.model.predict_proba(X[self.feature_names])

    def _oob_masks(self):
        n = len(self.X_train)
        for sample in self.model.estimators_samples_:
            mask = np.ones(n, dtype=bool)
            mask[sample] = False
            yield mask

    def permutation_importance(self, seed: Optional[int] = None) -> pd.DataFrame:
        """Mean decrease in out-of-bag accuracy when one feature is shuffled.

        For every tree, each feature's values are permuted across that tree's
        out-of-bag records and the tree's accuracy on them is measured again.
        The drop is averaged over the trees that have out-of-bag records.
        """
        self._require_fitted()
        seed = self.seed if seed is None else seed
        rng = np.random.default_rng(seed)
        X = np.asarray(self.X_train, dtype=np.float32)
        y_idx = np.searchsorted(self.model.classes_, np.asarray(self.y_train))
        drops = []
        for tree, oob in zip(self.model.estimators_, self._oob_masks()):
            if not oob.any():
                continue
            X_oob, y_oob = X[oob], y_idx[oob]
            baseline = np.mean(tree.predict_proba(X_oob).argmax(axis=1) == y_oob)
            tree_drops = np.empty(X.shape[1])
            for j in range(X.shape[1]):
                X_perm = X_oob.copy()
                X_perm[:, j] = rng.permutation(X_perm[:, j])
                permuted = np.mean(tree.predict_proba(X_perm).argmax(axis=1) == y_oob)
                tree_drops[j] = baseline - permuted
            drops.append(tree_drops)
        if not drops:
            raise PipelineStateError("No tree has out-of-bag records to score")
        drops = np.vstack(drops)
        table = pd.DataFrame({
            "feature": self.feature_names,
            "mean_decrease_accuracy": drops.mean(axis=0),
            "std": drops.std(axis=0, ddof=1) if len(drops) > 1 else np.zeros(drops.shape[1]),
            "mean_decrease_gini": self.model.feature_importances_,
        })
        return table.sort_values("mean_decrease_accuracy", ascending=False, kind="stable").reset_index(drop=True)

    def oob_error(self) -> float:
        """Misclassification rate of the out-of-bag vote, over records left out at least once."""
        self._require_fitted()
        X = np.asarray(self.X_train, dtype=np.float32)
        y_idx = np.searchsorted(self.model.classes_, np.asarray(self.y_train))
        votes = np.zeros((len(X), len(self.model.classes_)))
        for tree, oob in zip(self.model.estimators_, self._oob_masks()):
            if oob.any():
                votes[oob] += tree.predict_proba(X[oob])
        scored = votes.sum(axis=1) > 0
        if not scored.any():
            return float("nan")
        return float(np.mean(votes[scored].argmax(axis=1) != y_idx[scored]))
