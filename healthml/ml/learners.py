"""Typed configurations for every learner the trainer can fit.

Each learner kind is its own pydantic model carrying only the hyperparameters
that kind understands; `LearnerConfig` is the discriminated union over them.
"""
from __future__ import annotations

from typing import Annotated, Dict, Iterable, Literal, Optional, Union
import logging
import warnings

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field
from sklearn.dummy import DummyClassifier
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.tree import DecisionTreeClassifier

from healthml.utils.exceptions import NonConvergenceError, TrainerConfigError

logger = logging.getLogger(__name__)


class _Learner(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    def check(self, n_features: int) -> None:
        """Raise TrainerConfigError when a hyperparameter is out of range."""
        pass

    def build(self, seed: Optional[int] = None, n_jobs: int = 1):
        raise NotImplementedError

    def _positive(self, **values):
        for name, value in values.items():
            if value is not None and value < 1:
                raise TrainerConfigError(f"{self.kind}: {name} must be >= 1, got {value}")


class ForestConfig(_Learner):
    kind: Literal["forest"] = "forest"
    n_trees: int = 500
    mtry: Optional[int] = None  # None -> floor(sqrt(n_features))
    min_node_size: int = 1
    max_depth: Optional[int] = None

    def check(self, n_features):
        self._positive(n_trees=self.n_trees, mtry=self.mtry, min_node_size=self.min_node_size,
                       max_depth=self.max_depth)
        if self.mtry is not None and self.mtry > n_features:
            raise TrainerConfigError(
                f"forest: mtry={self.mtry} exceeds the number of features ({n_features})"
            )

    def build(self, seed=None, n_jobs=1):
        return RandomForestClassifier(
            n_estimators=self.n_trees,
            max_features=self.mtry if self.mtry is not None else "sqrt",
            min_samples_leaf=self.min_node_size,
            max_depth=self.max_depth,
            bootstrap=True,
            random_state=seed,
            n_jobs=n_jobs,
        )


class TreeConfig(_Learner):
    kind: Literal["tree"] = "tree"
    max_depth: Optional[int] = 30
    min_node_size: int = 7
    ccp_alpha: float = 0.0

    def check(self, n_features):
        self._positive(max_depth=self.max_depth, min_node_size=self.min_node_size)
        if self.ccp_alpha < 0:
            raise TrainerConfigError(f"tree: ccp_alpha must be >= 0, got {self.ccp_alpha}")

    def build(self, seed=None, n_jobs=1):
        return DecisionTreeClassifier(
            max_depth=self.max_depth,
            min_samples_leaf=self.min_node_size,
            ccp_alpha=self.ccp_alpha,
            random_state=seed,
        )


class ElasticNetConfig(_Learner):
    kind: Literal["elastic_net"] = "elastic_net"
    alpha: float = 1.0  # mixing: 1 = lasso, 0 = ridge
    C: float = 1.0
    max_iter: int = 1000

    def check(self, n_features):
        self._positive(max_iter=self.max_iter)
        if not 0 <= self.alpha <= 1:
            raise TrainerConfigError(f"elastic_net: alpha must be in [0, 1], got {self.alpha}")
        if self.C <= 0:
            raise TrainerConfigError(f"elastic_net: C must be > 0, got {self.C}")

    def build(self, seed=None, n_jobs=1):
        return LogisticRegression(
            solver="saga",
            l1_ratio=self.alpha,
            C=self.C,
            max_iter=self.max_iter,
            random_state=seed,
        )


class BoostingConfig(_Learner):
    kind: Literal["boosting"] = "boosting"
    n_trees: int = 100
    learning_rate: float = 0.1
    max_depth: int = 3
    subsample: float = 1.0

    def check(self, n_features):
        self._positive(n_trees=self.n_trees, max_depth=self.max_depth)
        if self.learning_rate <= 0:
            raise TrainerConfigError(f"boosting: learning_rate must be > 0, got {self.learning_rate}")
        if not 0 < self.subsample <= 1:
            raise TrainerConfigError(f"boosting: subsample must be in (0, 1], got {self.subsample}")

    def build(self, seed=None, n_jobs=1):
        return GradientBoostingClassifier(
            n_estimators=self.n_trees,
            learning_rate=self.learning_rate,
            max_depth=self.max_depth,
            subsample=self.subsample,
            random_state=seed,
        )


class MeanConfig(_Learner):
    """Predicts the training prevalence of each class for every record."""
    kind: Literal["mean"] = "mean"

    def build(self, seed=None, n_jobs=1):
        return DummyClassifier(strategy="prior")


LearnerConfig = Annotated[
    Union[ForestConfig, TreeConfig, ElasticNetConfig, BoostingConfig, MeanConfig],
    Field(discriminator="kind"),
]

LEARNER_TYPES = {
    cls.model_fields["kind"].default: cls
    for cls in (ForestConfig, TreeConfig, ElasticNetConfig, BoostingConfig, MeanConfig)
}


def default_library(kinds: Iterable[str]) -> Dict[str, _Learner]:
    library = {}
    for kind in kinds:
        if kind not in LEARNER_TYPES:
            raise TrainerConfigError(f"Unknown learner kind {kind!r}, expected one of {sorted(LEARNER_TYPES)}")
        library[kind] = LEARNER_TYPES[kind]()
    return library


def fit_learner(config: _Learner, X: pd.DataFrame, y: pd.Series, seed: Optional[int] = None, n_jobs: int = 1):
    """Fit one learner, turning a failure to converge into NonConvergenceError."""
    estimator = config.build(seed=seed, n_jobs=n_jobs)
    with warnings.catch_warnings():
        warnings.simplefilter("error", ConvergenceWarning)
        try:
            estimator.fit(X, y)
        except ConvergenceWarning as e:
            raise NonConvergenceError(f"{config.kind} did not converge: {e}") from e
    probas = estimator.predict_proba(X)
    if not np.isfinite(probas).all():
        raise NonConvergenceError(f"{config.kind} produced non-finite probabilities")
    return estimator
