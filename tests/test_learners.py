import warnings
import pytest
from pydantic import TypeAdapter, ValidationError
from sklearn.dummy import DummyClassifier
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.tree import DecisionTreeClassifier
from healthml.ml.learners import (
    BoostingConfig,
    ElasticNetConfig,
    ForestConfig,
    LearnerConfig,
    MeanConfig,
    TreeConfig,
    default_library,
    fit_learner,
)
from healthml.utils.exceptions import NonConvergenceError, TrainerConfigError


@pytest.mark.parametrize("config, estimator_type", [
    (ForestConfig(n_trees=10, mtry=2), RandomForestClassifier),
    (TreeConfig(), DecisionTreeClassifier),
    (ElasticNetConfig(), LogisticRegression),
    (BoostingConfig(), GradientBoostingClassifier),
    (MeanConfig(), DummyClassifier),
])
def test_build_returns_matching_estimator(config, estimator_type):
    assert isinstance(config.build(seed=1), estimator_type)


def test_forest_build_maps_hyperparameters():
    forest = ForestConfig(n_trees=25, mtry=3, min_node_size=5).build(seed=9, n_jobs=1)
    assert forest.n_estimators == 25
    assert forest.max_features == 3
    assert forest.min_samples_leaf == 5
    assert forest.random_state == 9
    assert ForestConfig().build().max_features == "sqrt"


@pytest.mark.parametrize("config", [
    ForestConfig(mtry=6),
    ForestConfig(mtry=0),
    ForestConfig(n_trees=0),
    ForestConfig(min_node_size=0),
    TreeConfig(ccp_alpha=-0.1),
    ElasticNetConfig(alpha=1.5),
    ElasticNetConfig(C=0),
    BoostingConfig(learning_rate=0),
    BoostingConfig(subsample=1.2),
])
def test_out_of_range_hyperparameters(config):
    with pytest.raises(TrainerConfigError):
        config.check(n_features=5)


def test_valid_hyperparameters_pass():
    ForestConfig(mtry=5).check(n_features=5)
    MeanConfig().check(n_features=5)


def test_learner_union_parses_by_kind():
    adapter = TypeAdapter(LearnerConfig)
    assert isinstance(adapter.validate_python({"kind": "boosting", "n_trees": 20}), BoostingConfig)
    assert isinstance(adapter.validate_python({"kind": "mean"}), MeanConfig)
    with pytest.raises(ValidationError):
        adapter.validate_python({"kind": "svm"})
    with pytest.raises(ValidationError):
        adapter.validate_python({"kind": "tree", "n_trees": 3})


def test_default_library():
    library = default_library(["elastic_net", "mean"])
    assert list(library) == ["elastic_net", "mean"]
    with pytest.raises(TrainerConfigError):
        default_library(["svm"])


def test_fit_learner_returns_fitted_estimator(health_dataset):
    estimator = fit_learner(TreeConfig(max_depth=3), health_dataset.features, health_dataset.labels, seed=1)
    assert list(estimator.classes_) == [0, 1]


def test_non_convergence_is_surfaced(health_dataset):
    # unscaled features and a single solver pass cannot converge
    config = ElasticNetConfig(max_iter=1, C=1e4)
    with pytest.raises(NonConvergenceError, match="elastic_net"):
        fit_learner(config, health_dataset.features, health_dataset.labels, seed=1)


def test_elastic_net_builds_without_deprecated_arguments(prepared):
    train, _ = prepared
    estimator = ElasticNetConfig(alpha=0.5).build(seed=1)
    assert estimator.l1_ratio == 0.5
    assert estimator.solver == "saga"
    with warnings.catch_warnings():
        warnings.simplefilter("error", FutureWarning)
        fit_learner(ElasticNetConfig(alpha=0.5, max_iter=5000), train.features, train.labels, seed=1)
