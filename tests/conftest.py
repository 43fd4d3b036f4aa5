import pytest
from healthml.data.dataset import Dataset
from healthml.data.splitter import split_dataset
from healthml.ml.preprocessing import MeanImputer, Normalizer, PreprocessingSpec
from tests.helpers import make_health_frame

@pytest.fixture
def health_frame():
    """300 records, binary target, no missing values."""
    return make_health_frame(n_records=300, seed=7)

@pytest.fixture
def health_dataset(health_frame):
    return Dataset(health_frame, "target")

@pytest.fixture
def missing_dataset():
    """Same shape as health_dataset but with ~10% of chol and bmi missing."""
    return Dataset(make_health_frame(n_records=300, seed=11, missing_fraction=0.1), "target")

@pytest.fixture
def health_split(health_dataset):
    return split_dataset(health_dataset, 0.7, seed=1234, stratify="target")

@pytest.fixture
def prepared(missing_dataset):
    """Stratified 70/30 split, imputed and normalized with training statistics."""
    split = split_dataset(missing_dataset, 0.7, seed=1234, stratify="target")
    spec = PreprocessingSpec([MeanImputer(["chol", "bmi"]), Normalizer(["age", "chol", "bmi"])])
    fitted, train = spec.fit_transform(split.train)
    return train, fitted.apply(split.test)
