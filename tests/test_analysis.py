import numpy as np
import pandas as pd
import pytest
from healthml.analysis.clustering import cluster_profile, gaussian_mixture_clusters, hierarchical_clusters
from healthml.analysis.pca import fit_pca


@pytest.fixture
def blobs():
    rng = np.random.default_rng(0)
    first = rng.normal(0, 0.5, size=(40, 3))
    second = rng.normal(6, 0.5, size=(30, 3))
    frame = pd.DataFrame(np.vstack([first, second]), columns=["sbp", "dbp", "hr"])
    frame["group"] = [0] * 40 + [1] * 30
    return frame


def test_pca_variance_and_loadings(health_frame):
    features = health_frame.drop(columns="target")
    result = fit_pca(features)
    assert result.explained_variance_ratio.sum() == pytest.approx(1.0)
    assert result.explained_variance_ratio.is_monotonic_decreasing
    assert result.loadings.shape == (5, 5)
    assert list(result.loadings.index) == list(features.columns)
    assert result.scores.shape == (len(features), 5)
    assert result.components_for_variance(1.0) == 5
    assert 1 <= result.components_for_variance(0.5) <= 5
    assert list(result.summary().columns) == ["standard_deviation", "proportion_of_variance", "cumulative_proportion"]


def test_pca_first_component_follows_correlated_block():
    rng = np.random.default_rng(1)
    base = rng.normal(size=200)
    frame = pd.DataFrame({
        "a": base + rng.normal(scale=0.1, size=200),
        "b": base + rng.normal(scale=0.1, size=200),
        "c": rng.normal(size=200),
    })
    result = fit_pca(frame, n_components=2)
    loadings = result.loadings["PC1"].abs()
    assert loadings["a"] > loadings["c"] and loadings["b"] > loadings["c"]
    assert result.components_for_variance(0.6) == 1


def test_pca_rejects_missing_values(missing_dataset):
    with pytest.raises(ValueError, match="impute"):
        fit_pca(missing_dataset.features)


def test_hierarchical_recovers_separated_groups(blobs):
    result = hierarchical_clusters(blobs, k=2, columns=["sbp", "dbp", "hr"])
    assert result.n_clusters == 2
    assert set(result.labels) == {1, 2}
    assert sorted(result.sizes.tolist()) == [30, 40]
    assert pd.crosstab(result.labels, blobs["group"]).max(axis=1).sum() == 70
    assert result.linkage_matrix.shape == (69, 4)


@pytest.mark.parametrize("method", ["complete", "average", "single"])
def test_other_linkages(blobs, method):
    result = hierarchical_clusters(blobs, k=3, method=method, columns=["sbp", "dbp", "hr"])
    assert result.n_clusters == 3


def test_invalid_linkage_settings(blobs):
    with pytest.raises(ValueError):
        hierarchical_clusters(blobs, k=2, method="wards")
    with pytest.raises(ValueError):
        hierarchical_clusters(blobs, k=2, method="ward", metric="cityblock")
    with pytest.raises(ValueError):
        hierarchical_clusters(blobs, k=0)


def test_gaussian_mixture_selects_by_bic(blobs):
    result = gaussian_mixture_clusters(blobs, max_components=4, seed=1234, columns=["sbp", "dbp", "hr"])
    assert result.n_clusters == 2
    assert result.bic.idxmin() == 2
    assert list(result.bic.index) == [1, 2, 3, 4]


def test_cluster_profile(blobs):
    result = hierarchical_clusters(blobs, k=2, columns=["sbp", "dbp", "hr"])
    profile = cluster_profile(blobs[["sbp", "dbp", "hr"]], result.labels)
    assert profile["size"].sum() == 70
    assert profile.index.name == "cluster"
    assert set(profile.columns) == {"size", "sbp", "dbp", "hr"}
