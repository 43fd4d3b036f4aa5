from dataclasses import dataclass
from typing import Optional, Sequence
import logging
import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import fcluster, linkage
from sklearn.mixture import GaussianMixture
from healthml.data.dataset import numeric_columns

logger = logging.getLogger(__name__)

LINKAGE_METHODS = ("ward", "complete", "average", "single", "centroid", "median", "weighted")


@dataclass
class ClusterResult:
    labels: pd.Series
    method: str
    linkage_matrix: Optional[np.ndarray] = None
    bic: Optional[pd.Series] = None

    @property
    def sizes(self) -> pd.Series:
        return self.labels.value_counts().sort_index()

    @property
    def n_clusters(self) -> int:
        return int(self.labels.nunique())


def _values(frame, columns):
    columns = list(columns) if columns is not None else numeric_columns(frame)
    values = frame[columns]
    if values.isna().any().any():
        raise ValueError("Clustering input has missing values; impute them first")
    return values.to_numpy(dtype=float)


def hierarchical_clusters(frame: pd.DataFrame, k: int, method: str = "ward", metric: str = "euclidean",
                          columns: Optional[Sequence[str]] = None) -> ClusterResult:
    """Agglomerative clustering cut into `k` groups. Labels run from 1 to k."""
    if method not in LINKAGE_METHODS:
        raise ValueError(f"Unknown linkage method {method!r}")
    if method in ("ward", "centroid", "median") and metric != "euclidean":
        raise ValueError(f"{method} linkage requires the euclidean metric")
    values = _values(frame, columns)
    if not 1 <= k <= len(values):
        raise ValueError(f"k must be between 1 and {len(values)}, got {k}")
    Z = linkage(values, method=method, metric=metric)
    labels = fcluster(Z, t=k, criterion="maxclust")
    return ClusterResult(labels=pd.Series(labels, index=frame.index, name="cluster"), method=method,
                         linkage_matrix=Z)


def gaussian_mixture_clusters(frame: pd.DataFrame, max_components: int = 9, seed: Optional[int] = None,
                              covariance_type: str = "full", columns: Optional[Sequence[str]] = None) -> ClusterResult:
    """EM-fitted Gaussian mixtures for 1..max_components, keeping the lowest BIC."""
    values = _values(frame, columns)
    if seed is None:
        logger.warning("Gaussian mixture without a seed: initialization differs between runs")
    bics, models = {}, {}
    for n in range(1, max_components + 1):
        if n > len(values):
            break
        gm = GaussianMixture(n_components=n, covariance_type=covariance_type, random_state=seed)
        gm.fit(values)
        bics[n], models[n] = gm.bic(values), gm
    bic = pd.Series(bics, name="bic")
    best = int(bic.idxmin())
    labels = models[best].predict(values) + 1
    logger.info("Gaussian mixture: %d components selected by BIC", best)
    return ClusterResult(labels=pd.Series(labels, index=frame.index, name="cluster"),
                         method=f"gmm_{covariance_type}", bic=bic)


def cluster_profile(frame: pd.DataFrame, labels: pd.Series) -> pd.DataFrame:
    """Per-cluster mean of every numeric column, plus the cluster size."""
    numeric = frame[numeric_columns(frame)]
    profile = numeric.groupby(labels.to_numpy()).mean()
    profile.index.name = "cluster"
    profile.insert(0, "size", labels.value_counts().sort_index().to_numpy())
    return profile
