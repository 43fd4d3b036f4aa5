from dataclasses import dataclass
from typing import List, Optional, Sequence
import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler
from healthml.data.dataset import numeric_columns


@dataclass
class PCAResult:
    explained_variance_ratio: pd.Series
    loadings: pd.DataFrame
    scores: pd.DataFrame
    pca: PCA

    @property
    def cumulative_variance(self) -> pd.Series:
        return self.explained_variance_ratio.cumsum()

    def components_for_variance(self, threshold: float) -> int:
        """Smallest number of components whose cumulative variance reaches `threshold`."""
        if not 0 < threshold <= 1:
            raise ValueError(f"threshold must be in (0, 1], got {threshold}")
        reached = np.flatnonzero(self.cumulative_variance.to_numpy() >= threshold - 1e-12)
        if len(reached) == 0:
            return len(self.explained_variance_ratio)
        return int(reached[0]) + 1

    def summary(self) -> pd.DataFrame:
        return pd.DataFrame({
            "standard_deviation": np.sqrt(self.pca.explained_variance_),
            "proportion_of_variance": self.explained_variance_ratio.to_numpy(),
            "cumulative_proportion": self.cumulative_variance.to_numpy(),
        }, index=self.explained_variance_ratio.index)


def fit_pca(frame: pd.DataFrame, columns: Optional[Sequence[str]] = None, n_components: Optional[int] = None,
            scale: bool = True) -> PCAResult:
    """Principal components of the numeric columns, centered and (by default) scaled."""
    columns: List[str] = list(columns) if columns is not None else numeric_columns(frame)
    values = frame[columns]
    if values.isna().any().any():
        raise ValueError("PCA input has missing values; impute them first")
    scaler = StandardScaler(with_std=scale)
    standardized = scaler.fit_transform(values)
    pca = PCA(n_components=n_components)
    scores = pca.fit_transform(standardized)
    names = [f"PC{i + 1}" for i in range(pca.n_components_)]
    return PCAResult(
        explained_variance_ratio=pd.Series(pca.explained_variance_ratio_, index=names),
        loadings=pd.DataFrame(pca.components_.T, index=columns, columns=names),
        scores=pd.DataFrame(scores, index=frame.index, columns=names),
        pca=pca,
    )
