"""Column-wise preprocessing fitted on the training subset only.

A `PreprocessingSpec` is an ordered list of `Step` objects. Fitting walks the
steps in order, estimating each step's parameters on the training frame as
already transformed by the earlier steps. The resulting `FittedSpec` carries
only those training-time parameters and applies them unchanged to any
dataset, train or test.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Annotated, Dict, List, Literal, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field

from healthml.data.dataset import Dataset, numeric_columns
from healthml.utils.exceptions import DegenerateColumnError, PreprocessingConfigError

logger = logging.getLogger(__name__)

# relative tolerance under which a training std counts as zero
ZERO_STD_TOLERANCE = 1e-12


class FittedStep(ABC):
    name: str

    @abstractmethod
    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        ...

    @property
    @abstractmethod
    def params(self) -> Dict[str, Dict[str, float]]:
        ...


class Step(ABC):
    """One named transform over a set of target columns."""
    name: str = "step"

    def __init__(self, columns: Optional[Sequence[str]] = None) -> None:
        self.columns = list(columns) if columns is not None else None

    def resolve_columns(self, frame: pd.DataFrame, outcome: Optional[str] = None) -> List[str]:
        if self.columns is None:
            return numeric_columns(frame, exclude=[outcome] if outcome else None)
        missing = [col for col in self.columns if col not in frame.columns]
        if missing:
            raise PreprocessingConfigError(f"{self.name}: columns not found {missing}")
        if outcome is not None and outcome in self.columns:
            raise PreprocessingConfigError(f"{self.name}: the outcome column {outcome!r} cannot be transformed")
        not_numeric = [col for col in self.columns if not pd.api.types.is_numeric_dtype(frame[col])]
        if not_numeric:
            raise PreprocessingConfigError(f"{self.name}: columns are not numeric {not_numeric}")
        return list(self.columns)

    @abstractmethod
    def fit(self, frame: pd.DataFrame, outcome: Optional[str] = None) -> FittedStep:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(columns={self.columns!r})"


@dataclass(frozen=True)
class FittedMeanImputer(FittedStep):
    means: Dict[str, float]
    name: str = "impute_mean"

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        out = frame.copy()
        for col, mean in self.means.items():
            if out[col].isna().any():
                out[col] = out[col].fillna(mean)
        return out

    @property
    def params(self):
        return {"mean": dict(self.means)}


class MeanImputer(Step):
    """Replace missing values with the training mean of the column.

    Only the location is restored; imputed cells carry no spread, so variance
    estimates downstream are biased low.
    """
    name = "impute_mean"

    def fit(self, frame, outcome=None):
        columns = self.resolve_columns(frame, outcome)
        means = {}
        for col in columns:
            observed = frame[col].dropna()
            if observed.empty:
                raise PreprocessingConfigError(f"{self.name}: column {col!r} has no observed training values")
            means[col] = float(observed.mean())
        return FittedMeanImputer(means=means)


@dataclass(frozen=True)
class FittedNormalizer(FittedStep):
    means: Dict[str, float]
    stds: Dict[str, float]
    name: str = "normalize"

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        out = frame.copy()
        for col in self.means:
            out[col] = (out[col].astype(float) - self.means[col]) / self.stds[col]
        return out

    @property
    def params(self):
        return {"mean": dict(self.means), "std": dict(self.stds)}


class Normalizer(Step):
    """z-score columns with the training mean and sample standard deviation."""
    name = "normalize"

    def fit(self, frame, outcome=None):
        columns = self.resolve_columns(frame, outcome)
        means, stds = {}, {}
        for col in columns:
            values = frame[col].astype(float)
            mean, std = values.mean(), values.std(ddof=1)
            if not np.isfinite(std) or std <= ZERO_STD_TOLERANCE * max(1.0, abs(mean)):
                raise DegenerateColumnError(
                    f"Column {col!r} has zero standard deviation in the training subset"
                )
            means[col], stds[col] = float(mean), float(std)
        return FittedNormalizer(means=means, stds=stds)


@dataclass(frozen=True)
class FittedSpec:
    steps: Tuple[FittedStep, ...]
    outcome: Optional[str] = None

    def apply_frame(self, frame: pd.DataFrame) -> pd.DataFrame:
        out = frame
        for step in self.steps:
            out = step.apply(out)
        return out

    def apply(self, dataset: Dataset) -> Dataset:
        transformed = self.apply_frame(dataset.frame)
        if len(transformed) != len(dataset) or list(transformed.columns) != list(dataset.frame.columns):
            raise RuntimeError("Preprocessing changed the record count or column set")
        return dataset.with_frame(transformed)

    def summary(self) -> pd.DataFrame:
        rows = []
        for i, step in enumerate(self.steps):
            for param, values in step.params.items():
                for col, value in values.items():
                    rows.append({"order": i, "step": step.name, "column": col, "param": param, "value": value})
        return pd.DataFrame(rows, columns=["order", "step", "column", "param", "value"])


@dataclass
class PreprocessingSpec:
    steps: List[Step] = field(default_factory=list)

    def fit_transform(self, train: Dataset) -> Tuple[FittedSpec, Dataset]:
        frame = train.frame
        fitted = []
        for step in self.steps:
            fitted_step = step.fit(frame, outcome=train.outcome)
            frame = fitted_step.apply(frame)
            fitted.append(fitted_step)
            logger.debug("Fitted %s on %d training records", step, len(frame))
        return FittedSpec(steps=tuple(fitted), outcome=train.outcome), train.with_frame(frame)

    def fit(self, train: Dataset) -> FittedSpec:
        fitted, _ = self.fit_transform(train)
        return fitted

    @classmethod
    def from_configs(cls, configs: Sequence["StepConfig"]) -> "PreprocessingSpec":
        return cls(steps=[config.build() for config in configs])


# declarative step configuration, e.g. loaded from an experiment yaml

class ImputeMeanConfig(BaseModel):
    kind: Literal["impute_mean"] = "impute_mean"
    columns: Optional[List[str]] = None

    def build(self) -> Step:
        return MeanImputer(self.columns)


class NormalizeConfig(BaseModel):
    kind: Literal["normalize"] = "normalize"
    columns: Optional[List[str]] = None

    def build(self) -> Step:
        return Normalizer(self.columns)


StepConfig = Annotated[Union[ImputeMeanConfig, NormalizeConfig], Field(discriminator="kind")]
