from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union
import logging
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Dataset:
    """A labeled table: every record shares one schema, one column is the outcome."""
    frame: pd.DataFrame
    outcome: str

    def __post_init__(self):
        if not isinstance(self.frame, pd.DataFrame):
            raise TypeError(f"`frame` must be a pandas DataFrame, not {type(self.frame)}")
        if self.outcome not in self.frame.columns:
            raise ValueError(
                f"Outcome column {self.outcome!r} not found, got columns {list(self.frame.columns)}"
            )
        if self.frame.empty:
            raise ValueError("Dataset has no records")
        # own a private copy so callers can't mutate records underneath us
        object.__setattr__(self, "frame", self.frame.copy())

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def feature_names(self) -> List[str]:
        return [col for col in self.frame.columns if col != self.outcome]

    @property
    def features(self) -> pd.DataFrame:
        return self.frame[self.feature_names]

    @property
    def labels(self) -> pd.Series:
        return self.frame[self.outcome]

    @property
    def classes(self) -> list:
        return sorted(self.labels.unique().tolist())

    def with_frame(self, frame: pd.DataFrame) -> "Dataset":
        return Dataset(frame=frame, outcome=self.outcome)


def load_dataset(path: Union[str, Path], outcome: str, drop: Iterable[str] = (), sep: str = ",",
                 encode_categoricals: bool = True) -> Dataset:
    """Read a delimited file into a Dataset.

    Rows with a missing outcome are removed, boolean columns become 0/1 and,
    unless disabled, categorical feature columns are one-hot encoded.
    Missing feature values are kept for the imputation step.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset file not found: {path}")
    df = pd.read_csv(path, sep=sep)
    drop = [col for col in drop if col in df.columns]
    if drop:
        df = df.drop(columns=drop)
    if outcome not in df.columns:
        raise ValueError(f"Outcome column {outcome!r} not in {path}")

    before_rows = len(df)
    df = df.dropna(subset=[outcome]).reset_index(drop=True)
    if len(df) < before_rows:
        logger.warning("Dropped %d rows with a missing outcome", before_rows - len(df))

    feature_cols = [col for col in df.columns if col != outcome]
    bool_cols = [col for col in feature_cols if df[col].dtype == bool]
    df[bool_cols] = df[bool_cols].astype(int)

    if encode_categoricals:
        cat_cols = [
            col for col in feature_cols
            if pd.api.types.is_object_dtype(df[col]) or pd.api.types.is_string_dtype(df[col])
            or isinstance(df[col].dtype, pd.CategoricalDtype)
        ]
        if cat_cols:
            df = pd.get_dummies(df, columns=cat_cols, drop_first=True, dtype=int)

    logger.info("Loaded %s: %d records, %d columns", path.name, len(df), df.shape[1])
    return Dataset(frame=df, outcome=outcome)


def numeric_columns(frame: pd.DataFrame, exclude: Optional[Iterable[str]] = None) -> List[str]:
    exclude = set(exclude or ())
    return [
        col for col in frame.columns
        if col not in exclude and pd.api.types.is_numeric_dtype(frame[col])
        and not pd.api.types.is_bool_dtype(frame[col])
    ]
