from dataclasses import dataclass
from typing import Optional, Tuple
import logging
import math
import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split
from healthml.data.dataset import Dataset
from healthml.utils.exceptions import InvalidProportionError, EmptyStratumError

logger = logging.getLogger(__name__)

UNSEEDED_CAVEAT = "no seed given: record assignment will differ between runs"


@dataclass(frozen=True, eq=False)
class Split:
    """Disjoint train/test partition of one Dataset. Created once, never mutated."""
    train: Dataset
    test: Dataset
    train_index: Tuple
    test_index: Tuple
    proportion: float
    seed: Optional[int]
    stratify: Optional[str] = None

    @property
    def caveat(self) -> Optional[str]:
        return UNSEEDED_CAVEAT if self.seed is None else None

    def sizes(self) -> Tuple[int, int]:
        return len(self.train), len(self.test)


def _check_proportion(proportion: float, n_records: int) -> int:
    if not isinstance(proportion, (int, float)) or isinstance(proportion, bool):
        raise InvalidProportionError(f"Split proportion must be a number, got {type(proportion)}")
    if not 0 < proportion < 1:
        raise InvalidProportionError(f"Split proportion must be in (0, 1), got {proportion}")
    n_train = math.floor(proportion * n_records)
    if n_train == 0 or n_train == n_records:
        raise InvalidProportionError(
            f"Proportion {proportion} leaves an empty subset for {n_records} records"
        )
    return n_train


def _check_strata(labels: pd.Series, n_train: int, n_test: int) -> None:
    if labels.isna().any():
        raise EmptyStratumError(f"Stratification column {labels.name!r} has missing values")
    # categorical columns report declared-but-unused categories with a zero count
    counts = labels.value_counts(sort=False)
    empty = counts[counts == 0]
    if len(empty):
        raise EmptyStratumError(f"Stratification classes with zero members: {list(empty.index)}")
    too_small = counts[counts < 2]
    if len(too_small):
        raise EmptyStratumError(
            f"Stratification classes need at least 2 members to appear in both subsets: "
            f"{too_small.to_dict()}"
        )
    if n_train < len(counts) or n_test < len(counts):
        raise InvalidProportionError(
            f"Subsets of size {n_train}/{n_test} cannot hold all {len(counts)} classes"
        )


def split_dataset(dataset: Dataset, proportion: float, seed: Optional[int] = None,
                  stratify: Optional[str] = None) -> Split:
    """Partition `dataset` so that the training side holds floor(proportion * n) records.

    Assignment is a pure function of `seed`. With `stratify`, class proportions
    on both sides match the full dataset up to rounding.
    """
    n_records = len(dataset)
    n_train = _check_proportion(proportion, n_records)

    strata = None
    if stratify is not None:
        if stratify not in dataset.frame.columns:
            raise ValueError(f"Stratification column {stratify!r} not in dataset")
        strata = dataset.frame[stratify]
        _check_strata(strata, n_train, n_records - n_train)
        strata = strata.astype(str).to_numpy()

    if seed is None:
        logger.warning("Splitting without a seed, %s", UNSEEDED_CAVEAT)

    positions = np.arange(n_records)
    train_pos, test_pos = train_test_split(
        positions,
        train_size=n_train,
        random_state=seed,
        stratify=strata,
    )
    train_pos, test_pos = np.sort(train_pos), np.sort(test_pos)

    frame = dataset.frame
    split = Split(
        train=dataset.with_frame(frame.iloc[train_pos]),
        test=dataset.with_frame(frame.iloc[test_pos]),
        train_index=tuple(frame.index[train_pos]),
        test_index=tuple(frame.index[test_pos]),
        proportion=proportion,
        seed=seed,
        stratify=stratify,
    )
    logger.info("Split %d records into %d train / %d test", n_records, *split.sizes())
    return split
