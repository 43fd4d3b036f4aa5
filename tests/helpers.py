import numpy as np
import pandas as pd
from healthml.utils.file_utils import dump_yaml

FEATURES = ["age", "sex", "chol", "bmi", "noise"]


def make_health_frame(n_records: int = 300, seed: int = 0, missing_fraction: float = 0.0) -> pd.DataFrame:
    """Synthetic cardiology-style table; the outcome depends on age, chol and sex."""
    rng = np.random.default_rng(seed)
    age = rng.normal(55, 9, n_records).round()
    sex = rng.integers(0, 2, n_records)
    chol = rng.normal(240, 45, n_records).round()
    bmi = rng.normal(27, 4, n_records).round(1)
    noise = rng.normal(0, 1, n_records)
    logit = 0.08 * (age - 55) + 0.03 * (chol - 240) + 0.8 * sex - 0.5
    target = (rng.random(n_records) < 1 / (1 + np.exp(-logit))).astype(int)
    df = pd.DataFrame({"age": age, "sex": sex, "chol": chol, "bmi": bmi, "noise": noise, "target": target})
    if missing_fraction > 0:
        for col in ("chol", "bmi"):
            mask = rng.random(n_records) < missing_fraction
            df.loc[mask, col] = np.nan
    return df


def write_experiment(tmp_path, frame: pd.DataFrame, **overrides):
    data_path = tmp_path / "heart.csv"
    frame.to_csv(data_path, index=False)
    config = {
        "name": "workshop",
        "data_path": str(data_path),
        "outcome": "target",
        "proportion": 0.7,
        "seed": 1234,
        "n_jobs": 1,
        "preprocessing": [
            {"kind": "impute_mean", "columns": ["chol", "bmi"]},
            {"kind": "normalize", "columns": ["age", "chol", "bmi"]},
        ],
        "forest": {"n_trees": 50, "min_node_size": 1},
    }
    config.update(overrides)
    return dump_yaml(config, tmp_path / "experiment.yaml")

