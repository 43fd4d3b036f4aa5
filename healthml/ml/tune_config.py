from dataclasses import dataclass
from typing import Optional
from healthml.ml.tuning import HyperparameterGrid
from config import settings

@dataclass
class TuneConfig:
    """Configuration for the forest hyperparameter grid search."""
    mtry: tuple[Optional[int], ...] = (2, 3, 4, 5)
    min_node_size: tuple[int, ...] = (1, 5, 10)
    folds: int = settings.cv_folds
    metric: str = "accuracy"
    n_jobs: int = settings.n_jobs
    verbose: bool = False
    random_state: int = settings.random_state

    def grid(self) -> HyperparameterGrid:
        """Return the grid, mtry varying slowest."""
        return HyperparameterGrid(params={
            "mtry": list(self.mtry),
            "min_node_size": list(self.min_node_size),
        })

    def grid_search_kwargs(self) -> dict:
        """Return arguments (excluding data, grid and base config) for grid_search."""
        return {
            "folds": self.folds,
            "seed": self.random_state,
            "metric": self.metric,
            "n_jobs": self.n_jobs,
            "verbose": self.verbose,
        }
