from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent

class ForestArchitecture(BaseModel):
    n_trees: int
    mtry: Optional[int]
    min_node_size: int
    max_depth: Optional[int]

class StackingSettings(BaseModel):
    folds: int = 10
    repeats: int = 1
    library: List[str] = ["elastic_net", "tree", "forest", "boosting", "mean"]

class Settings(BaseSettings):
    data_path: str = "data/heart.csv"
    outcome: str = "target"
    models_directory: str = "models"
    figures_directory: str = "figures"
    random_state: int = 1234
    train_fraction: float = 0.7
    cv_folds: int = 5
    n_jobs: int = 2
    forest_architectures: Dict[str, ForestArchitecture] = {
        "standard_forest": ForestArchitecture(
            n_trees=500,
            mtry=None,
            min_node_size=1,
            max_depth=None,
        ),
        "small_forest": ForestArchitecture(
            n_trees=50,
            mtry=None,
            min_node_size=5,
            max_depth=None,
        ),
    }
    stacking: StackingSettings = StackingSettings()

settings = Settings()
