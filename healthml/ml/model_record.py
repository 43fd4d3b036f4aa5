from dataclasses import dataclass, field
from typing import Any, List, Optional
import pandas as pd
from healthml.data.dataset import Dataset
from healthml.data.splitter import Split
from healthml.ml.preprocessing import FittedSpec
from healthml.utils.evaluation import EvaluationResult

@dataclass
class ExperimentRecord:
    """Container for one experiment's data, fitted pieces, and evaluation."""
    name: str
    dataset: Dataset
    split: Optional[Split] = None
    fitted_spec: Optional[FittedSpec] = None
    train: Optional[Dataset] = None
    test: Optional[Dataset] = None
    model: Optional[Any] = None
    train_evaluation: Optional[EvaluationResult] = None
    evaluation: Optional[EvaluationResult] = None
    importance: Optional[pd.DataFrame] = None
    cv_results: Optional[pd.DataFrame] = None
    stacking_report: Optional[pd.DataFrame] = None
    caveats: List[str] = field(default_factory=list)
