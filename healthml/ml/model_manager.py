import os
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Union
import logging
import joblib
from healthml.ml.model_record import ExperimentRecord
from config import settings

logger = logging.getLogger(__name__)


class ModelManager:
    """Writes experiment artifacts under <output>/<YYYY-MM-DD>/<name><N>/.

    Every artifact is written once; saving over an existing file raises.
    """

    def __init__(self, manager_name: str = "experiment", output_directory: Optional[Union[str, Path]] = None,
                 loading_directory: Optional[Union[str, Path]] = None) -> None:
        self.manager_name = manager_name
        self.output_directory = Path(output_directory if output_directory is not None else settings.models_directory)
        self.loading_directory = Path(loading_directory) if loading_directory is not None else None
        self.model_directory: Optional[Path] = None

    def create_model_directory(self) -> Path:
        if self.output_directory.is_file():
            raise ValueError("output_directory is a file")
        current_date = datetime.today().strftime('%Y-%m-%d')
        current_directory = self.output_directory / current_date
        os.makedirs(current_directory, exist_ok=True)
        model_ref = str(len(os.listdir(current_directory)))
        if model_ref == '0': model_ref = ''
        current_model_dir = current_directory / f"{self.manager_name}{model_ref}"
        os.makedirs(current_model_dir)
        self.model_directory = current_model_dir
        return current_model_dir

    def _artifact_path(self, filename: str) -> Path:
        if self.model_directory is None:
            self.create_model_directory()
        path = self.model_directory / filename
        if path.exists():
            raise FileExistsError(f"Artifact already written: {path}")
        return path

    def save_artifact(self, obj: Any, name: str) -> Path:
        path = self._artifact_path(f"{name}.pkl")
        joblib.dump(obj, path)
        logger.info("saved %s to %s", type(obj).__name__, path)
        return path

    def save_evaluation(self, record: ExperimentRecord) -> Path:
        if self.model_directory is None:
            self.create_model_directory()
        path = self.model_directory / "z_evaluation.txt"
        with open(path, 'a') as file:
            file.write(f"\n=== {record.name} ===\n")
            if record.train_evaluation is not None:
                file.write(f"train accuracy: {record.train_evaluation['accuracy']}\n")
            if record.evaluation is not None:
                file.write(record.evaluation.format_report())
                file.write("\n")
            for caveat in record.caveats:
                file.write(f"caveat: {caveat}\n")
        return path

    def save_record(self, record: ExperimentRecord, save_input_data: bool = False) -> Path:
        """Persist the model, split, fitted preprocessing and tables of one experiment."""
        if self.model_directory is None:
            self.create_model_directory()
        if record.model is not None:
            self.save_artifact(record.model, record.name)
        if record.split is not None:
            self.save_artifact(record.split, f"{record.name}_split")
        if record.fitted_spec is not None:
            self.save_artifact(record.fitted_spec, f"{record.name}_preprocessing")
        self.save_evaluation(record)
        if save_input_data and record.test is not None:
            record.test.features.to_csv(self._artifact_path("input.csv"))
            record.test.labels.to_csv(self._artifact_path("output.csv"))
        if record.cv_results is not None:
            record.cv_results.to_csv(self._artifact_path("cross_validation.csv"), index=False)
        if record.importance is not None:
            record.importance.to_csv(self._artifact_path("importance.csv"), index=False)
        if record.stacking_report is not None:
            record.stacking_report.to_csv(self._artifact_path("stacking.csv"), index=False)
        return self.model_directory

    def load_artifact(self, name: str) -> Any:
        if self.loading_directory is None:
            raise ValueError("Loading directory has not been specified")
        path = self.loading_directory / f"{name}.pkl"
        if not path.exists():
            raise FileNotFoundError("Model has to be saved before it is loaded")
        return joblib.load(path)

    def load_models(self) -> List[Any]:
        if self.loading_directory is None:
            raise ValueError("Loading directory has not been specified")
        if not self.loading_directory.exists():
            raise FileNotFoundError("Model has to be saved before it is loaded")
        return [joblib.load(path) for path in sorted(self.loading_directory.glob("*.pkl"))]
