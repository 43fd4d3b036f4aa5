"""Run one modeling experiment: split, preprocess, train, evaluate.

    python -m healthml.pipeline experiment.yaml
"""
import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field

from healthml.data.dataset import Dataset, load_dataset
from healthml.data.splitter import split_dataset
from healthml.ml.forest import ForestModel
from healthml.ml.learners import ForestConfig, LearnerConfig, default_library
from healthml.ml.model_manager import ModelManager
from healthml.ml.model_record import ExperimentRecord
from healthml.ml.preprocessing import PreprocessingSpec, StepConfig
from healthml.ml.stacking import StackedEnsemble
from healthml.ml.tune_config import TuneConfig
from healthml.ml.tuning import HyperparameterGrid, grid_search
from healthml.utils.evaluation import evaluate
from healthml.utils.exceptions import PipelineStateError
from healthml.utils.file_utils import load_yaml
from healthml.utils import plotting
from config import settings

logger = logging.getLogger(__name__)


def _default_forest() -> ForestConfig:
    architecture = settings.forest_architectures["standard_forest"]
    return ForestConfig(**architecture.model_dump())


class ExperimentConfig(BaseModel):
    name: str = "experiment"
    data_path: str = settings.data_path
    outcome: str = settings.outcome
    drop: List[str] = Field(default_factory=list)
    proportion: float = settings.train_fraction
    seed: Optional[int] = settings.random_state
    stratify: bool = True
    positive_class: Optional[Union[int, str]] = None
    preprocessing: List[StepConfig] = Field(default_factory=list)
    mode: Literal["forest", "grid", "stack"] = "forest"
    forest: ForestConfig = Field(default_factory=_default_forest)
    grid: Dict[str, List[Any]] = Field(default_factory=dict)
    metric: str = "accuracy"
    folds: int = settings.cv_folds
    library: Dict[str, LearnerConfig] = Field(default_factory=dict)
    stack_folds: int = settings.stacking.folds
    stack_repeats: int = settings.stacking.repeats
    n_jobs: int = settings.n_jobs

    @classmethod
    def from_yaml(cls, path) -> "ExperimentConfig":
        return cls.model_validate(load_yaml(path))


class Experiment:
    def __init__(self, config: ExperimentConfig, dataset: Optional[Dataset] = None) -> None:
        self.config = config
        self.record = ExperimentRecord(name=config.name, dataset=dataset) if dataset is not None else None
        if config.seed is None:
            self._caveat("no seed configured: results are not reproducible between runs")

    def _caveat(self, message: str) -> None:
        logger.warning(message)
        if self.record is not None and message not in self.record.caveats:
            self.record.caveats.append(message)

    def _require(self, *attributes):
        if self.record is None:
            raise PipelineStateError("Dataset has not been loaded")
        for attribute in attributes:
            if getattr(self.record, attribute) is None:
                raise PipelineStateError(f"Experiment step producing `{attribute}` has not run")

    def load(self) -> Dataset:
        dataset = load_dataset(self.config.data_path, self.config.outcome, drop=self.config.drop)
        self.record = ExperimentRecord(name=self.config.name, dataset=dataset)
        if self.config.seed is None:
            self.record.caveats.append("no seed configured: results are not reproducible between runs")
        return dataset

    def split(self):
        self._require("dataset")
        stratify = self.config.outcome if self.config.stratify else None
        self.record.split = split_dataset(self.record.dataset, self.config.proportion, seed=self.config.seed,
                                          stratify=stratify)
        return self.record.split

    def preprocess(self):
        self._require("split")
        spec = PreprocessingSpec.from_configs(self.config.preprocessing)
        fitted, train = spec.fit_transform(self.record.split.train)
        self.record.fitted_spec = fitted
        self.record.train = train
        self.record.test = fitted.apply(self.record.split.test)
        return fitted

    def train(self):
        self._require("train")
        X, y = self.record.train.features, self.record.train.labels
        mode = self.config.mode
        if mode == "forest":
            model = ForestModel(self.config.forest, seed=self.config.seed, n_jobs=self.config.n_jobs).train(X, y)
        elif mode == "grid":
            model = self.tune()
        else:
            library = dict(self.config.library) or default_library(settings.stacking.library)
            model = StackedEnsemble(library, folds=self.config.stack_folds, repeats=self.config.stack_repeats,
                                    seed=self.config.seed, n_jobs=self.config.n_jobs).train(X, y)
            self.record.stacking_report = model.report()
        for caveat in model.caveats:
            if caveat not in self.record.caveats:
                self.record.caveats.append(caveat)
        self.record.model = model
        return model

    def tune(self) -> ForestModel:
        self._require("train")
        X, y = self.record.train.features, self.record.train.labels
        grid = HyperparameterGrid(params=self.config.grid) if self.config.grid else TuneConfig().grid()
        result = grid_search(X, y, grid, base_config=self.config.forest,
                             folds=self.config.folds, seed=self.config.seed, metric=self.config.metric,
                             n_jobs=self.config.n_jobs)
        logger.info("Best grid point %s (%s=%.4f)", result.best_point, result.metric, result.best_score)
        self.record.cv_results = result.results
        return ForestModel(result.best_config, seed=self.config.seed, n_jobs=self.config.n_jobs).train(X, y)

    def evaluate(self, verbose: bool = True):
        self._require("model", "test")
        self.record.train_evaluation = evaluate(self.record.model, self.record.train,
                                                positive_class=self.config.positive_class)
        self.record.evaluation = evaluate(self.record.model, self.record.test,
                                          positive_class=self.config.positive_class)
        if isinstance(self.record.model, ForestModel):
            self.record.importance = self.record.model.permutation_importance()
        if verbose:
            print(f"Train Accuracy: {self.record.train_evaluation['accuracy']:.4f}")
            print(self.record.evaluation.format_report())
            if self.record.importance is not None:
                print("\nVariable importance:")
                print(self.record.importance.to_string(index=False))
            if self.record.stacking_report is not None:
                print("\nStacking:")
                print(self.record.stacking_report.to_string(index=False))
            for caveat in self.record.caveats:
                print(f"caveat: {caveat}")
        return self.record.evaluation

    def run(self, verbose: bool = False) -> ExperimentRecord:
        if self.record is None:
            self.load()
        self.split()
        self.preprocess()
        self.train()
        self.evaluate(verbose=verbose)
        return self.record

    def plot(self, directory=None) -> List[Path]:
        self._require("model", "evaluation")
        directory = Path(directory if directory is not None else settings.figures_directory) / self.config.name
        paths = [plotting.plot_confusion_matrix(self.record.evaluation.confusion_matrix,
                                                directory / "confusion_matrix.png")]
        if "auc" in self.record.evaluation.metrics:
            positive = self.record.evaluation.positive_class
            column = list(self.record.model.classes_).index(positive)
            probas = self.record.model.predict_proba(self.record.test.features)[:, column]
            paths.append(plotting.plot_roc(self.record.test.labels, probas, directory / "roc.png",
                                           positive_class=positive))
        if self.record.importance is not None:
            paths.append(plotting.plot_importance(self.record.importance, directory / "importance.png"))
        return paths

    def save(self, output_directory=None) -> Path:
        self._require("model")
        manager = ModelManager(manager_name=self.config.name, output_directory=output_directory)
        return manager.save_record(self.record)


def parse_args(args: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("config", type=Path, help="experiment yaml")
    parser.add_argument("--output-dir", type=Path, default=None, help="where to write model artifacts")
    parser.add_argument("--no-save", action="store_true", help="skip writing artifacts")
    parser.add_argument("--plots", type=Path, nargs="?", const=settings.figures_directory, default=None,
                        help="write ROC, confusion matrix and importance figures")
    return parser.parse_args(args)


def main(args: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s:%(name)s:%(message)s",
    )
    parsed = parse_args(args)
    experiment = Experiment(ExperimentConfig.from_yaml(parsed.config))
    experiment.run(verbose=True)
    if not parsed.no_save:
        directory = experiment.save(parsed.output_dir)
        print(f"saved experiment to {directory}")
    if parsed.plots is not None:
        for path in experiment.plot(parsed.plots):
            logger.info("Wrote %s", path)


if __name__ == "__main__":
    main()
