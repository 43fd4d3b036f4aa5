from datetime import datetime
import joblib
import pandas as pd
import pytest
from healthml.ml.forest import ForestModel
from healthml.ml.learners import ForestConfig
from healthml.ml.model_manager import ModelManager
from healthml.ml.model_record import ExperimentRecord
from healthml.utils.evaluation import evaluate


@pytest.fixture
def trained_record(health_dataset, health_split):
    model = ForestModel(ForestConfig(n_trees=10), seed=1).train(health_split.train.features, health_split.train.labels)
    return ExperimentRecord(
        name="forest",
        dataset=health_dataset,
        split=health_split,
        train=health_split.train,
        test=health_split.test,
        model=model,
        evaluation=evaluate(model, health_split.test),
        train_evaluation=evaluate(model, health_split.train),
        cv_results=pd.DataFrame({"mtry": [1, 2], "mean_test_score": [0.7, 0.8]}),
        caveats=["example caveat"],
    )


def test_save_record_layout(tmp_path, trained_record):
    manager = ModelManager(manager_name="forest_run", output_directory=tmp_path)
    model_dir = manager.save_record(trained_record, save_input_data=True)

    today = datetime.today().strftime("%Y-%m-%d")
    assert model_dir == tmp_path / today / "forest_run"
    assert (model_dir / "forest.pkl").exists()
    assert (model_dir / "forest_split.pkl").exists()
    assert (model_dir / "cross_validation.csv").exists()
    assert (model_dir / "input.csv").exists()

    text = (model_dir / "z_evaluation.txt").read_text()
    assert "=== forest ===" in text
    assert "caveat: example caveat" in text

    model = joblib.load(model_dir / "forest.pkl")
    assert isinstance(model, ForestModel)


def test_second_run_gets_numbered_directory(tmp_path, trained_record):
    first = ModelManager(manager_name="forest_run", output_directory=tmp_path).save_record(trained_record)
    second = ModelManager(manager_name="forest_run", output_directory=tmp_path).save_record(trained_record)
    assert first.name == "forest_run"
    assert second.name == "forest_run1"


def test_artifacts_are_write_once(tmp_path, trained_record):
    manager = ModelManager(output_directory=tmp_path)
    manager.save_artifact(trained_record.model, "model")
    with pytest.raises(FileExistsError):
        manager.save_artifact(trained_record.model, "model")


def test_loaded_model_predicts_identically(tmp_path, trained_record):
    manager = ModelManager(output_directory=tmp_path)
    manager.save_record(trained_record)
    loader = ModelManager(loading_directory=manager.model_directory)
    model = loader.load_artifact("forest")
    split = loader.load_artifact("forest_split")
    features = trained_record.test.features
    assert (model.predict(features) == trained_record.model.predict(features)).all()
    assert split.train_index == trained_record.split.train_index
    assert len(loader.load_models()) == 2


def test_loading_requires_directory(tmp_path):
    with pytest.raises(ValueError):
        ModelManager().load_models()
    with pytest.raises(FileNotFoundError):
        ModelManager(loading_directory=tmp_path / "missing").load_models()
    with pytest.raises(FileNotFoundError):
        ModelManager(loading_directory=tmp_path).load_artifact("forest")


def test_output_directory_is_file(tmp_path):
    target = tmp_path / "models"
    target.write_text("")
    with pytest.raises(ValueError):
        ModelManager(output_directory=target).create_model_directory()
