import json
from pathlib import Path

import pytest

from churn_pipeline.context import RunContext
from churn_pipeline.data import Preprocessor
from churn_pipeline.exceptions import PipelineCancelled, TrainingError, ValidationFailure
from churn_pipeline.pipeline import TrainingPipeline
from churn_pipeline.tracking import ArtifactStore, InMemoryTracker

TARGET = "Churn"
BACKENDS = ["logistic_regression", "random_forest", "xgboost", "lightgbm"]


class BrokenTracker:
    def log(self, run_id, backend, params, metrics, artifact_ref=None, tags=None):
        raise ConnectionError("tracking server unreachable")


class ExplodingClassifier:
    def __init__(self, **params):
        pass

    def fit(self, X, y):
        raise RuntimeError("boom")


@pytest.fixture
def output_dir(config):
    return Path(config.artifacts.output_dir)


def test_end_to_end(make_config, sample_df, output_dir):
    config = make_config(evaluation={"plots": True})
    tracker = InMemoryTracker()
    context = RunContext(config=config)

    result = TrainingPipeline(config, tracker=tracker).run(context, source=sample_df)

    assert result.run_id == context.run_id
    assert (result.n_train, result.n_test) == (800, 200)
    assert result.validation_report.passed
    assert [m.backend for m in result.models] == BACKENDS
    assert [m.backend for m in result.metrics] == BACKENDS
    assert result.failures == ()
    assert result.tracker_errors == ()
    assert result.selection.selected_backend in BACKENDS
    assert len(result.selection.ranking) == 4
    if not result.selection.below_target:
        assert result.selection.ranking[0].shortfalls == ()

    assert [r.backend for r in tracker.runs] == BACKENDS
    assert all(r.run_id == context.run_id for r in tracker.runs)

    assert (output_dir / "reports" / "validation_report.json").is_file()
    assert (output_dir / "preprocessing" / "preprocessor.json").is_file()
    for backend in BACKENDS:
        assert (output_dir / "models" / f"{backend}.manifest.json").is_file()
        assert result.artifact_paths[f"model:{backend}"].is_file()
    for figure in ("roc_curves_comparison", "pr_curves_comparison", "calibration_curves", "model_comparison"):
        assert (output_dir / "reports" / "figures" / f"{figure}.png").is_file()
    assert result.artifact_paths["figure:confusion_matrix"].is_file()

    report = json.loads((output_dir / "reports" / "evaluation_report.json").read_text())
    assert report["run_id"] == context.run_id
    assert report["selected_backend"] == result.selection.selected_backend
    assert [c["backend"] for c in report["ranking"]] == [c.backend for c in result.selection.ranking]
    assert report["failures"] == []


def test_saved_artifacts_reproduce_predictions(config, sample_df, output_dir):
    result = TrainingPipeline(config).run(source=sample_df)

    store = ArtifactStore(output_dir)
    artifact = store.load_preprocessing_artifact()
    assert artifact.to_dict() == result.preprocessing_artifact.to_dict()

    best = next(m for m in result.models if m.backend == result.selection.selected_backend)
    restored = store.load_model(best.backend)
    frame = Preprocessor.transform(sample_df.head(20), artifact)
    X = frame[list(best.feature_names)].to_numpy(dtype=float)
    assert restored.predict_proba(X)[:, 1] == pytest.approx(best.predict_proba(frame), rel=1e-5, abs=1e-6)


def test_validation_failure_stops_before_preprocessing(config, sample_df, output_dir):
    df = sample_df.copy()
    df[TARGET] = 0

    with pytest.raises(ValidationFailure) as excinfo:
        TrainingPipeline(config).run(source=df)

    assert excinfo.value.exit_code == 4
    assert not excinfo.value.report.passed
    assert excinfo.value.report.failures_for("class_balance")

    saved = json.loads((output_dir / "reports" / "validation_report.json").read_text())
    assert saved["passed"] is False
    assert not (output_dir / "preprocessing").exists()
    assert not (output_dir / "models").exists()


def test_cancel_before_start(config, sample_df, output_dir):
    context = RunContext(config=config)
    context.cancel()

    with pytest.raises(PipelineCancelled):
        TrainingPipeline(config).run(context, source=sample_df)
    assert not output_dir.exists()


def test_cancel_during_training_skips_later_stages(make_config, sample_df, output_dir, stub_backend):
    context = None

    class CancellingClassifier(ExplodingClassifier):
        def fit(self, X, y):
            context.cancel()
            raise RuntimeError("cancelled mid-fit")

    stub_backend("cancelling", CancellingClassifier)
    config = make_config(models={"logistic_regression": {}, "cancelling": {}})
    context = RunContext(config=config)

    with pytest.raises(PipelineCancelled, match="evaluation"):
        TrainingPipeline(config).run(context, source=sample_df)

    assert (output_dir / "preprocessing" / "preprocessor.json").is_file()
    assert not (output_dir / "models").exists()
    assert not (output_dir / "reports" / "evaluation_report.json").exists()


def test_failed_backend_is_reported(make_config, sample_df, output_dir, stub_backend):
    stub_backend("exploding", ExplodingClassifier)
    config = make_config(models={"logistic_regression": {}, "exploding": {}})

    result = TrainingPipeline(config).run(source=sample_df)

    assert [m.backend for m in result.models] == ["logistic_regression"]
    assert [f.backend for f in result.failures] == ["exploding"]
    report = json.loads((output_dir / "reports" / "evaluation_report.json").read_text())
    assert [f["backend"] for f in report["failures"]] == ["exploding"]
    assert not (output_dir / "models" / "exploding.joblib").exists()


def test_all_backends_failing(make_config, sample_df, output_dir, stub_backend):
    stub_backend("exploding", ExplodingClassifier)
    config = make_config(models={"exploding": {}})

    with pytest.raises(TrainingError):
        TrainingPipeline(config).run(source=sample_df)
    assert not (output_dir / "reports" / "evaluation_report.json").exists()


def test_tracker_outage_is_not_fatal(config, sample_df):
    result = TrainingPipeline(config, tracker=BrokenTracker()).run(source=sample_df)

    assert len(result.tracker_errors) == 4
    assert all("unreachable" in e for e in result.tracker_errors)
    assert result.selection.selected_backend in BACKENDS


def test_versioned_runs_do_not_overwrite(make_config, sample_df, output_dir):
    config = make_config(artifacts={"versioned": True}, models={"logistic_regression": {}})

    first = TrainingPipeline(config).run(source=sample_df)
    second = TrainingPipeline(config).run(source=sample_df)

    assert first.run_id != second.run_id
    for run in (first, second):
        assert (output_dir / run.run_id / "reports" / "evaluation_report.json").is_file()
