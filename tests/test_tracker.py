import pytest

from churn_pipeline.tracking import InMemoryTracker, MLflowTracker, create_tracker


def test_in_memory_tracker_records_runs():
    tracker = InMemoryTracker()
    tracker.log("run-1", "xgboost", {"max_depth": 3}, {"roc_auc": 0.9}, artifact_ref="models/xgboost.json")

    (run,) = tracker.runs
    assert run.run_id == "run-1"
    assert run.backend == "xgboost"
    assert run.params == {"max_depth": 3}
    assert run.metrics == {"roc_auc": 0.9}
    assert run.artifact_ref == "models/xgboost.json"


def test_create_tracker_follows_config(make_config, tmp_path):
    assert isinstance(create_tracker(make_config()), InMemoryTracker)

    config = make_config(mlflow={"enabled": True, "tracking_uri": str(tmp_path / "mlruns")})
    assert isinstance(create_tracker(config), MLflowTracker)


def test_bare_path_becomes_file_uri(tmp_path):
    tracker = MLflowTracker(str(tmp_path / "mlruns"), "churn_test")
    assert tracker.tracking_uri.startswith("file://")


@pytest.mark.filterwarnings("ignore")
def test_mlflow_tracker_logs_one_run_per_backend(tmp_path):
    tracker = MLflowTracker(str(tmp_path / "mlruns"), "churn_test")

    tracker.log(
        "run-1",
        "xgboost",
        params={"max_depth": 3, "learning_rate": 0.1},
        metrics={"roc_auc": 0.91, "f1": 0.8, "average_precision": float("nan"), "backend": "xgboost"},
        artifact_ref="artifacts/models/xgboost.json",
        tags={"tuned": False},
    )
    tracker.log("run-1", "lightgbm", params={}, metrics={"roc_auc": 0.89})

    experiment = tracker.client.get_experiment_by_name("churn_test")
    runs = tracker.client.search_runs([experiment.experiment_id])
    assert len(runs) == 2

    xgb = next(r for r in runs if r.data.tags["model_type"] == "xgboost")
    assert xgb.info.status == "FINISHED"
    assert xgb.data.params == {"max_depth": "3", "learning_rate": "0.1"}
    assert xgb.data.metrics == {"roc_auc": 0.91, "f1": 0.8}
    assert xgb.data.tags["pipeline_run_id"] == "run-1"
    assert xgb.data.tags["artifact_ref"] == "artifacts/models/xgboost.json"
    assert xgb.data.tags["tuned"] == "False"
