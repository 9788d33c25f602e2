"""
Experiment Tracking
===================

The pipeline only needs a ``log(params, metrics, artifact_ref)`` capability
from its tracker; storage format is the tracker's business.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol
from urllib.parse import urlparse

from loguru import logger
from mlflow.entities import Metric, Param, RunTag
from mlflow.tracking import MlflowClient

from config import PipelineSettings


class ExperimentTracker(Protocol):
    def log(
        self,
        run_id: str,
        backend: str,
        params: Mapping[str, Any],
        metrics: Mapping[str, Any],
        artifact_ref: Optional[str] = None,
        tags: Optional[Mapping[str, Any]] = None,
    ) -> None: ...


@dataclass(frozen=True)
class TrackedRun:
    run_id: str
    backend: str
    params: Dict[str, Any]
    metrics: Dict[str, Any]
    artifact_ref: Optional[str] = None
    tags: Dict[str, Any] = field(default_factory=dict)


class InMemoryTracker:
    """Keeps logged runs in memory; the default when MLflow is disabled."""

    def __init__(self):
        self.runs: List[TrackedRun] = []
        self._lock = threading.Lock()

    def log(self, run_id, backend, params, metrics, artifact_ref=None, tags=None):
        with self._lock:
            self.runs.append(TrackedRun(
                run_id=run_id,
                backend=backend,
                params=dict(params),
                metrics=dict(metrics),
                artifact_ref=artifact_ref,
                tags=dict(tags or {}),
            ))


class MLflowTracker:
    """Logs one MLflow run per trained backend."""

    def __init__(self, tracking_uri: str = "mlruns", experiment_name: str = "churn_prediction", log=None):
        self.tracking_uri = self._normalise_uri(tracking_uri)
        self.experiment_name = experiment_name
        self.log = log or logger
        self.client = MlflowClient(tracking_uri=self.tracking_uri)
        self._experiment_id: Optional[str] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: PipelineSettings, log=None) -> "MLflowTracker":
        return cls(config.mlflow.tracking_uri, config.mlflow.experiment_name, log=log)

    @staticmethod
    def _normalise_uri(uri: str) -> str:
        # Bare paths become file URIs
        if urlparse(uri).scheme in ("", "file") and "://" not in uri:
            return Path(uri).absolute().as_uri()
        return uri

    def _experiment(self) -> str:
        """Create the experiment if it doesn't exist."""
        if self._experiment_id is None:
            experiment = self.client.get_experiment_by_name(self.experiment_name)
            if experiment is None:
                self._experiment_id = self.client.create_experiment(self.experiment_name)
                self.log.info(f"MLflow experiment created: {self.experiment_name}")
            else:
                self._experiment_id = experiment.experiment_id
            self.log.info(f"MLflow tracking URI: {self.tracking_uri}")
        return self._experiment_id

    def log(self, run_id, backend, params, metrics, artifact_ref=None, tags=None):
        with self._lock:
            experiment_id = self._experiment()

        run_tags = {
            "model_type": backend,
            "pipeline_run_id": run_id,
            **({"artifact_ref": str(artifact_ref)} if artifact_ref else {}),
            **{k: str(v) for k, v in (tags or {}).items()},
        }
        run = self.client.create_run(experiment_id, run_name=f"{backend}_{run_id}")
        timestamp = int(time.time() * 1000)
        try:
            self.client.log_batch(
                run.info.run_id,
                metrics=[
                    Metric(key, float(value), timestamp, 0)
                    for key, value in metrics.items()
                    if isinstance(value, (int, float)) and math.isfinite(value)
                ],
                params=[Param(key, str(value)) for key, value in params.items()],
                tags=[RunTag(key, value) for key, value in run_tags.items()],
            )
        except Exception:
            self.client.set_terminated(run.info.run_id, status="FAILED")
            raise
        self.client.set_terminated(run.info.run_id, status="FINISHED")
        self.log.debug(f"Logged {backend} to MLflow run {run.info.run_id}")


def create_tracker(config: PipelineSettings, log=None) -> ExperimentTracker:
    """MLflow when enabled in the config, otherwise an in-memory tracker."""
    if config.mlflow.enabled:
        return MLflowTracker.from_config(config, log=log)
    return InMemoryTracker()
