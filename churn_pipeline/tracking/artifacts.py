"""
Artifact Store
==============

Persists reports, the preprocessing artifact and model binaries under a
stable layout::

    <output_dir>[/<run_id>]/
        reports/validation_report.json
        reports/evaluation_report.json
        reports/figures/<name>.png
        preprocessing/preprocessor.json
        models/<backend>.<ext>
        models/<backend>.manifest.json

Every write goes to a temporary file in the target directory and is then
renamed into place, one writer per path at a time.
"""

import hashlib
import io
import json
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Union

from loguru import logger

from ..data.preprocessor import PreprocessingArtifact
from ..data.validator import ValidationReport
from ..exceptions import PersistenceError
from ..models.backends import get_backend
from ..models.selector import SelectionResult
from ..models.trainer import BackendFailure, TrainedModel
from ..utils import to_builtin

MANIFEST_FORMAT_VERSION = 1
MANIFEST_KIND = "churn_pipeline.model"

VALIDATION_REPORT = "validation_report.json"
EVALUATION_REPORT = "evaluation_report.json"
PREPROCESSOR_FILE = "preprocessor.json"

_REGISTRY_LOCK = threading.Lock()
_PATH_LOCKS: Dict[str, threading.Lock] = {}


def _lock_for(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _REGISTRY_LOCK:
        return _PATH_LOCKS.setdefault(key, threading.Lock())


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ArtifactStore:
    """File-system store for everything a run produces."""

    def __init__(
        self,
        output_dir: Union[str, Path],
        run_id: Optional[str] = None,
        versioned: bool = False,
        log=None,
    ):
        """
        Initialize ArtifactStore.

        Args:
            output_dir: Root directory for artifacts
            run_id: Run identifier, used as a subdirectory when versioned
            versioned: Keep each run under its own directory instead of
                overwriting the previous run
            log: Logger to report through
        """
        self.output_dir = Path(output_dir)
        self.run_id = run_id
        self.versioned = versioned
        self.log = log or logger

        if versioned and not run_id:
            raise PersistenceError("A versioned artifact store needs a run_id")
        self.base_dir = self.output_dir / run_id if versioned else self.output_dir

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def reports_dir(self) -> Path:
        return self.base_dir / "reports"

    @property
    def figures_dir(self) -> Path:
        return self.reports_dir / "figures"

    @property
    def preprocessing_dir(self) -> Path:
        return self.base_dir / "preprocessing"

    @property
    def models_dir(self) -> Path:
        return self.base_dir / "models"

    def model_path(self, backend: str) -> Path:
        return self.models_dir / f"{backend}{get_backend(backend).file_suffix}"

    def manifest_path(self, backend: str) -> Path:
        return self.models_dir / f"{backend}.manifest.json"

    # ------------------------------------------------------------------
    # Low-level writes
    # ------------------------------------------------------------------

    def write_atomic(self, path: Path, writer: Callable[[Path], None]) -> Path:
        """
        Run ``writer`` against a temporary sibling of ``path`` and move it into place.

        Args:
            path: Final destination
            writer: Callable writing the full content to the path it is given

        Returns:
            The destination path
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create directory {path.parent}: {exc}") from exc

        tmp_path = path.with_name(f".{path.stem}.{uuid.uuid4().hex[:8]}.tmp{path.suffix}")
        with _lock_for(path):
            try:
                writer(tmp_path)
                os.replace(tmp_path, path)
            except Exception as exc:
                if tmp_path.exists():
                    tmp_path.unlink()
                raise PersistenceError(f"Failed to write {path}: {exc}") from exc

        self.log.debug(f"Wrote {path}")
        return path

    def write_bytes(self, path: Path, data: bytes) -> Path:
        return self.write_atomic(path, lambda tmp: tmp.write_bytes(data))

    def write_json(self, path: Path, payload: Dict[str, Any]) -> Path:
        text = json.dumps(to_builtin(payload), indent=2, allow_nan=False)
        return self.write_atomic(path, lambda tmp: tmp.write_text(text, encoding="utf-8"))

    @staticmethod
    def read_json(path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Cannot read {path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def save_validation_report(self, report: ValidationReport) -> Path:
        payload = {"run_id": self.run_id, **report.to_dict()}
        path = self.write_json(self.reports_dir / VALIDATION_REPORT, payload)
        self.log.info(f"Validation report saved to {path}")
        return path

    def save_evaluation_report(
        self,
        selection: SelectionResult,
        failures: Sequence[BackendFailure] = (),
        models: Sequence[TrainedModel] = (),
        artifact_paths: Optional[Dict[str, Path]] = None,
    ) -> Path:
        payload = {
            "run_id": self.run_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            **selection.to_dict(),
            "training": [m.metadata() for m in models],
            "failures": [f.to_dict() for f in failures],
            "artifacts": {k: str(v) for k, v in (artifact_paths or {}).items()},
        }
        path = self.write_json(self.reports_dir / EVALUATION_REPORT, payload)
        self.log.info(f"Evaluation report saved to {path}")
        return path

    def save_figure(self, fig, name: str) -> Path:
        buffer = io.BytesIO()
        fig.savefig(buffer, format="png", dpi=150, bbox_inches="tight")
        return self.write_bytes(self.figures_dir / f"{name}.png", buffer.getvalue())

    # ------------------------------------------------------------------
    # Preprocessing artifact
    # ------------------------------------------------------------------

    def save_preprocessing_artifact(self, artifact: PreprocessingArtifact) -> Path:
        path = self.write_json(self.preprocessing_dir / PREPROCESSOR_FILE, artifact.to_dict())
        self.log.info(f"Preprocessing artifact saved to {path}")
        return path

    def load_preprocessing_artifact(self, path: Optional[Path] = None) -> PreprocessingArtifact:
        path = Path(path) if path is not None else self.preprocessing_dir / PREPROCESSOR_FILE
        return PreprocessingArtifact.from_dict(self.read_json(path))

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def save_model(self, model: TrainedModel) -> Path:
        """
        Persist a trained model plus its JSON manifest.

        Args:
            model: Trained candidate

        Returns:
            Path of the model binary
        """
        spec = get_backend(model.backend)
        path = self.write_atomic(self.model_path(model.backend), lambda tmp: spec.save(model.estimator, tmp))

        manifest = {
            "kind": MANIFEST_KIND,
            "format_version": MANIFEST_FORMAT_VERSION,
            "run_id": self.run_id,
            "backend": model.backend,
            "serialization": spec.serialization,
            "library": spec.library,
            "library_version": spec.library_version,
            "file": path.name,
            "sha256": _sha256(path),
            "params": model.params,
            "feature_names": list(model.feature_names),
            "training": model.metadata(),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self.write_json(self.manifest_path(model.backend), manifest)
        self.log.info(f"Model saved to {path}")
        return path

    def load_model(self, backend: str) -> Any:
        """
        Reload a persisted estimator after checking its manifest.

        Args:
            backend: Backend name

        Returns:
            Estimator exposing ``predict_proba``
        """
        manifest = self.read_json(self.manifest_path(backend))
        if manifest.get("kind") != MANIFEST_KIND or manifest.get("format_version") != MANIFEST_FORMAT_VERSION:
            raise PersistenceError(f"Unsupported model manifest for {backend}")

        path = self.models_dir / manifest["file"]
        if not path.is_file():
            raise PersistenceError(f"Model not found: {path}")
        if _sha256(path) != manifest["sha256"]:
            raise PersistenceError(f"Checksum mismatch for {path}")

        try:
            model = get_backend(backend).load(path)
        except Exception as exc:
            raise PersistenceError(f"Cannot load {path}: {exc}") from exc
        self.log.info(f"Model loaded from {path}")
        return model
