"""
Model Trainer Module
====================

Trains every configured backend against the preprocessed training split.
Backends train independently in a worker pool; a failing backend is recorded
and excluded without aborting the others.
"""

import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import optuna
import pandas as pd
from loguru import logger
from sklearn.metrics import f1_score
from sklearn.model_selection import StratifiedKFold, cross_val_score

from config import PipelineSettings
from config.settings import ModelSettings, TuningSettings

from ..exceptions import BackendTrainingError, ConfigurationError, TrainingError
from .backends import BACKENDS, BackendSpec, get_backend

BackendConfigs = Mapping[str, Union[ModelSettings, Mapping[str, Any]]]


@dataclass(frozen=True)
class TrainedModel:
    """A fitted backend plus the configuration and metadata of its training."""

    backend: str
    params: Dict[str, Any]
    estimator: Any
    feature_names: Tuple[str, ...]
    duration_seconds: float = 0.0
    cv_scores: Optional[Tuple[float, ...]] = None
    tuned: bool = False

    def predict_proba(self, features: Union[pd.DataFrame, np.ndarray]) -> np.ndarray:
        """Positive-class scores for ``features``."""
        if isinstance(features, pd.DataFrame):
            features = features[list(self.feature_names)].to_numpy(dtype=float)
        return np.asarray(self.estimator.predict_proba(features))[:, 1]

    @property
    def cv_mean(self) -> Optional[float]:
        return float(np.mean(self.cv_scores)) if self.cv_scores else None

    def metadata(self) -> Dict[str, Any]:
        meta = {
            "backend": self.backend,
            "duration_seconds": round(self.duration_seconds, 4),
            "n_features": len(self.feature_names),
            "tuned": self.tuned,
        }
        if self.cv_scores:
            meta["cv_f1_mean"] = self.cv_mean
            meta["cv_f1_std"] = float(np.std(self.cv_scores))
        return meta


@dataclass(frozen=True)
class BackendFailure:
    """Record of a backend that failed to train."""

    backend: str
    error_type: str
    message: str
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "error_type": self.error_type,
            "message": self.message,
            "duration_seconds": round(self.duration_seconds, 4),
        }


@dataclass(frozen=True)
class TrainingOutcome:
    """Trained candidates and failures, both in backend declaration order."""

    models: Tuple[TrainedModel, ...]
    failures: Tuple[BackendFailure, ...] = field(default_factory=tuple)


class ModelTrainer:
    """Train all enabled model backends."""

    def __init__(
        self,
        config: Optional[PipelineSettings] = None,
        max_workers: Optional[int] = None,
        cv_folds: Optional[int] = None,
        tuning: Optional[TuningSettings] = None,
        log=None,
    ):
        """
        Initialize ModelTrainer.

        Args:
            config: Pipeline configuration
            max_workers: Worker pool size (defaults to min(cpu count, backends))
            cv_folds: Stratified folds for the train-set CV F1 score (0 disables)
            tuning: Optuna tuning options
            log: Logger to report through
        """
        self.config = config
        self.log = log or logger

        training = config.training if config is not None else None
        self.max_workers = max_workers or (training.max_workers if training else None)
        self.cv_folds = cv_folds if cv_folds is not None else (training.cv_folds if training else 0)
        self.tuning = tuning or (config.tuning if config is not None else TuningSettings())
        self.random_state = config.data.random_state if config is not None else 42
        self.target_column = config.data.target_column if config is not None else None

        if config is not None:
            self.check_backends(config.enabled_models)

    @staticmethod
    def check_backends(backend_configs: BackendConfigs):
        """Fail fast on backend names nobody registered."""
        unknown = [name for name in backend_configs if name not in BACKENDS]
        if unknown:
            raise ConfigurationError(f"Unknown model backends: {unknown}. Available: {list(BACKENDS)}")

    def _resolve_workers(self, n_jobs: int) -> int:
        cpu = os.cpu_count() or 1
        if self.max_workers is None:
            return max(1, min(cpu, n_jobs))
        return max(1, min(self.max_workers, n_jobs))

    @staticmethod
    def _params_of(entry: Union[ModelSettings, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(entry, ModelSettings):
            return dict(entry.params)
        return dict(entry.get("params", {}))

    @staticmethod
    def _enabled(entry: Union[ModelSettings, Mapping[str, Any]]) -> bool:
        if isinstance(entry, ModelSettings):
            return entry.enabled
        return bool(entry.get("enabled", True))

    def split_xy(self, df: pd.DataFrame, target_col: Optional[str] = None) -> Tuple[pd.DataFrame, pd.Series]:
        target_col = target_col or self.target_column
        if target_col is None or target_col not in df.columns:
            raise TrainingError(f"Target column '{target_col}' not in training data")
        return df.drop(columns=[target_col]), df[target_col]

    def train_all(
        self,
        preprocessed_train: pd.DataFrame,
        backend_configs: Optional[BackendConfigs] = None,
        target_col: Optional[str] = None,
    ) -> TrainingOutcome:
        """
        Train all enabled backends.

        Args:
            preprocessed_train: Transformed training frame (features plus target)
            backend_configs: ``{backend: {enabled, params}}``; defaults to the
                configured ``models`` section
            target_col: Target column name

        Returns:
            TrainingOutcome with candidates and failures in declaration order
        """
        if backend_configs is None:
            if self.config is None:
                raise ConfigurationError("No backend configuration given")
            backend_configs = self.config.enabled_models

        jobs = [(name, self._params_of(entry)) for name, entry in backend_configs.items() if self._enabled(entry)]
        if not jobs:
            raise TrainingError("No model backends enabled")
        self.check_backends(dict(jobs))

        features, labels = self.split_xy(preprocessed_train, target_col)
        feature_names = tuple(features.columns)
        X = features.to_numpy(dtype=float)
        y = labels.to_numpy(dtype=int)

        workers = self._resolve_workers(len(jobs))
        self.log.info(f"Training {len(jobs)} backends on {len(y)} rows with {workers} workers...")

        results: Dict[str, Union[TrainedModel, BackendFailure]] = {}
        if workers == 1:
            for name, params in jobs:
                results[name] = self.train_model(name, params, X, y, feature_names)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="train") as pool:
                futures = {
                    pool.submit(self.train_model, name, params, X, y, feature_names): name
                    for name, params in jobs
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()

        ordered = [results[name] for name, _ in jobs]
        models = tuple(r for r in ordered if isinstance(r, TrainedModel))
        failures = tuple(r for r in ordered if isinstance(r, BackendFailure))

        if not models:
            raise TrainingError(
                f"All {len(failures)} backends failed to train: "
                + "; ".join(f"{f.backend} ({f.message})" for f in failures),
                failures=failures,
            )

        self.log.info(f"Trained {len(models)} backends, {len(failures)} failed")
        return TrainingOutcome(models=models, failures=failures)

    def train_model(
        self,
        model_name: str,
        params: Optional[Dict[str, Any]],
        X: np.ndarray,
        y: np.ndarray,
        feature_names: Sequence[str],
    ) -> Union[TrainedModel, BackendFailure]:
        """
        Train a single backend, capturing any failure.

        Args:
            model_name: Registered backend name
            params: Hyperparameters overriding the backend defaults
            X: Training features (shared, never mutated)
            y: Training labels
            feature_names: Column names matching ``X``

        Returns:
            TrainedModel on success, BackendFailure otherwise
        """
        start = time.perf_counter()
        try:
            spec = get_backend(model_name)
            resolved = spec.resolve_params(params)
            tuned = False

            if self._should_tune(spec):
                resolved = {**resolved, **self.hyperparameter_tuning(spec, resolved, X, y)}
                tuned = True

            self.log.info(f"Training {model_name}...")
            estimator = spec.factory(**resolved)
            estimator.fit(X, y)
            classes = getattr(estimator, "classes_", None)
            if classes is not None and len(classes) != 2:
                raise BackendTrainingError(model_name, "training labels do not hold both classes")
            cv_scores = self._cross_validate(spec, resolved, X, y) if self.cv_folds else None
        except Exception as exc:
            duration = time.perf_counter() - start
            error = exc if isinstance(exc, BackendTrainingError) else BackendTrainingError(model_name, str(exc))
            self.log.error(f"Error training {model_name}: {error}")
            return BackendFailure(
                backend=model_name,
                error_type=type(exc).__name__,
                message=str(exc),
                duration_seconds=duration,
            )

        duration = time.perf_counter() - start

        model = TrainedModel(
            backend=model_name,
            params=resolved,
            estimator=estimator,
            feature_names=tuple(feature_names),
            duration_seconds=duration,
            cv_scores=cv_scores,
            tuned=tuned,
        )
        cv_text = f", CV F1: {model.cv_mean:.4f}" if cv_scores else ""
        self.log.info(f"{model_name} trained in {duration:.2f}s{cv_text}")
        return model

    def _cross_validate(self, spec: BackendSpec, params: Dict[str, Any], X: np.ndarray, y: np.ndarray) -> Optional[Tuple[float, ...]]:
        """F1 per stratified fold, each fold fit on a fresh estimator from the backend factory."""
        cv = StratifiedKFold(n_splits=self.cv_folds, shuffle=True, random_state=self.random_state)
        try:
            folds = list(cv.split(X, y))
        except ValueError as exc:
            self.log.warning(f"Skipping cross-validation for {spec.name}: {exc}")
            return None

        scores = []
        for train_idx, valid_idx in folds:
            estimator = spec.factory(**params)
            estimator.fit(X[train_idx], y[train_idx])
            y_pred = (np.asarray(estimator.predict_proba(X[valid_idx]))[:, 1] >= 0.5).astype(int)
            scores.append(float(f1_score(y[valid_idx], y_pred, zero_division=0)))
        return tuple(scores)

    def _should_tune(self, spec: BackendSpec) -> bool:
        if not self.tuning.enabled or spec.search_space is None:
            return False
        return self.tuning.backends is None or spec.name in self.tuning.backends

    def hyperparameter_tuning(
        self,
        spec: BackendSpec,
        base_params: Dict[str, Any],
        X: np.ndarray,
        y: np.ndarray,
    ) -> Dict[str, Any]:
        """
        Search hyperparameters with Optuna.

        Args:
            spec: Backend to tune
            base_params: Fixed parameters the search space overrides
            X: Training features
            y: Training labels

        Returns:
            Best parameters found
        """
        n_trials = self.tuning.n_trials
        cv = StratifiedKFold(n_splits=self.tuning.cv_folds, shuffle=True, random_state=self.random_state)
        self.log.info(f"Hyperparameter tuning for {spec.name} ({n_trials} trials)...")

        def objective(trial):
            params = {**base_params, **spec.search_space(trial)}
            cv_scores = cross_val_score(
                spec.factory(**params), X, y,
                cv=cv, scoring=self.tuning.scoring, n_jobs=1
            )
            return cv_scores.mean()

        optuna.logging.set_verbosity(optuna.logging.WARNING)
        study = optuna.create_study(
            direction="maximize",
            sampler=optuna.samplers.TPESampler(seed=self.random_state),
        )
        study.optimize(objective, n_trials=n_trials, timeout=self.tuning.timeout, show_progress_bar=False)

        self.log.info(f"{spec.name} best params: {study.best_params}")
        self.log.info(f"{spec.name} best CV {self.tuning.scoring}: {study.best_value:.4f}")
        return dict(study.best_params)
