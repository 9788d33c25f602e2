"""
Model Backends
==============

Registry of pluggable learning algorithms. Each backend is a tagged
``BackendSpec`` describing how to build the estimator, which defaults it
starts from, how to persist it in a self-describing format and, optionally,
which hyperparameters to search during tuning.

Every estimator offers the same capability set used by the pipeline:
``fit(features, labels)`` and ``predict_proba(features)``.
"""

import json
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import joblib
import numpy as np
from catboost import CatBoostClassifier
from lightgbm import Booster, LGBMClassifier
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from xgboost import XGBClassifier

from ..exceptions import ConfigurationError


@dataclass(frozen=True)
class BackendSpec:
    """How to build, persist and tune one kind of model."""

    name: str
    factory: Callable[..., Any]
    library: str
    file_suffix: str
    serialization: str
    save: Callable[[Any, Path], None]
    load: Callable[[Path], Any]
    default_params: Dict[str, Any] = field(default_factory=dict)
    search_space: Optional[Callable[[Any], Dict[str, Any]]] = None

    def resolve_params(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {**self.default_params, **(params or {})}

    @property
    def library_version(self) -> str:
        try:
            return version(self.library)
        except PackageNotFoundError:
            return "unknown"


class LightGBMModel:
    """Prediction wrapper around a LightGBM booster reloaded from its text model."""

    def __init__(self, booster: Booster):
        self.booster = booster

    def predict_proba(self, X):
        positive = np.asarray(self.booster.predict(X), dtype=float)
        return np.column_stack([1.0 - positive, positive])


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------

def _save_logistic(model: LogisticRegression, path: Path):
    payload = {
        "classes": model.classes_.tolist(),
        "coef": model.coef_.tolist(),
        "intercept": model.intercept_.tolist(),
        "n_features_in": int(model.n_features_in_),
        "params": {k: v for k, v in model.get_params().items() if _is_jsonable(v)},
    }
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)


def _load_logistic(path: Path) -> LogisticRegression:
    with open(path, "r") as f:
        payload = json.load(f)
    model = LogisticRegression(**payload["params"])
    model.classes_ = np.asarray(payload["classes"])
    model.coef_ = np.asarray(payload["coef"], dtype=float)
    model.intercept_ = np.asarray(payload["intercept"], dtype=float)
    model.n_features_in_ = payload["n_features_in"]
    return model


def _save_joblib(model: Any, path: Path):
    joblib.dump(model, path)


def _save_xgboost(model: XGBClassifier, path: Path):
    model.save_model(str(path))


def _load_xgboost(path: Path) -> XGBClassifier:
    model = XGBClassifier()
    model.load_model(str(path))
    return model


def _save_lightgbm(model: LGBMClassifier, path: Path):
    model.booster_.save_model(str(path))


def _load_lightgbm(path: Path) -> LightGBMModel:
    return LightGBMModel(Booster(model_file=str(path)))


def _save_catboost(model: CatBoostClassifier, path: Path):
    model.save_model(str(path), format="json")


def _load_catboost(path: Path) -> CatBoostClassifier:
    model = CatBoostClassifier()
    model.load_model(str(path), format="json")
    return model


def _is_jsonable(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


# ---------------------------------------------------------------------------
# Optuna search spaces
# ---------------------------------------------------------------------------

def _logistic_space(trial) -> Dict[str, Any]:
    return {"C": trial.suggest_float("C", 1e-4, 10.0, log=True)}


def _random_forest_space(trial) -> Dict[str, Any]:
    return {
        "n_estimators": trial.suggest_int("n_estimators", 50, 300),
        "max_depth": trial.suggest_int("max_depth", 3, 20),
        "min_samples_split": trial.suggest_int("min_samples_split", 2, 20),
        "min_samples_leaf": trial.suggest_int("min_samples_leaf", 1, 10),
    }


def _xgboost_space(trial) -> Dict[str, Any]:
    return {
        "n_estimators": trial.suggest_int("n_estimators", 50, 300),
        "max_depth": trial.suggest_int("max_depth", 3, 15),
        "learning_rate": trial.suggest_float("learning_rate", 0.01, 0.3, log=True),
        "subsample": trial.suggest_float("subsample", 0.6, 1.0),
        "colsample_bytree": trial.suggest_float("colsample_bytree", 0.6, 1.0),
        "min_child_weight": trial.suggest_int("min_child_weight", 1, 10),
    }


def _lightgbm_space(trial) -> Dict[str, Any]:
    return {
        "n_estimators": trial.suggest_int("n_estimators", 50, 300),
        "max_depth": trial.suggest_int("max_depth", 3, 15),
        "learning_rate": trial.suggest_float("learning_rate", 0.01, 0.3, log=True),
        "num_leaves": trial.suggest_int("num_leaves", 10, 100),
        "min_child_samples": trial.suggest_int("min_child_samples", 5, 100),
    }


def _catboost_space(trial) -> Dict[str, Any]:
    return {
        "iterations": trial.suggest_int("iterations", 50, 300),
        "depth": trial.suggest_int("depth", 3, 10),
        "learning_rate": trial.suggest_float("learning_rate", 0.01, 0.3, log=True),
        "l2_leaf_reg": trial.suggest_float("l2_leaf_reg", 1e-3, 10.0, log=True),
    }


def _gradient_boosting_space(trial) -> Dict[str, Any]:
    return {
        "n_estimators": trial.suggest_int("n_estimators", 50, 300),
        "max_depth": trial.suggest_int("max_depth", 2, 8),
        "learning_rate": trial.suggest_float("learning_rate", 0.01, 0.3, log=True),
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

BACKENDS: Dict[str, BackendSpec] = {}


def register_backend(spec: BackendSpec, replace: bool = False) -> BackendSpec:
    """Add a backend to the registry; the orchestrator picks it up by name."""
    if spec.name in BACKENDS and not replace:
        raise ValueError(f"Backend already registered: {spec.name}")
    BACKENDS[spec.name] = spec
    return spec


def unregister_backend(name: str):
    BACKENDS.pop(name, None)


def get_backend(name: str) -> BackendSpec:
    if name not in BACKENDS:
        raise ConfigurationError(f"Unknown model: {name}. Available: {list(BACKENDS)}")
    return BACKENDS[name]


register_backend(BackendSpec(
    name="logistic_regression",
    factory=LogisticRegression,
    library="scikit-learn",
    file_suffix=".json",
    serialization="sklearn-logistic-json",
    save=_save_logistic,
    load=_load_logistic,
    default_params={"max_iter": 1000, "class_weight": "balanced", "random_state": 42},
    search_space=_logistic_space,
))

register_backend(BackendSpec(
    name="random_forest",
    factory=RandomForestClassifier,
    library="scikit-learn",
    file_suffix=".joblib",
    serialization="joblib",
    save=_save_joblib,
    load=joblib.load,
    default_params={"n_estimators": 200, "class_weight": "balanced", "random_state": 42, "n_jobs": 1},
    search_space=_random_forest_space,
))

register_backend(BackendSpec(
    name="xgboost",
    factory=XGBClassifier,
    library="xgboost",
    file_suffix=".json",
    serialization="xgboost-json",
    save=_save_xgboost,
    load=_load_xgboost,
    default_params={"n_estimators": 200, "eval_metric": "logloss", "random_state": 42, "n_jobs": 1},
    search_space=_xgboost_space,
))

register_backend(BackendSpec(
    name="lightgbm",
    factory=LGBMClassifier,
    library="lightgbm",
    file_suffix=".txt",
    serialization="lightgbm-text",
    save=_save_lightgbm,
    load=_load_lightgbm,
    default_params={"n_estimators": 200, "class_weight": "balanced", "random_state": 42, "n_jobs": 1, "verbose": -1},
    search_space=_lightgbm_space,
))

register_backend(BackendSpec(
    name="catboost",
    factory=CatBoostClassifier,
    library="catboost",
    file_suffix=".json",
    serialization="catboost-json",
    save=_save_catboost,
    load=_load_catboost,
    default_params={"iterations": 200, "random_state": 42, "verbose": 0, "thread_count": 1},
    search_space=_catboost_space,
))

register_backend(BackendSpec(
    name="gradient_boosting",
    factory=GradientBoostingClassifier,
    library="scikit-learn",
    file_suffix=".joblib",
    serialization="joblib",
    save=_save_joblib,
    load=joblib.load,
    default_params={"random_state": 42},
    search_space=_gradient_boosting_space,
))
