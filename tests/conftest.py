# tests/conftest.py
import copy
from pathlib import Path
from typing import Any, Dict

import matplotlib

matplotlib.use("Agg")

import joblib
import pandas as pd
import pytest
from loguru import logger

from config import parse_config
from churn_pipeline.data import DataIngestor, FeatureSchema, Preprocessor, generate_sample_data
from churn_pipeline.models import BackendSpec, register_backend, unregister_backend

TARGET = "Churn"

FEATURES: Dict[str, Dict[str, Any]] = {
    "Tenure": {"type": "numeric", "min": 0, "max": 100},
    "WarehouseToHome": {"type": "numeric", "min": 0, "max": 200},
    "HourSpendOnApp": {"type": "numeric", "min": 0, "max": 24},
    "NumberOfDeviceRegistered": {"type": "numeric", "min": 0, "max": 10},
    "SatisfactionScore": {"type": "numeric", "nullable": False, "min": 1, "max": 5},
    "NumberOfAddress": {"type": "numeric", "min": 0},
    "OrderAmountHikeFromlastYear": {"type": "numeric"},
    "CouponUsed": {"type": "numeric", "min": 0},
    "OrderCount": {"type": "numeric", "min": 0},
    "DaySinceLastOrder": {"type": "numeric", "min": 0},
    "CashbackAmount": {"type": "numeric", "min": 0},
    "PreferredLoginDevice": {
        "type": "categorical",
        "categories": ["Mobile Phone", "Computer", "Phone"],
    },
    "CityTier": {"type": "categorical", "categories": [1, 2, 3]},
    "PreferredPaymentMode": {
        "type": "categorical",
        "categories": ["Debit Card", "Credit Card", "E wallet", "COD", "UPI"],
    },
    "Gender": {"type": "categorical", "categories": ["Male", "Female"]},
    "PreferedOrderCat": {"type": "categorical"},
    "MaritalStatus": {"type": "categorical", "categories": ["Single", "Married", "Divorced"]},
    "Complain": {"type": "categorical", "categories": [0, 1]},
}

# Small ensembles keep the suite fast
MODELS: Dict[str, Dict[str, Any]] = {
    "logistic_regression": {"params": {"max_iter": 1000}},
    "random_forest": {"params": {"n_estimators": 30, "max_depth": 6}},
    "xgboost": {"params": {"n_estimators": 30, "max_depth": 3}},
    "lightgbm": {"params": {"n_estimators": 30, "min_child_samples": 10}},
}


@pytest.fixture(autouse=True)
def disable_file_logger():
    logger.remove()
    logger.add(lambda msg: None)
    yield


@pytest.fixture
def sample_df() -> pd.DataFrame:
    """1000 customers, exactly 200 churned."""
    return generate_sample_data(n_samples=1000, positive_rate=0.2, random_state=7)


@pytest.fixture
def raw_config(tmp_path: Path) -> Dict[str, Any]:
    return {
        "data": {
            "source": str(tmp_path / "churn.csv"),
            "target_column": TARGET,
            "split_ratio": 0.8,
            "random_state": 42,
            "drop_columns": ["CustomerID"],
        },
        "features": copy.deepcopy(FEATURES),
        "validation": {
            "max_null_rate": 0.05,
            "min_positive_rate": 0.05,
            "max_positive_rate": 0.95,
        },
        "models": copy.deepcopy(MODELS),
        "training": {"cv_folds": 0},
        "evaluation": {"plots": False},
        "artifacts": {"output_dir": str(tmp_path / "artifacts")},
        "mlflow": {"enabled": False},
    }


@pytest.fixture
def make_config(raw_config):
    """
    Factory fixture for PipelineSettings.

    Usage:
        config = make_config()
        config = make_config(evaluation={"threshold": 0.6})

    Each keyword replaces (or, for mappings, updates) one top-level section.
    """

    def _make(**sections):
        raw = copy.deepcopy(raw_config)
        for name, value in sections.items():
            if isinstance(value, dict) and isinstance(raw.get(name), dict) and name not in ("models", "features"):
                raw[name].update(value)
            else:
                raw[name] = value
        return parse_config(raw)

    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def schema(config) -> FeatureSchema:
    return FeatureSchema.from_config(config)


@pytest.fixture
def features_df(sample_df) -> pd.DataFrame:
    """Sample customers as the validator and preprocessor see them."""
    return sample_df.drop(columns=["CustomerID"])


@pytest.fixture
def split(config, sample_df):
    return DataIngestor(config).ingest(source=sample_df)


@pytest.fixture
def transformed(config, schema, split):
    """(artifact, train, test) after fitting preprocessing on the train split."""
    preprocessor = Preprocessor(config, schema=schema)
    artifact = preprocessor.fit(split.train)
    return artifact, preprocessor.transform(split.train, artifact), preprocessor.transform(split.test, artifact)


@pytest.fixture
def stub_backend():
    """
    Register throwaway backends for one test.

    Usage:
        stub_backend("exploding", ExplodingClassifier)
    """
    registered = []

    def _register(name: str, factory, **kwargs) -> BackendSpec:
        spec = BackendSpec(
            name=name,
            factory=factory,
            library="scikit-learn",
            file_suffix=".joblib",
            serialization="joblib",
            save=joblib.dump,
            load=joblib.load,
            **kwargs,
        )
        register_backend(spec, replace=True)
        registered.append(name)
        return spec

    yield _register
    for name in registered:
        unregister_backend(name)
