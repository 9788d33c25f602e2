import numpy as np
import pytest

from config.settings import TuningSettings
from churn_pipeline.exceptions import ConfigurationError, TrainingError
from churn_pipeline.models import BACKENDS, ModelTrainer, TrainedModel, get_backend

TARGET = "Churn"


class ExplodingClassifier:
    """Fails on fit, whatever it is given."""

    def __init__(self, **params):
        self.params = params

    def fit(self, X, y):
        raise RuntimeError("boom")


class MeanRateClassifier:
    """Only ``fit`` and ``predict_proba``: no sklearn estimator API."""

    def __init__(self, **params):
        self.rate = 0.5

    def fit(self, X, y):
        self.rate = float(np.mean(y))
        return self

    def predict_proba(self, X):
        p = np.full(len(X), self.rate)
        return np.column_stack([1 - p, p])


class FailsAfterFirstFit(MeanRateClassifier):
    """Trains once, then fails on every later fit (the cross-validation folds)."""

    fits = 0

    def fit(self, X, y):
        type(self).fits += 1
        if type(self).fits > 1:
            raise AttributeError("no state for refit")
        return super().fit(X, y)


def test_builtin_backends_registered():
    for name in ("logistic_regression", "random_forest", "xgboost", "lightgbm", "catboost", "gradient_boosting"):
        assert name in BACKENDS


def test_unknown_backend_lookup():
    with pytest.raises(ConfigurationError, match="Available"):
        get_backend("perceptron_9000")


def test_resolve_params_overrides_defaults():
    spec = get_backend("random_forest")
    params = spec.resolve_params({"n_estimators": 5})
    assert params["n_estimators"] == 5
    assert params["class_weight"] == "balanced"


def test_trains_every_enabled_backend(config, transformed):
    artifact, train, test = transformed
    outcome = ModelTrainer(config).train_all(train)

    assert [m.backend for m in outcome.models] == ["logistic_regression", "random_forest", "xgboost", "lightgbm"]
    assert outcome.failures == ()
    for model in outcome.models:
        assert isinstance(model, TrainedModel)
        assert model.feature_names == artifact.feature_names
        assert model.duration_seconds >= 0
        scores = model.predict_proba(test)
        assert scores.shape == (len(test),)
        assert ((scores >= 0) & (scores <= 1)).all()


def test_configured_params_reach_estimator(config, transformed):
    _, train, _ = transformed
    outcome = ModelTrainer(config).train_all(train)

    forest = next(m for m in outcome.models if m.backend == "random_forest")
    assert forest.params["n_estimators"] == 30
    assert forest.estimator.n_estimators == 30


def test_failing_backend_is_isolated(config, transformed, stub_backend):
    stub_backend("exploding", ExplodingClassifier)
    _, train, _ = transformed

    outcome = ModelTrainer(config).train_all(
        train,
        backend_configs={"logistic_regression": {}, "exploding": {}, "random_forest": {"params": {"n_estimators": 10}}},
    )

    assert [m.backend for m in outcome.models] == ["logistic_regression", "random_forest"]
    (failure,) = outcome.failures
    assert failure.backend == "exploding"
    assert failure.error_type == "RuntimeError"
    assert "boom" in failure.message


def test_all_backends_failing_is_fatal(config, transformed, stub_backend):
    names = [f"exploding_{i}" for i in range(4)]
    for name in names:
        stub_backend(name, ExplodingClassifier)
    _, train, _ = transformed

    with pytest.raises(TrainingError) as excinfo:
        ModelTrainer(config).train_all(train, backend_configs={name: {} for name in names})

    assert [f.backend for f in excinfo.value.failures] == names
    assert excinfo.value.exit_code == 6


def test_single_class_training_data_fails_every_backend(config, transformed):
    _, train, _ = transformed
    train = train.copy()
    train[TARGET] = 0

    with pytest.raises(TrainingError) as excinfo:
        ModelTrainer(config).train_all(train)
    assert len(excinfo.value.failures) == 4


def test_disabled_backends_are_skipped(config, transformed):
    _, train, _ = transformed
    outcome = ModelTrainer(config).train_all(
        train,
        backend_configs={"logistic_regression": {}, "xgboost": {"enabled": False}},
    )
    assert [m.backend for m in outcome.models] == ["logistic_regression"]


def test_unknown_backend_in_configs(config, transformed):
    _, train, _ = transformed
    with pytest.raises(ConfigurationError):
        ModelTrainer(config).train_all(train, backend_configs={"perceptron_9000": {}})


def test_missing_target(config, transformed):
    _, train, _ = transformed
    with pytest.raises(TrainingError, match="Target"):
        ModelTrainer(config).train_all(train.drop(columns=[TARGET]))


def test_parallel_matches_sequential(config, transformed):
    _, train, test = transformed
    configs = {"logistic_regression": {}, "random_forest": {"params": {"n_estimators": 20}}}

    sequential = ModelTrainer(config, max_workers=1).train_all(train, backend_configs=configs)
    parallel = ModelTrainer(config, max_workers=2).train_all(train, backend_configs=configs)

    for a, b in zip(sequential.models, parallel.models):
        assert a.backend == b.backend
        np.testing.assert_allclose(a.predict_proba(test), b.predict_proba(test))


def test_training_input_not_mutated(config, transformed):
    _, train, _ = transformed
    before = train.copy()
    ModelTrainer(config).train_all(train, backend_configs={"logistic_regression": {}})
    assert train.equals(before)


def test_cross_validation_scores(config, transformed):
    _, train, _ = transformed
    outcome = ModelTrainer(config, cv_folds=3).train_all(train, backend_configs={"logistic_regression": {}})

    (model,) = outcome.models
    assert len(model.cv_scores) == 3
    assert 0.0 <= model.cv_mean <= 1.0
    assert "cv_f1_mean" in model.metadata()


def test_cross_validation_with_minimal_backend(config, transformed, stub_backend):
    stub_backend("mean_rate", MeanRateClassifier)
    _, train, _ = transformed

    outcome = ModelTrainer(config, cv_folds=3).train_all(
        train, backend_configs={"logistic_regression": {}, "mean_rate": {}}
    )

    assert [m.backend for m in outcome.models] == ["logistic_regression", "mean_rate"]
    assert outcome.failures == ()
    assert len(outcome.models[1].cv_scores) == 3


def test_cross_validation_failure_is_isolated(config, transformed, stub_backend):
    FailsAfterFirstFit.fits = 0
    stub_backend("fragile", FailsAfterFirstFit)
    _, train, _ = transformed

    outcome = ModelTrainer(config, cv_folds=3, max_workers=1).train_all(
        train, backend_configs={"logistic_regression": {}, "fragile": {}}
    )

    assert [m.backend for m in outcome.models] == ["logistic_regression"]
    (failure,) = outcome.failures
    assert failure.backend == "fragile"
    assert failure.error_type == "AttributeError"


def test_hyperparameter_tuning(config, transformed):
    _, train, _ = transformed
    tuning = TuningSettings(enabled=True, n_trials=2, cv_folds=2, backends=["logistic_regression"])

    outcome = ModelTrainer(config, tuning=tuning).train_all(
        train, backend_configs={"logistic_regression": {}, "random_forest": {"params": {"n_estimators": 10}}}
    )

    tuned = {m.backend: m.tuned for m in outcome.models}
    assert tuned == {"logistic_regression": True, "random_forest": False}
    assert "C" in outcome.models[0].params


def test_worker_count_is_bounded(config):
    assert ModelTrainer(config, max_workers=16)._resolve_workers(3) == 3
    assert ModelTrainer(config, max_workers=2)._resolve_workers(4) == 2
    assert ModelTrainer(config)._resolve_workers(1) == 1
