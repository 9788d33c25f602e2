import math

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from churn_pipeline.models import EvaluationMetrics, ModelEvaluator, ModelTrainer, TrainedModel

TARGET = "Churn"


class FixedScores:
    """Returns predetermined positive-class scores, one per row."""

    def __init__(self, scores):
        self.scores = np.asarray(scores, dtype=float)

    def predict_proba(self, X):
        return np.column_stack([1 - self.scores, self.scores])


def stub_model(scores, backend="stub") -> TrainedModel:
    return TrainedModel(backend=backend, params={}, estimator=FixedScores(scores), feature_names=("x",))


@pytest.fixture
def scored_frame() -> pd.DataFrame:
    return pd.DataFrame({"x": np.zeros(6), TARGET: [1, 1, 0, 0, 1, 0]})


SCORES = [0.9, 0.4, 0.2, 0.6, 0.7, 0.1]


def test_metrics_at_default_threshold(scored_frame):
    metrics = ModelEvaluator().evaluate(stub_model(SCORES), scored_frame, TARGET)

    assert (metrics.true_positives, metrics.false_negatives) == (2, 1)
    assert (metrics.false_positives, metrics.true_negatives) == (1, 2)
    assert metrics.precision == pytest.approx(2 / 3)
    assert metrics.recall == pytest.approx(2 / 3)
    assert metrics.sensitivity == metrics.recall
    assert metrics.specificity == pytest.approx(2 / 3)
    assert metrics.accuracy == pytest.approx(4 / 6)
    assert metrics.f1 == pytest.approx(2 / 3)
    assert metrics.roc_auc == pytest.approx(8 / 9)
    assert metrics.threshold == 0.5
    assert metrics.n_samples == 6


def test_threshold_from_config(make_config, scored_frame):
    evaluator = ModelEvaluator(make_config(evaluation={"threshold": 0.65}))
    metrics = evaluator.evaluate(stub_model(SCORES), scored_frame)

    assert metrics.threshold == 0.65
    assert metrics.false_positives == 0
    assert metrics.precision == 1.0
    assert metrics.roc_auc == pytest.approx(8 / 9)


def test_single_class_test_split_has_undefined_auc():
    frame = pd.DataFrame({"x": np.zeros(4), TARGET: [0, 0, 0, 0]})
    metrics = ModelEvaluator().evaluate(stub_model([0.1, 0.2, 0.7, 0.3]), frame, TARGET)

    assert math.isnan(metrics.roc_auc)
    assert math.isnan(metrics.average_precision)
    assert metrics.get("roc_auc") == float("-inf")
    assert metrics.to_dict()["roc_auc"] is None
    assert metrics.false_positives == 1


def test_no_positive_predictions_do_not_raise(scored_frame):
    metrics = ModelEvaluator().evaluate(stub_model([0.1] * 6), scored_frame, TARGET)

    assert metrics.precision == 0.0
    assert metrics.recall == 0.0
    assert metrics.f1 == 0.0


def test_confusion_matrix_layout(scored_frame):
    metrics = ModelEvaluator().evaluate(stub_model(SCORES), scored_frame, TARGET)
    np.testing.assert_array_equal(metrics.confusion_matrix, [[2, 1], [1, 2]])


def test_metrics_are_frozen(scored_frame):
    metrics = ModelEvaluator().evaluate(stub_model(SCORES), scored_frame, TARGET)
    with pytest.raises(Exception):
        metrics.f1 = 1.0


def test_evaluate_all_keeps_order(config, transformed):
    _, train, test = transformed
    outcome = ModelTrainer(config).train_all(train)

    metrics = ModelEvaluator(config).evaluate_all(outcome.models, test)
    assert [m.backend for m in metrics] == [m.backend for m in outcome.models]
    for m in metrics:
        assert isinstance(m, EvaluationMetrics)
        assert m.n_samples == 200
        assert 0.5 < m.roc_auc <= 1.0

    table = ModelEvaluator.comparison_table(metrics)
    assert list(table.index) == [m.backend for m in metrics]
    assert "roc_auc" in table.columns


def test_explicit_zero_threshold_is_kept(make_config, scored_frame):
    evaluator = ModelEvaluator(make_config(evaluation={"threshold": 0.65}), threshold=0.0)
    metrics = evaluator.evaluate(stub_model(SCORES), scored_frame)

    assert metrics.threshold == 0.0
    assert (metrics.true_positives, metrics.false_positives) == (3, 3)


def test_find_optimal_threshold(scored_frame):
    threshold, score = ModelEvaluator().find_optimal_threshold(stub_model(SCORES), scored_frame, TARGET)

    # 0.21 is the first grid point that drops the 0.2 negative
    assert threshold == pytest.approx(0.21)
    assert score == pytest.approx(6 / 7)


def test_find_optimal_threshold_unknown_metric(scored_frame):
    with pytest.raises(ValueError, match="Unknown threshold metric"):
        ModelEvaluator().find_optimal_threshold(stub_model(SCORES), scored_frame, TARGET, metric="roc_auc")


def test_plots_return_figures(scored_frame):
    evaluator = ModelEvaluator()
    model = stub_model(SCORES)
    metrics = evaluator.evaluate(model, scored_frame, TARGET)

    cm_fig = evaluator.plot_confusion_matrix(metrics)
    roc_fig = evaluator.plot_roc_curves([model], scored_frame, TARGET)
    try:
        assert len(cm_fig.axes) >= 2
        assert roc_fig.axes[0].get_title() == "ROC Curves Comparison"
    finally:
        plt.close(cm_fig)
        plt.close(roc_fig)


def test_comparison_plots(scored_frame):
    evaluator = ModelEvaluator()
    models = [stub_model(SCORES, "first"), stub_model(SCORES[::-1], "second")]
    metrics = evaluator.evaluate_all(models, scored_frame, TARGET)

    figures = [
        evaluator.plot_precision_recall_curves(models, scored_frame, TARGET),
        evaluator.plot_calibration_curves(models, scored_frame, TARGET, n_bins=3),
        evaluator.plot_model_comparison(metrics),
    ]
    try:
        titles = [fig.axes[0].get_title() for fig in figures]
        assert titles == [
            "Precision-Recall Curves Comparison",
            "Calibration Curves Comparison",
            "Model Performance Comparison",
        ]
        assert [t.get_text() for t in figures[2].axes[0].get_xticklabels()] == ["first", "second"]
    finally:
        for fig in figures:
            plt.close(fig)
