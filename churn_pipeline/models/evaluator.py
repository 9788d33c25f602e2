"""
Model Evaluator Module
======================

Scores trained candidates on the held-out test split.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from loguru import logger
from sklearn.calibration import calibration_curve
from sklearn.metrics import (
    accuracy_score,
    average_precision_score,
    brier_score_loss,
    confusion_matrix,
    f1_score,
    log_loss,
    precision_recall_curve,
    precision_score,
    recall_score,
    roc_auc_score,
    roc_curve,
)

from config import PipelineSettings

from ..utils import safe_divide, to_builtin
from .trainer import TrainedModel

COMPARISON_METRICS = ("accuracy", "precision", "recall", "f1", "roc_auc")

THRESHOLD_METRICS = {
    "f1": f1_score,
    "precision": precision_score,
    "recall": recall_score,
}


@dataclass(frozen=True)
class EvaluationMetrics:
    """Fixed metric record for one candidate on the test split."""

    backend: str
    accuracy: float
    precision: float
    recall: float
    f1: float
    roc_auc: float
    specificity: float
    sensitivity: float
    true_negatives: int
    false_positives: int
    false_negatives: int
    true_positives: int
    average_precision: float
    log_loss: float
    brier_score: float
    threshold: float
    n_samples: int

    def get(self, metric: str) -> float:
        """Metric value by name; NaN reads as negative infinity for ranking."""
        value = float(getattr(self, metric))
        return float("-inf") if np.isnan(value) else value

    @property
    def confusion_matrix(self) -> np.ndarray:
        return np.array([
            [self.true_negatives, self.false_positives],
            [self.false_negatives, self.true_positives],
        ])

    def to_dict(self) -> Dict[str, Any]:
        return to_builtin(asdict(self))


class ModelEvaluator:
    """Evaluate and compare trained candidates."""

    def __init__(self, config: Optional[PipelineSettings] = None, threshold: Optional[float] = None, log=None):
        """
        Initialize ModelEvaluator.

        Args:
            config: Pipeline configuration
            threshold: Decision threshold (defaults to ``evaluation.threshold``)
            log: Logger to report through
        """
        self.config = config
        self.threshold = threshold if threshold is not None else (config.evaluation.threshold if config is not None else 0.5)
        self.target_column = config.data.target_column if config is not None else None
        self.log = log or logger

    def _xy(self, model: TrainedModel, test: pd.DataFrame, target_col: Optional[str]) -> Tuple[np.ndarray, np.ndarray]:
        target_col = target_col or self.target_column
        y_true = test[target_col].to_numpy(dtype=int)
        y_prob = model.predict_proba(test)
        return y_true, y_prob

    def evaluate(
        self,
        model: TrainedModel,
        test: pd.DataFrame,
        target_col: Optional[str] = None,
    ) -> EvaluationMetrics:
        """
        Evaluate a single candidate on the held-out split.

        Args:
            model: Trained candidate
            test: Preprocessed test frame (features plus target)
            target_col: Target column name

        Returns:
            EvaluationMetrics
        """
        y_true, y_prob = self._xy(model, test, target_col)
        y_pred = (y_prob >= self.threshold).astype(int)

        tn, fp, fn, tp = (int(v) for v in confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel())
        recall = recall_score(y_true, y_pred, zero_division=0)

        if len(np.unique(y_true)) < 2:
            self.log.warning(f"{model.backend}: test split holds a single class, ROC-AUC undefined")
            roc_auc = average_precision = float("nan")
        else:
            roc_auc = roc_auc_score(y_true, y_prob)
            average_precision = average_precision_score(y_true, y_prob)

        metrics = EvaluationMetrics(
            backend=model.backend,
            accuracy=float(accuracy_score(y_true, y_pred)),
            precision=float(precision_score(y_true, y_pred, zero_division=0)),
            recall=float(recall),
            f1=float(f1_score(y_true, y_pred, zero_division=0)),
            roc_auc=float(roc_auc),
            specificity=float(safe_divide(tn, tn + fp)),
            sensitivity=float(recall),
            true_negatives=tn,
            false_positives=fp,
            false_negatives=fn,
            true_positives=tp,
            average_precision=float(average_precision),
            log_loss=float(log_loss(y_true, np.clip(y_prob, 1e-15, 1 - 1e-15), labels=[0, 1])),
            brier_score=float(brier_score_loss(y_true, y_prob, pos_label=1)),
            threshold=float(self.threshold),
            n_samples=int(len(y_true)),
        )

        self.log.info(
            f"{model.backend} - Accuracy: {metrics.accuracy:.4f}, F1: {metrics.f1:.4f}, "
            f"Recall: {metrics.recall:.4f}, ROC-AUC: {metrics.roc_auc:.4f}"
        )
        return metrics

    def evaluate_all(
        self,
        models: Sequence[TrainedModel],
        test: pd.DataFrame,
        target_col: Optional[str] = None,
    ) -> Tuple[EvaluationMetrics, ...]:
        """Evaluate each candidate, preserving order."""
        return tuple(self.evaluate(model, test, target_col) for model in models)

    @staticmethod
    def comparison_table(metrics: Sequence[EvaluationMetrics]) -> pd.DataFrame:
        """Metrics of all candidates as a DataFrame indexed by backend."""
        return pd.DataFrame([m.to_dict() for m in metrics]).set_index("backend")

    def plot_confusion_matrix(
        self,
        metrics: EvaluationMetrics,
        figsize: Tuple[int, int] = (8, 6)
    ) -> plt.Figure:
        """
        Plot confusion matrix heatmaps (counts and row-normalised).

        Args:
            metrics: Evaluated candidate
            figsize: Size of each panel

        Returns:
            Matplotlib figure
        """
        cm = metrics.confusion_matrix
        row_sums = cm.sum(axis=1, keepdims=True)
        cm_norm = np.divide(cm, row_sums, out=np.zeros_like(cm, dtype=float), where=row_sums != 0)
        labels = ["No Churn", "Churn"]

        fig, axes = plt.subplots(1, 2, figsize=(figsize[0] * 2, figsize[1]))

        sns.heatmap(cm, annot=True, fmt="d", cmap="Blues", xticklabels=labels, yticklabels=labels, ax=axes[0])
        axes[0].set_title(f"{metrics.backend} - Confusion Matrix (Counts)")
        axes[0].set_xlabel("Predicted")
        axes[0].set_ylabel("Actual")

        sns.heatmap(cm_norm, annot=True, fmt=".2%", cmap="Blues", xticklabels=labels, yticklabels=labels, ax=axes[1])
        axes[1].set_title(f"{metrics.backend} - Confusion Matrix (Normalized)")
        axes[1].set_xlabel("Predicted")
        axes[1].set_ylabel("Actual")

        fig.tight_layout()
        return fig

    def plot_roc_curves(
        self,
        models: Sequence[TrainedModel],
        test: pd.DataFrame,
        target_col: Optional[str] = None,
        figsize: Tuple[int, int] = (10, 8)
    ) -> plt.Figure:
        """
        Plot ROC curves for multiple candidates.

        Args:
            models: Trained candidates
            test: Preprocessed test frame
            target_col: Target column name
            figsize: Figure size

        Returns:
            Matplotlib figure
        """
        fig, ax = plt.subplots(figsize=figsize)

        for model in models:
            y_true, y_prob = self._xy(model, test, target_col)
            if len(np.unique(y_true)) < 2:
                continue
            fpr, tpr, _ = roc_curve(y_true, y_prob)
            auc = roc_auc_score(y_true, y_prob)
            ax.plot(fpr, tpr, label=f"{model.backend} (AUC={auc:.3f})")

        ax.plot([0, 1], [0, 1], "k--", label="Random (AUC=0.500)")
        ax.set_xlabel("False Positive Rate")
        ax.set_ylabel("True Positive Rate")
        ax.set_title("ROC Curves Comparison")
        ax.legend(loc="lower right")
        ax.grid(True, alpha=0.3)

        fig.tight_layout()
        return fig

    def plot_precision_recall_curves(
        self,
        models: Sequence[TrainedModel],
        test: pd.DataFrame,
        target_col: Optional[str] = None,
        figsize: Tuple[int, int] = (10, 8)
    ) -> plt.Figure:
        """
        Plot Precision-Recall curves for multiple candidates.

        Args:
            models: Trained candidates
            test: Preprocessed test frame
            target_col: Target column name
            figsize: Figure size

        Returns:
            Matplotlib figure
        """
        fig, ax = plt.subplots(figsize=figsize)

        baseline = 0.0
        for model in models:
            y_true, y_prob = self._xy(model, test, target_col)
            baseline = float(y_true.mean()) if len(y_true) else 0.0
            if len(np.unique(y_true)) < 2:
                continue
            precision, recall, _ = precision_recall_curve(y_true, y_prob)
            ap = average_precision_score(y_true, y_prob)
            ax.plot(recall, precision, label=f"{model.backend} (AP={ap:.3f})")

        # positive rate of the test split
        ax.axhline(y=baseline, color="k", linestyle="--", label=f"Baseline (AP={baseline:.3f})")
        ax.set_xlabel("Recall")
        ax.set_ylabel("Precision")
        ax.set_title("Precision-Recall Curves Comparison")
        ax.legend(loc="upper right")
        ax.grid(True, alpha=0.3)

        fig.tight_layout()
        return fig

    def plot_calibration_curves(
        self,
        models: Sequence[TrainedModel],
        test: pd.DataFrame,
        target_col: Optional[str] = None,
        n_bins: int = 10,
        figsize: Tuple[int, int] = (10, 8)
    ) -> plt.Figure:
        """Plot calibration curves, one line per candidate."""
        fig, ax = plt.subplots(figsize=figsize)

        for model in models:
            y_true, y_prob = self._xy(model, test, target_col)
            if len(np.unique(y_true)) < 2:
                continue
            fraction_of_positives, mean_predicted_value = calibration_curve(y_true, y_prob, n_bins=n_bins)
            brier = brier_score_loss(y_true, y_prob, pos_label=1)
            ax.plot(
                mean_predicted_value, fraction_of_positives,
                marker="o", label=f"{model.backend} (Brier={brier:.3f})"
            )

        ax.plot([0, 1], [0, 1], "k--", label="Perfectly Calibrated")
        ax.set_xlabel("Mean Predicted Probability")
        ax.set_ylabel("Fraction of Positives")
        ax.set_title("Calibration Curves Comparison")
        ax.legend(loc="lower right")
        ax.grid(True, alpha=0.3)

        fig.tight_layout()
        return fig

    def plot_model_comparison(
        self,
        metrics: Sequence[EvaluationMetrics],
        figsize: Tuple[int, int] = (12, 6)
    ) -> plt.Figure:
        """Grouped bar chart of the headline metrics of every candidate."""
        table = self.comparison_table(metrics)
        columns = [m for m in COMPARISON_METRICS if m in table.columns]

        fig, ax = plt.subplots(figsize=figsize)

        x = np.arange(len(table))
        width = 0.15
        for i, metric in enumerate(columns):
            # undefined metrics draw as empty bars
            ax.bar(x + width * i, table[metric].astype(float).fillna(0.0), width, label=metric.upper())

        ax.set_xlabel("Model")
        ax.set_ylabel("Score")
        ax.set_title("Model Performance Comparison")
        ax.set_xticks(x + width * (len(columns) - 1) / 2)
        ax.set_xticklabels(table.index, rotation=45, ha="right")
        ax.legend(loc="upper right")
        ax.set_ylim(0, 1.1)
        ax.grid(True, alpha=0.3, axis="y")

        fig.tight_layout()
        return fig

    def find_optimal_threshold(
        self,
        model: TrainedModel,
        test: pd.DataFrame,
        target_col: Optional[str] = None,
        metric: str = "f1"
    ) -> Tuple[float, float]:
        """
        Find the decision threshold that maximises ``metric`` on the test split.

        Advisory only: evaluation keeps using the configured threshold.

        Args:
            model: Trained candidate
            test: Preprocessed test frame
            target_col: Target column name
            metric: 'f1', 'precision' or 'recall'

        Returns:
            Tuple of (optimal threshold, best score)
        """
        if metric not in THRESHOLD_METRICS:
            raise ValueError(f"Unknown threshold metric: {metric}. Available: {list(THRESHOLD_METRICS)}")
        score_fn = THRESHOLD_METRICS[metric]

        y_true, y_prob = self._xy(model, test, target_col)
        best_threshold, best_score = 0.5, 0.0
        for thresh in np.round(np.arange(0.1, 0.9, 0.01), 2):
            y_pred = (y_prob >= thresh).astype(int)
            score = float(score_fn(y_true, y_pred, zero_division=0))
            if score > best_score:
                best_threshold, best_score = float(thresh), score

        self.log.info(f"{model.backend} optimal threshold: {best_threshold:.2f} with {metric}={best_score:.4f}")
        return best_threshold, best_score
