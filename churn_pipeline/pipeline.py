"""
Training Pipeline
=================

DataIngestor -> SchemaValidator -> Preprocessor -> ModelTrainer (fan-out)
-> ModelEvaluator / ModelSelector (fan-in) -> ArtifactStore / ExperimentTracker.

Each stage only sees the output of its predecessor. Cancellation is honoured
between stages.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import matplotlib.pyplot as plt
import pandas as pd

from config import PipelineSettings

from .context import RunContext
from .data import DataIngestor, FeatureSchema, PreprocessingArtifact, Preprocessor, SchemaValidator, ValidationReport
from .exceptions import ValidationFailure
from .models import (
    BackendFailure,
    EvaluationMetrics,
    ModelEvaluator,
    ModelSelector,
    ModelTrainer,
    SelectionResult,
    TrainedModel,
)
from .tracking import ArtifactStore, ExperimentTracker, create_tracker


@dataclass(frozen=True)
class PipelineResult:
    """Everything one successful run produced."""

    run_id: str
    validation_report: ValidationReport
    preprocessing_artifact: PreprocessingArtifact
    models: Tuple[TrainedModel, ...]
    metrics: Tuple[EvaluationMetrics, ...]
    selection: SelectionResult
    failures: Tuple[BackendFailure, ...] = ()
    n_train: int = 0
    n_test: int = 0
    artifact_paths: Dict[str, Path] = field(default_factory=dict)
    tracker_errors: Tuple[str, ...] = ()


class TrainingPipeline:
    """Run the staged training flow for one configuration."""

    def __init__(
        self,
        config: PipelineSettings,
        tracker: Optional[ExperimentTracker] = None,
        store: Optional[ArtifactStore] = None,
    ):
        """
        Initialize TrainingPipeline.

        Args:
            config: Validated pipeline configuration
            tracker: Experiment tracker (defaults to one built from config)
            store: Artifact store (defaults to ``artifacts.output_dir``)
        """
        self.config = config
        self.tracker = tracker
        self.store = store
        ModelTrainer.check_backends(config.enabled_models)
        ModelTrainer.check_backends(dict.fromkeys(config.tuning.backends or []))

    def run(
        self,
        context: Optional[RunContext] = None,
        source: Union[str, Path, pd.DataFrame, None] = None,
    ) -> PipelineResult:
        """
        Execute every stage once.

        Args:
            context: Run context (a fresh one is created when omitted)
            source: Raw data override; defaults to ``data.source``

        Returns:
            PipelineResult
        """
        config = self.config
        ctx = context or RunContext(config=config)
        log = ctx.log
        store = self.store or ArtifactStore(
            config.artifacts.output_dir,
            run_id=ctx.run_id,
            versioned=config.artifacts.versioned,
            log=log,
        )
        tracker = self.tracker or create_tracker(config, log=log)
        schema = FeatureSchema.from_config(config)
        paths: Dict[str, Path] = {}

        log.info(f"Starting training run {ctx.run_id}")

        ctx.check_cancelled("ingestion")
        split = DataIngestor(config, log=log).ingest(source=source)

        ctx.check_cancelled("validation")
        report = SchemaValidator(config, log=log).validate(split.combined(), schema)
        paths["validation_report"] = store.save_validation_report(report)
        if not report.passed:
            raise ValidationFailure(
                f"Dataset failed validation with {len(report.errors)} errors: "
                + "; ".join(f"{r.rule}({r.column})" for r in report.errors),
                report=report,
            )

        ctx.check_cancelled("preprocessing")
        preprocessor = Preprocessor(config, schema=schema, log=log)
        artifact = preprocessor.fit(split.train)
        train_t = preprocessor.transform(split.train, artifact)
        test_t = preprocessor.transform(split.test, artifact)
        paths["preprocessor"] = store.save_preprocessing_artifact(artifact)

        ctx.check_cancelled("training")
        outcome = ModelTrainer(config, log=log).train_all(train_t)

        ctx.check_cancelled("evaluation")
        evaluator = ModelEvaluator(config, log=log)
        metrics = evaluator.evaluate_all(outcome.models, test_t)
        selection = ModelSelector(config, log=log).select(list(zip(outcome.models, metrics)))
        log.info(f"\nModel Comparison:\n{evaluator.comparison_table(metrics)}")
        best = next(m for m in outcome.models if m.backend == selection.selected_backend)
        evaluator.find_optimal_threshold(best, test_t)

        ctx.check_cancelled("persistence")
        tracker_errors = []
        for model, model_metrics in zip(outcome.models, metrics):
            model_path = store.save_model(model)
            paths[f"model:{model.backend}"] = model_path
            error = self._track(tracker, ctx, model, model_metrics, model_path)
            if error:
                tracker_errors.append(error)

        if config.evaluation.plots:
            paths.update(self._save_plots(store, evaluator, outcome.models, metrics, selection, test_t))

        paths["evaluation_report"] = store.save_evaluation_report(
            selection, outcome.failures, outcome.models, paths
        )

        log.info(
            f"Training complete! Best model: {selection.selected_backend}"
            + (" (below target)" if selection.below_target else "")
        )
        return PipelineResult(
            run_id=ctx.run_id,
            validation_report=report,
            preprocessing_artifact=artifact,
            models=outcome.models,
            metrics=metrics,
            selection=selection,
            failures=outcome.failures,
            n_train=len(split.train),
            n_test=len(split.test),
            artifact_paths=paths,
            tracker_errors=tuple(tracker_errors),
        )

    @staticmethod
    def _track(
        tracker: ExperimentTracker,
        ctx: RunContext,
        model: TrainedModel,
        metrics: EvaluationMetrics,
        model_path: Path,
    ) -> Optional[str]:
        """Report one candidate; tracker outages are logged, never fatal."""
        try:
            tracker.log(
                run_id=ctx.run_id,
                backend=model.backend,
                params=model.params,
                metrics={**metrics.to_dict(), **model.metadata()},
                artifact_ref=str(model_path),
                tags={"tuned": model.tuned},
            )
        except Exception as exc:
            ctx.log.warning(f"Experiment tracker failed for {model.backend}: {exc}")
            return f"{model.backend}: {exc}"
        return None

    @staticmethod
    def _save_plots(
        store: ArtifactStore,
        evaluator: ModelEvaluator,
        models: Tuple[TrainedModel, ...],
        metrics: Tuple[EvaluationMetrics, ...],
        selection: SelectionResult,
        test: pd.DataFrame,
    ) -> Dict[str, Path]:
        figures = [
            ("roc_curves", "roc_curves_comparison", lambda: evaluator.plot_roc_curves(models, test)),
            ("pr_curves", "pr_curves_comparison", lambda: evaluator.plot_precision_recall_curves(models, test)),
            ("calibration_curves", "calibration_curves", lambda: evaluator.plot_calibration_curves(models, test)),
            ("model_comparison", "model_comparison", lambda: evaluator.plot_model_comparison(metrics)),
            (
                "confusion_matrix",
                f"confusion_matrix_{selection.selected_backend}",
                lambda: evaluator.plot_confusion_matrix(selection.metrics),
            ),
        ]

        paths = {}
        for key, name, plot in figures:
            fig = plot()
            try:
                paths[f"figure:{key}"] = store.save_figure(fig, name)
            finally:
                plt.close(fig)
        return paths
