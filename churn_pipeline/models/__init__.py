"""Models module for training, evaluation and selection."""

from .backends import BACKENDS, BackendSpec, get_backend, register_backend, unregister_backend
from .evaluator import EvaluationMetrics, ModelEvaluator
from .selector import ModelSelector, SelectionPolicy, SelectionResult
from .trainer import BackendFailure, ModelTrainer, TrainedModel, TrainingOutcome

__all__ = [
    "BACKENDS",
    "BackendFailure",
    "BackendSpec",
    "EvaluationMetrics",
    "ModelEvaluator",
    "ModelSelector",
    "ModelTrainer",
    "SelectionPolicy",
    "SelectionResult",
    "TrainedModel",
    "TrainingOutcome",
    "get_backend",
    "register_backend",
    "unregister_backend",
]
