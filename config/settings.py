"""
Configuration Settings
======================

Pydantic models describing the recognised configuration keys. Unknown keys
are ignored; missing required keys fail validation.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sklearn.metrics import get_scorer_names

# Metrics a selection policy may rank or threshold on (higher is better)
RANKING_METRICS = (
    "accuracy",
    "precision",
    "recall",
    "f1",
    "roc_auc",
    "specificity",
    "sensitivity",
    "average_precision",
)

# Schema validation rules, in evaluation order
VALIDATION_RULES = (
    "required_column",
    "column_type",
    "null_rate",
    "allowed_categories",
    "value_range",
    "class_balance",
)


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class DataSettings(_Section):
    """Where the raw data lives and how it is split."""

    source: str = Field(..., min_length=1, description="Path to the raw dataset")
    target_column: str = Field(..., min_length=1)
    split_ratio: float = Field(0.8, gt=0, lt=1, description="Train share of the split")
    stratify_on: Optional[str] = None
    random_state: int = 42
    positive_label: Optional[Any] = None
    drop_columns: List[str] = Field(default_factory=list)


class FeatureSettings(_Section):
    """Declared type and constraints of one input feature."""

    type: Literal["numeric", "categorical"]
    nullable: bool = True
    max_null_rate: Optional[float] = Field(None, ge=0, le=1)
    min_value: Optional[float] = Field(None, alias="min")
    max_value: Optional[float] = Field(None, alias="max")
    categories: Optional[List[Any]] = None

    @model_validator(mode="after")
    def check_bounds(self):
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError(f"min ({self.min_value}) is greater than max ({self.max_value})")
        return self


class ValidationSettings(_Section):
    max_null_rate: float = Field(0.05, ge=0, le=1)
    min_positive_rate: float = Field(0.05, ge=0, le=1)
    max_positive_rate: float = Field(0.95, ge=0, le=1)
    severity: Dict[str, Literal["error", "warning"]] = Field(default_factory=dict)

    @field_validator("severity")
    @classmethod
    def check_rule_names(cls, v):
        unknown = sorted(set(v) - set(VALIDATION_RULES))
        if unknown:
            raise ValueError(f"Unknown validation rules: {unknown}. Available: {list(VALIDATION_RULES)}")
        return v

    @model_validator(mode="after")
    def check_rate_bounds(self):
        if self.min_positive_rate > self.max_positive_rate:
            raise ValueError("min_positive_rate is greater than max_positive_rate")
        return self


class PreprocessingSettings(_Section):
    numerical_scaler: Literal["standard", "minmax"] = "standard"
    categorical_encoder: Literal["onehot", "ordinal"] = "onehot"


class ModelSettings(_Section):
    """One backend entry under ``models``."""

    enabled: bool = True
    params: Dict[str, Any] = Field(default_factory=dict)


class TrainingSettings(_Section):
    max_workers: Optional[int] = Field(None, ge=1)
    cv_folds: int = Field(0, ge=0)

    @field_validator("cv_folds")
    @classmethod
    def check_folds(cls, v):
        if v == 1:
            raise ValueError("cv_folds must be 0 (disabled) or at least 2")
        return v


class TuningSettings(_Section):
    enabled: bool = False
    n_trials: int = Field(20, ge=1)
    cv_folds: int = Field(3, ge=2)
    scoring: str = "roc_auc"
    timeout: Optional[float] = Field(None, gt=0)
    backends: Optional[List[str]] = None

    @field_validator("scoring")
    @classmethod
    def check_scoring(cls, v):
        if v not in get_scorer_names():
            raise ValueError(f"Unknown tuning scorer: {v}")
        return v


class EvaluationSettings(_Section):
    threshold: float = Field(0.5, gt=0, lt=1)
    primary_metric: str = "roc_auc"
    secondary_metric: str = "f1"
    thresholds: Dict[str, float] = Field(
        default_factory=lambda: {
            "recall": 0.80,
            "precision": 0.70,
            "f1": 0.75,
            "roc_auc": 0.85,
        }
    )
    plots: bool = False

    @field_validator("primary_metric", "secondary_metric")
    @classmethod
    def check_metric(cls, v):
        if v not in RANKING_METRICS:
            raise ValueError(f"Unknown metric: {v}. Available: {list(RANKING_METRICS)}")
        return v

    @field_validator("thresholds")
    @classmethod
    def check_thresholds(cls, v):
        for name, value in v.items():
            if name not in RANKING_METRICS:
                raise ValueError(f"Unknown metric: {name}. Available: {list(RANKING_METRICS)}")
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"Threshold for {name} must be within [0, 1], got {value}")
        return v


class ArtifactSettings(_Section):
    output_dir: str = "artifacts"
    versioned: bool = False


class MLflowSettings(_Section):
    enabled: bool = False
    tracking_uri: str = "mlruns"
    experiment_name: str = "churn_prediction"


class LoggingSettings(_Section):
    level: Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Optional[str] = None
    rotation: str = "10 MB"
    retention: str = "7 days"


class PipelineSettings(_Section):
    """Root of the training configuration."""

    data: DataSettings
    features: Dict[str, FeatureSettings]
    models: Dict[str, ModelSettings]
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    preprocessing: PreprocessingSettings = Field(default_factory=PreprocessingSettings)
    training: TrainingSettings = Field(default_factory=TrainingSettings)
    tuning: TuningSettings = Field(default_factory=TuningSettings)
    evaluation: EvaluationSettings = Field(default_factory=EvaluationSettings)
    artifacts: ArtifactSettings = Field(default_factory=ArtifactSettings)
    mlflow: MLflowSettings = Field(default_factory=MLflowSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("features")
    @classmethod
    def check_features(cls, v):
        if not v:
            raise ValueError("At least one feature must be declared")
        return v

    @field_validator("models")
    @classmethod
    def check_models(cls, v):
        if not any(m.enabled for m in v.values()):
            raise ValueError("At least one model backend must be enabled")
        return v

    @model_validator(mode="after")
    def check_target(self):
        if self.data.target_column in self.features:
            raise ValueError(
                f"Target column '{self.data.target_column}' must not be declared as a feature"
            )
        return self

    @model_validator(mode="after")
    def check_tuning_backends(self):
        undeclared = [name for name in self.tuning.backends or [] if name not in self.models]
        if undeclared:
            raise ValueError(f"Tuning backends not declared under models: {undeclared}")
        return self

    @property
    def enabled_models(self) -> Dict[str, ModelSettings]:
        """Enabled backends in declaration order."""
        return {name: m for name, m in self.models.items() if m.enabled}
