"""Data module for ingestion, validation and preprocessing."""

from .data_loader import DataIngestor, Split
from .preprocessor import PreprocessingArtifact, Preprocessor
from .sample import generate_sample_data
from .schema import ColumnSpec, FeatureSchema
from .validator import RuleResult, SchemaValidator, ValidationReport

__all__ = [
    "ColumnSpec",
    "DataIngestor",
    "FeatureSchema",
    "PreprocessingArtifact",
    "Preprocessor",
    "RuleResult",
    "SchemaValidator",
    "Split",
    "ValidationReport",
    "generate_sample_data",
]
