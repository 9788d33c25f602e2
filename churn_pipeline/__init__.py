"""
Churn Training Pipeline
=======================

Turns a raw customer table into a validated, preprocessed, multi-model
trained, evaluated and selected churn prediction model with reproducible
artifacts.

Modules:
    - data: Ingestion, schema validation and preprocessing
    - models: Backend registry, training, evaluation and selection
    - tracking: Artifact store and experiment tracking
    - pipeline: Stage orchestration
    - cli: Command-line entry point
    - utils: Utility functions
"""

__version__ = "1.0.0"
