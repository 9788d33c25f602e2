"""
Pipeline Exceptions
===================

Error taxonomy for the training pipeline. Every fatal error carries the
process exit code the CLI returns for it.
"""

from typing import Optional, Sequence


class ChurnPipelineError(Exception):
    """Base class for all pipeline errors."""

    exit_code = 1


class ConfigurationError(ChurnPipelineError):
    """Configuration is missing, unreadable or invalid."""

    exit_code = 2


class IngestionError(ChurnPipelineError):
    """Raw data could not be loaded or split."""

    exit_code = 3


class ValidationFailure(ChurnPipelineError):
    """The dataset failed its schema validation."""

    exit_code = 4

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report


class PreprocessingError(ChurnPipelineError):
    """Feature transforms could not be fitted or applied."""

    exit_code = 5


class BackendTrainingError(ChurnPipelineError):
    """A single model backend failed to train. Recoverable."""

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class TrainingError(ChurnPipelineError):
    """No backend produced a usable candidate."""

    exit_code = 6

    def __init__(self, message: str, failures: Optional[Sequence] = None):
        super().__init__(message)
        self.failures = tuple(failures or ())


class PersistenceError(ChurnPipelineError):
    """An artifact or report could not be written or read."""

    exit_code = 7


class PipelineCancelled(ChurnPipelineError):
    """The run was cancelled between stages."""

    exit_code = 8
