"""Artifact persistence and experiment tracking."""

from .artifacts import ArtifactStore
from .tracker import ExperimentTracker, InMemoryTracker, MLflowTracker, TrackedRun, create_tracker

__all__ = [
    "ArtifactStore",
    "ExperimentTracker",
    "InMemoryTracker",
    "MLflowTracker",
    "TrackedRun",
    "create_tracker",
]
