"""
Model Selector
==============

Ranks evaluated candidates and picks the model to ship.

Policy:
    1. candidates meeting every minimum threshold rank first
    2. then by the primary metric (descending)
    3. then by the secondary metric (descending)
    4. then by backend declaration order
When no candidate meets the thresholds the best-ranked one is still selected,
but the result is flagged ``below_target``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from loguru import logger

from config import PipelineSettings

from ..exceptions import TrainingError
from .evaluator import EvaluationMetrics
from .trainer import TrainedModel


@dataclass(frozen=True)
class SelectionPolicy:
    primary_metric: str = "roc_auc"
    secondary_metric: str = "f1"
    thresholds: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: PipelineSettings) -> "SelectionPolicy":
        evaluation = config.evaluation
        return cls(
            primary_metric=evaluation.primary_metric,
            secondary_metric=evaluation.secondary_metric,
            thresholds=dict(evaluation.thresholds),
        )

    def shortfalls(self, metrics: EvaluationMetrics) -> Tuple[str, ...]:
        """Names of the thresholds ``metrics`` misses."""
        return tuple(
            name for name, minimum in self.thresholds.items()
            if metrics.get(name) < minimum
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_metric": self.primary_metric,
            "secondary_metric": self.secondary_metric,
            "thresholds": dict(self.thresholds),
        }


@dataclass(frozen=True)
class RankedCandidate:
    rank: int
    backend: str
    metrics: EvaluationMetrics
    meets_thresholds: bool
    shortfalls: Tuple[str, ...] = ()
    declaration_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "backend": self.backend,
            "meets_thresholds": self.meets_thresholds,
            "shortfalls": list(self.shortfalls),
            "metrics": self.metrics.to_dict(),
        }


@dataclass(frozen=True)
class SelectionResult:
    """The chosen candidate plus the full ranking, for auditability."""

    selected_backend: str
    metrics: EvaluationMetrics
    ranking: Tuple[RankedCandidate, ...]
    below_target: bool
    policy: SelectionPolicy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_backend": self.selected_backend,
            "below_target": self.below_target,
            "metrics": self.metrics.to_dict(),
            "policy": self.policy.to_dict(),
            "ranking": [c.to_dict() for c in self.ranking],
        }


Candidate = Tuple[TrainedModel, EvaluationMetrics]


class ModelSelector:
    """Apply a SelectionPolicy to evaluated candidates."""

    def __init__(self, config: Optional[PipelineSettings] = None, policy: Optional[SelectionPolicy] = None, log=None):
        if policy is None:
            policy = SelectionPolicy.from_config(config) if config is not None else SelectionPolicy()
        self.policy = policy
        self.log = log or logger

    def select(self, candidates: Sequence[Candidate]) -> SelectionResult:
        """
        Rank candidates and pick one.

        Args:
            candidates: ``(model, metrics)`` pairs in backend declaration order

        Returns:
            SelectionResult; deterministic for a given candidate list
        """
        if not candidates:
            raise TrainingError("No candidates to select from")

        policy = self.policy
        scored = []
        for index, (model, metrics) in enumerate(candidates):
            shortfalls = policy.shortfalls(metrics)
            key = (
                0 if not shortfalls else 1,
                -metrics.get(policy.primary_metric),
                -metrics.get(policy.secondary_metric),
                index,
            )
            scored.append((key, index, model, metrics, shortfalls))

        scored.sort(key=lambda item: item[0])
        ranking = tuple(
            RankedCandidate(
                rank=rank,
                backend=model.backend,
                metrics=metrics,
                meets_thresholds=not shortfalls,
                shortfalls=shortfalls,
                declaration_index=index,
            )
            for rank, (_, index, model, metrics, shortfalls) in enumerate(scored, start=1)
        )

        best = ranking[0]
        result = SelectionResult(
            selected_backend=best.backend,
            metrics=best.metrics,
            ranking=ranking,
            below_target=not best.meets_thresholds,
            policy=policy,
        )

        if result.below_target:
            self.log.warning(
                f"No candidate meets all thresholds; selected {best.backend} "
                f"(misses {list(best.shortfalls)}) flagged below target"
            )
        else:
            self.log.info(
                f"Selected {best.backend} with {policy.primary_metric}="
                f"{best.metrics.get(policy.primary_metric):.4f}"
            )
        return result
