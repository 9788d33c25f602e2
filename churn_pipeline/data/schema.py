"""
Feature Schema
==============

Immutable declaration of the expected input columns, built once from
configuration.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from config import PipelineSettings

NUMERIC = "numeric"
CATEGORICAL = "categorical"


@dataclass(frozen=True)
class ColumnSpec:
    """Declared type and constraints of one column."""

    name: str
    kind: str
    nullable: bool = True
    max_null_rate: Optional[float] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    categories: Optional[Tuple[Any, ...]] = None

    @property
    def is_numeric(self) -> bool:
        return self.kind == NUMERIC

    @property
    def is_categorical(self) -> bool:
        return self.kind == CATEGORICAL

    def null_threshold(self, default: float) -> float:
        """Maximum tolerated null fraction for this column."""
        if not self.nullable:
            return 0.0
        return self.max_null_rate if self.max_null_rate is not None else default


@dataclass(frozen=True)
class FeatureSchema:
    """Declared feature columns plus the binary target."""

    columns: Tuple[ColumnSpec, ...]
    target_column: str

    @classmethod
    def from_config(cls, config: PipelineSettings) -> "FeatureSchema":
        columns = tuple(
            ColumnSpec(
                name=name,
                kind=spec.type,
                nullable=spec.nullable,
                max_null_rate=spec.max_null_rate,
                min_value=spec.min_value,
                max_value=spec.max_value,
                categories=tuple(spec.categories) if spec.categories is not None else None,
            )
            for name, spec in config.features.items()
        )
        return cls(columns=columns, target_column=config.data.target_column)

    @property
    def numeric(self) -> Tuple[ColumnSpec, ...]:
        return tuple(c for c in self.columns if c.is_numeric)

    @property
    def categorical(self) -> Tuple[ColumnSpec, ...]:
        return tuple(c for c in self.columns if c.is_categorical)
