"""
Schema Validator
================

Checks a dataset against the declared feature schema before any
transformation runs.

Rules (evaluated in this order, independently of each other):
    - required_column: every declared column is present
    - column_type: values match the declared numeric/categorical type
    - null_rate: null fraction within the column's threshold
    - allowed_categories: categorical values belong to the declared set
    - value_range: numeric values inside the declared [min, max]
    - class_balance: target positive rate inside the configured bounds
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from config import VALIDATION_RULES, PipelineSettings
from config.settings import ValidationSettings

from .schema import ColumnSpec, FeatureSchema

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True)
class RuleResult:
    """Outcome of one rule on one column (or on the whole dataset)."""

    rule: str
    column: Optional[str]
    passed: bool
    severity: str = ERROR
    message: str = ""
    observed: Any = None

    @property
    def is_blocking(self) -> bool:
        return not self.passed and self.severity == ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "column": self.column,
            "passed": self.passed,
            "severity": self.severity,
            "message": self.message,
            "observed": self.observed,
        }


@dataclass(frozen=True)
class ValidationReport:
    """Immutable result of validating one dataset against a schema."""

    results: Tuple[RuleResult, ...]
    n_rows: int = 0
    positive_rate: Optional[float] = None
    passed: bool = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "passed", not any(r.is_blocking for r in self.results))

    @property
    def failures(self) -> Tuple[RuleResult, ...]:
        return tuple(r for r in self.results if not r.passed)

    @property
    def errors(self) -> Tuple[RuleResult, ...]:
        return tuple(r for r in self.results if r.is_blocking)

    @property
    def warnings(self) -> Tuple[RuleResult, ...]:
        return tuple(r for r in self.results if not r.passed and r.severity == WARNING)

    def failures_for(self, rule: str) -> Tuple[RuleResult, ...]:
        return tuple(r for r in self.failures if r.rule == rule)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "n_rows": self.n_rows,
            "positive_rate": self.positive_rate,
            "n_failures": len(self.failures),
            "n_errors": len(self.errors),
            "results": [r.to_dict() for r in self.results],
        }


class SchemaValidator:
    """Validate datasets against a FeatureSchema. Read-only over the data."""

    def __init__(self, config: Optional[PipelineSettings] = None, log=None):
        """
        Initialize SchemaValidator.

        Args:
            config: Pipeline configuration; only its ``validation`` section is used
            log: Logger to report through
        """
        self.settings = config.validation if config is not None else ValidationSettings()
        self.log = log or logger

    def _severity(self, rule: str) -> str:
        return self.settings.severity.get(rule, ERROR)

    def _result(self, rule: str, column: Optional[str], passed: bool, message: str = "", observed: Any = None) -> RuleResult:
        return RuleResult(
            rule=rule,
            column=column,
            passed=bool(passed),
            severity=self._severity(rule),
            message=message,
            observed=observed,
        )

    def validate(self, dataset: pd.DataFrame, schema: FeatureSchema) -> ValidationReport:
        """
        Run every rule against the dataset.

        Args:
            dataset: Ingested DataFrame (features plus target)
            schema: Declared feature schema

        Returns:
            ValidationReport listing each rule outcome and the overall verdict
        """
        present = [c for c in schema.columns if c.name in dataset.columns]
        results = []

        for rule in VALIDATION_RULES:
            if rule == "required_column":
                results.extend(self._check_required(dataset, c) for c in schema.columns)
            elif rule == "column_type":
                results.extend(self._check_type(dataset[c.name], c) for c in present)
            elif rule == "null_rate":
                results.extend(self._check_nulls(dataset[c.name], c) for c in present)
            elif rule == "allowed_categories":
                results.extend(
                    self._check_categories(dataset[c.name], c)
                    for c in present
                    if c.is_categorical and c.categories is not None
                )
            elif rule == "value_range":
                results.extend(
                    self._check_range(dataset[c.name], c)
                    for c in present
                    if c.is_numeric and (c.min_value is not None or c.max_value is not None)
                )
            elif rule == "class_balance":
                results.append(self._check_balance(dataset, schema.target_column))

        positive_rate = None
        if schema.target_column in dataset.columns and len(dataset):
            positive_rate = float(dataset[schema.target_column].mean())

        report = ValidationReport(results=tuple(results), n_rows=len(dataset), positive_rate=positive_rate)

        for failure in report.failures:
            log = self.log.error if failure.is_blocking else self.log.warning
            log(f"[{failure.rule}] {failure.column or '<dataset>'}: {failure.message}")
        self.log.info(
            f"Validation {'passed' if report.passed else 'FAILED'}: "
            f"{len(report.results)} checks, {len(report.errors)} errors, {len(report.warnings)} warnings"
        )
        return report

    def _check_required(self, df: pd.DataFrame, column: ColumnSpec) -> RuleResult:
        present = column.name in df.columns
        return self._result(
            "required_column",
            column.name,
            present,
            "" if present else "column is missing",
        )

    def _check_type(self, series: pd.Series, column: ColumnSpec) -> RuleResult:
        dtype = str(series.dtype)
        if column.is_numeric:
            ok = pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series)
        else:
            ok = _is_discrete(series)
        message = "" if ok else f"expected {column.kind} values, found dtype {dtype}"
        return self._result("column_type", column.name, ok, message, dtype)

    def _check_nulls(self, series: pd.Series, column: ColumnSpec) -> RuleResult:
        null_rate = float(series.isnull().mean()) if len(series) else 0.0
        limit = column.null_threshold(self.settings.max_null_rate)
        ok = null_rate <= limit
        message = "" if ok else f"null rate {null_rate:.2%} exceeds {limit:.2%}"
        return self._result("null_rate", column.name, ok, message, round(null_rate, 6))

    def _check_categories(self, series: pd.Series, column: ColumnSpec) -> RuleResult:
        allowed = set(column.categories)
        allowed_str = {str(c) for c in column.categories}
        values = pd.unique(series.dropna())
        unknown = [v for v in values if not _in_categories(v, allowed, allowed_str)]
        ok = not unknown
        unknown_repr = sorted(str(v) for v in unknown)
        message = "" if ok else f"unexpected categories: {unknown_repr[:10]}"
        return self._result("allowed_categories", column.name, ok, message, unknown_repr[:10] or None)

    def _check_range(self, series: pd.Series, column: ColumnSpec) -> RuleResult:
        values = pd.to_numeric(series, errors="coerce").dropna()
        if values.empty:
            return self._result("value_range", column.name, True)

        too_low = values < column.min_value if column.min_value is not None else pd.Series(False, index=values.index)
        too_high = values > column.max_value if column.max_value is not None else pd.Series(False, index=values.index)
        n_out = int((too_low | too_high).sum())
        ok = n_out == 0
        observed = {"min": float(values.min()), "max": float(values.max()), "out_of_range": n_out}
        message = "" if ok else (
            f"{n_out} values outside [{column.min_value}, {column.max_value}] "
            f"(observed {observed['min']} .. {observed['max']})"
        )
        return self._result("value_range", column.name, ok, message, observed)

    def _check_balance(self, df: pd.DataFrame, target_col: str) -> RuleResult:
        if target_col not in df.columns or len(df) == 0:
            return self._result("class_balance", target_col, False, "target column unavailable")

        target = df[target_col]
        n_classes = int(target.nunique())
        positive_rate = float(target.mean())
        low, high = self.settings.min_positive_rate, self.settings.max_positive_rate

        if n_classes < 2:
            return self._result(
                "class_balance", target_col, False,
                f"only {n_classes} class present", round(positive_rate, 6),
            )
        ok = low <= positive_rate <= high
        message = "" if ok else f"positive rate {positive_rate:.2%} outside [{low:.2%}, {high:.2%}]"
        return self._result("class_balance", target_col, ok, message, round(positive_rate, 6))


def _is_discrete(series: pd.Series) -> bool:
    if pd.api.types.is_float_dtype(series):
        values = series.dropna().to_numpy()
        return bool(np.all(np.mod(values, 1) == 0))
    return (
        pd.api.types.is_object_dtype(series)
        or pd.api.types.is_string_dtype(series)
        or isinstance(series.dtype, pd.CategoricalDtype)
        or pd.api.types.is_bool_dtype(series)
        or pd.api.types.is_integer_dtype(series)
    )


def _in_categories(value: Any, allowed: set, allowed_str: set) -> bool:
    try:
        if value in allowed:
            return True
    except TypeError:
        pass
    if isinstance(value, float) and value.is_integer() and int(value) in allowed:
        return True
    return str(value) in allowed_str
