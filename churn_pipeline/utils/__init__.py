"""Utility functions."""

from .helpers import (
    format_metrics,
    get_timestamp,
    new_run_id,
    safe_divide,
    setup_logging,
    to_builtin,
)

__all__ = [
    "format_metrics",
    "get_timestamp",
    "new_run_id",
    "safe_divide",
    "setup_logging",
    "to_builtin",
]
