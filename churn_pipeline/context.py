"""
Run Context
===========

Per-run state handed explicitly to every pipeline stage.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from config import PipelineSettings

from .exceptions import PipelineCancelled
from .utils import new_run_id


@dataclass
class RunContext:
    """
    One context == one training run.

    Carries the run identifier, the validated configuration, a logger bound
    to the run and a cooperative cancellation flag.
    """

    config: PipelineSettings
    run_id: str = field(default_factory=new_run_id)
    log: Any = None
    _cancel: threading.Event = field(default_factory=threading.Event, repr=False)

    def __post_init__(self):
        if self.log is None:
            self.log = logger.bind(run_id=self.run_id)

    def cancel(self):
        """Request cancellation; honoured at the next stage boundary."""
        self.log.warning("Cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def check_cancelled(self, next_stage: Optional[str] = None):
        if self._cancel.is_set():
            where = f" before {next_stage}" if next_stage else ""
            raise PipelineCancelled(f"Run {self.run_id} cancelled{where}")
