"""Job interface for task execution."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from geoflow.engine.models import ResultView, TaskView, WorkflowView


@dataclass(slots=True)
class JobContext:
    """Inputs handed to a job for one task run.

    ``prior_results`` holds every result already stored for the task's
    workflow; each job decides which of them it needs.
    """

    task: TaskView
    workflow: WorkflowView
    prior_results: Sequence[ResultView] = field(default_factory=tuple)


class Job(Protocol):
    """Protocol implemented by task-type specific jobs.

    Jobs only read their inputs and return an output or raise ``JobError``;
    status transitions belong to the task runner.
    """

    def run(self, context: JobContext) -> str:
        """Run the job and return its serialized output."""
