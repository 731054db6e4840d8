"""Typed failures raised by the workflow engine and its jobs."""

from __future__ import annotations


class WorkflowEngineError(RuntimeError):
    """Base error for workflow engine failures."""


class JobError(WorkflowEngineError):
    """A job could not produce its output (bad payload, empty input, computation error)."""

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class UnknownTaskTypeError(WorkflowEngineError):
    """No job is registered for a task type."""

    def __init__(self, task_type: str) -> None:
        super().__init__(f"No job registered for task type: {task_type!r}")
        self.task_type = task_type


class TaskStateError(WorkflowEngineError):
    """A task was not in the state required for the requested transition."""


class WorkflowDefinitionError(ValueError):
    """Workflow definition file is missing or malformed."""
