"""Domain models for workflows, tasks and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class WorkflowStatus(str, Enum):
    """Aggregate workflow lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Failed -> Queued is reserved for operator re-queue; nothing re-queues automatically.
TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.QUEUED: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset({TaskStatus.QUEUED}),
}

DEPENDENCY_DELIMITER = ","


def parse_dependencies(value: str | None) -> frozenset[str]:
    """Split a persisted dependency field into the set of required task types."""

    if not value:
        return frozenset()
    return frozenset(
        part.strip() for part in value.split(DEPENDENCY_DELIMITER) if part.strip()
    )


def format_dependencies(task_types: tuple[str, ...] | list[str]) -> str | None:
    """Join dependency task types into the persisted delimited form."""

    cleaned = [task_type.strip() for task_type in task_types if task_type.strip()]
    if not cleaned:
        return None
    return DEPENDENCY_DELIMITER.join(cleaned)


@dataclass(slots=True)
class TaskCreate:
    """Input payload for one task of a new workflow."""

    task_type: str
    step_number: int
    geo_json: str
    dependencies: tuple[str, ...] = ()


@dataclass(slots=True)
class WorkflowCreate:
    """Input payload for persisting a new workflow with its tasks."""

    client_id: str
    tasks: list[TaskCreate]
    name: str | None = None
    workflow_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for scheduler and runner logic.

    ``workflow_id`` is a non-owning reference to the owning workflow; the
    workflow owns its task collection.
    """

    task_id: str
    workflow_id: str
    client_id: str
    task_type: str
    step_number: int
    dependencies: str | None
    status: TaskStatus
    geo_json: str
    error_summary: str | None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    finished_at: datetime | None

    @property
    def dependency_types(self) -> frozenset[str]:
        return parse_dependencies(self.dependencies)


@dataclass(slots=True)
class WorkflowView:
    """Stored workflow with its ordered task collection."""

    workflow_id: str
    client_id: str
    name: str | None
    status: WorkflowStatus
    final_result: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    tasks: list[TaskView] = field(default_factory=list)

    @property
    def completed_tasks(self) -> int:
        return sum(1 for task in self.tasks if task.status == TaskStatus.COMPLETED)

    @property
    def all_tasks_completed(self) -> bool:
        return bool(self.tasks) and self.completed_tasks == len(self.tasks)


@dataclass(slots=True)
class ResultView:
    """Persisted output of one successfully completed task."""

    result_id: int
    task_id: str
    data: str | None
    created_at: datetime
