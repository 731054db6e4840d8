"""Controllers for geoflow CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import uvicorn

from geoflow.api import create_app, decode_final_result
from geoflow.config import Settings
from geoflow.engine.models import TaskStatus, WorkflowStatus
from geoflow.engine.repository import WorkflowRepository
from geoflow.engine.scheduler import SchedulerConfig, SchedulerLoop
from geoflow.workflows.factory import EXAMPLE_WORKFLOW_PATH, WorkflowFactory


@dataclass(slots=True)
class WorkflowCreateCommand:
    """CLI input for workflow creation."""

    db_path: Path | None
    client_id: str
    geojson_path: Path
    definition_path: Path | None = None


@dataclass(slots=True)
class WorkflowLookupCommand:
    """CLI input for workflow status/results lookups."""

    db_path: Path | None
    workflow_id: str


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for scheduler execution."""

    db_path: Path | None
    once: bool
    max_cycles: int | None = None
    max_idle_polls: int | None = None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    workflow_id: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class RetryTaskCommand:
    """CLI input for manual task re-queue."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class ServeCommand:
    """CLI input for the read API server."""

    db_path: Path | None
    host: str | None = None
    port: int | None = None


class WorkflowCliController:
    """Coordinates workflow creation, scheduler runs and inspection CLI operations."""

    def init_db(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with _repository(settings):
            pass
        return [f"Schema ready: {settings.db_path}"]

    def create_workflow(self, command: WorkflowCreateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        geo_json = command.geojson_path.read_text("utf-8")
        with _repository(settings) as repository:
            workflow = WorkflowFactory(repository).create_workflow(
                client_id=command.client_id,
                geo_json=geo_json,
                definition_path=command.definition_path or EXAMPLE_WORKFLOW_PATH,
            )

        lines = [
            "Workflow created: "
            f"workflow_id={workflow.workflow_id} name={workflow.name or '-'} "
            f"status={workflow.status.value}",
        ]
        for task in workflow.tasks:
            lines.append(
                f"  {task.task_id} step={task.step_number} type={task.task_type} "
                f"depends_on={task.dependencies or '-'} status={task.status.value}",
            )
        return lines

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repository(settings) as repository:
            scheduler = SchedulerLoop(
                SchedulerConfig(
                    repository=repository,
                    poll_interval_seconds=settings.scheduler.poll_interval_seconds,
                ),
            )
            summary = (
                scheduler.run_once()
                if command.once
                else scheduler.run_loop(
                    max_cycles=command.max_cycles,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return [
            "Scheduler summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} blocked={summary.blocked} "
            f"idle_polls={summary.idle_polls} "
            f"workflows_completed={summary.workflows_completed}",
        ]

    def workflow_status(self, command: WorkflowLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            workflow = repository.load_workflow_with_tasks(command.workflow_id)
        if workflow is None:
            raise LookupError(f"Workflow not found: {command.workflow_id}")

        lines = [
            f"Workflow: {workflow.workflow_id}",
            f"Status: {workflow.status.value}",
            f"Completed tasks: {workflow.completed_tasks}/{len(workflow.tasks)}",
        ]
        for task in workflow.tasks:
            lines.append(
                f"  {task.task_id} step={task.step_number} type={task.task_type} "
                f"status={task.status.value} error={task.error_summary or '-'}",
            )
        return lines

    def workflow_results(self, command: WorkflowLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            workflow = repository.load_workflow_with_tasks(command.workflow_id)
        if workflow is None:
            raise LookupError(f"Workflow not found: {command.workflow_id}")
        if workflow.status != WorkflowStatus.COMPLETED:
            raise RuntimeError(
                f"Workflow not completed: {workflow.workflow_id} "
                f"(status={workflow.status.value})",
            )

        payload = {
            "workflowId": workflow.workflow_id,
            "status": workflow.status.value,
            "finalResult": decode_final_result(workflow.final_result),
        }
        return json.dumps(payload, ensure_ascii=False, indent=2).splitlines()

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(
                workflow_id=command.workflow_id,
                status=status_filter,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} workflow={task.workflow_id} type={task.task_type} "
                f"step={task.step_number} status={task.status.value}",
            )
        return lines

    def retry_task(self, command: RetryTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            repository.requeue_task(task_id=command.task_id)
        return [f"Task re-queued: {command.task_id}"]

    def serve(self, command: ServeCommand) -> None:
        """Run the read API until interrupted."""

        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repository(settings) as repository:
            uvicorn.run(
                create_app(repository),
                host=command.host or settings.api.host,
                port=command.port or settings.api.port,
                log_level=settings.log_level.lower(),
            )


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[WorkflowRepository]:
    repository = WorkflowRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
