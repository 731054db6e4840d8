"""Execution lifecycle of one task."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from geoflow.engine.errors import TaskStateError, WorkflowEngineError
from geoflow.engine.models import TaskStatus, TaskView, WorkflowStatus, WorkflowView
from geoflow.engine.repository import WorkflowRepository
from geoflow.jobs.base import JobContext
from geoflow.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskOutcome:
    """What happened to one dispatched task."""

    task_id: str
    workflow_id: str
    status: TaskStatus
    output: str | None = None
    workflow_completed: bool = False


class TaskRunner:
    """Runs one task: status transitions, job dispatch and result capture.

    Jobs never touch task or workflow status; this class is the only writer.
    A task whose job fails is marked failed and the error is re-raised to the
    caller.  There are no automatic retries.
    """

    def __init__(self, *, repository: WorkflowRepository, registry: JobRegistry) -> None:
        self.repository = repository
        self.registry = registry

    def run(self, task: TaskView) -> TaskOutcome:
        # Persisted before dispatch so a crash mid-job leaves the task visibly running.
        claimed = self.repository.save_task_status(
            task_id=task.task_id,
            status=TaskStatus.RUNNING,
            expected=TaskStatus.QUEUED,
        )
        if not claimed:
            raise TaskStateError(f"Task {task.task_id} is no longer queued")
        logger.info("Task %s (%s) started", task.task_id, task.task_type)

        try:
            self.repository.mark_workflow_running(task.workflow_id)
            output = self._execute(task)
        except Exception as error:
            self._mark_failed(task=task, error=error)
            raise

        if not self.repository.complete_task(task_id=task.task_id, data=output):
            raise TaskStateError(f"Task {task.task_id} left running state before completion")
        logger.info("Task %s (%s) completed", task.task_id, task.task_type)

        try:
            workflow_completed = self.finalize_workflow(task.workflow_id)
        except Exception:
            # The task result is committed; the scheduler sweep retries finalization.
            logger.exception("Could not finalize workflow %s", task.workflow_id)
            workflow_completed = False
        return TaskOutcome(
            task_id=task.task_id,
            workflow_id=task.workflow_id,
            status=TaskStatus.COMPLETED,
            output=output,
            workflow_completed=workflow_completed,
        )

    def _execute(self, task: TaskView) -> str:
        job = self.registry.get(task.task_type)
        workflow = self._load_workflow(task.workflow_id)
        prior_results = self.repository.list_workflow_results(task.workflow_id)
        running_task = next(
            (candidate for candidate in workflow.tasks if candidate.task_id == task.task_id),
            task,
        )
        return job.run(
            JobContext(task=running_task, workflow=workflow, prior_results=prior_results),
        )

    def _mark_failed(self, *, task: TaskView, error: Exception) -> None:
        logger.error("Task %s (%s) failed: %s", task.task_id, task.task_type, error)
        try:
            self.repository.save_task_status(
                task_id=task.task_id,
                status=TaskStatus.FAILED,
                expected=TaskStatus.RUNNING,
                error_summary=f"{type(error).__name__}: {error}",
            )
        except Exception:
            logger.exception("Could not mark task %s as failed", task.task_id)

    def finalize_workflow(self, workflow_id: str) -> bool:
        """Store the aggregated final result once every task is completed.

        Returns True only for the call that actually wrote the final result.
        """

        workflow = self._load_workflow(workflow_id)
        if not workflow.all_tasks_completed:
            return False

        results = self.repository.list_workflow_results(workflow_id)
        final_result = json.dumps([result.data for result in results], ensure_ascii=False)
        saved = self.repository.save_workflow_final(
            workflow_id=workflow_id,
            status=WorkflowStatus.COMPLETED,
            final_result=final_result,
        )
        if saved:
            logger.info(
                "Workflow %s completed with %d results",
                workflow_id,
                len(results),
            )
        return saved

    def _load_workflow(self, workflow_id: str) -> WorkflowView:
        workflow = self.repository.load_workflow_with_tasks(workflow_id)
        if workflow is None:
            raise WorkflowEngineError(f"Workflow not found: {workflow_id}")
        return workflow
