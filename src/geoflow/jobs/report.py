"""Workflow report built from the results of completed tasks."""

from __future__ import annotations

import json
import logging

from geoflow.engine.errors import JobError
from geoflow.engine.models import TaskView
from geoflow.jobs.base import JobContext

logger = logging.getLogger(__name__)


class ReportGenerationJob:
    """Join prior results to their tasks and serialize a workflow report."""

    def run(self, context: JobContext) -> str:
        task = context.task
        workflow = context.workflow
        logger.info("Running report generation for task %s", task.task_id)

        result_task_ids = {result.task_id for result in context.prior_results}
        reported_tasks = [
            candidate for candidate in workflow.tasks if candidate.task_id in result_task_ids
        ]
        tasks_by_id = {candidate.task_id: candidate for candidate in reported_tasks}

        entries: list[dict[str, object]] = []
        for result in context.prior_results:
            source_task = tasks_by_id.get(result.task_id)
            entries.append(
                {
                    "taskId": result.task_id,
                    "type": source_task.task_type if source_task is not None else None,
                    "output": result.data,
                },
            )
        if not entries:
            logger.error("No tasks to be reported for workflow %s", workflow.workflow_id)
            raise JobError("No tasks to be reported", task_id=task.task_id)

        outputs = {entry["taskId"]: entry["output"] for entry in entries}
        final_report = {
            reported.task_id: {
                **_task_metadata(reported),
                "output": outputs.get(reported.task_id),
            }
            for reported in reported_tasks
        }
        return json.dumps(
            {
                "workflowId": workflow.workflow_id,
                "tasks": entries,
                "finalReport": final_report,
            },
            ensure_ascii=False,
        )


def _task_metadata(task: TaskView) -> dict[str, object]:
    return {
        "taskId": task.task_id,
        "workflowId": task.workflow_id,
        "clientId": task.client_id,
        "taskType": task.task_type,
        "stepNumber": task.step_number,
        "dependencies": task.dependencies,
        "status": task.status.value,
    }
