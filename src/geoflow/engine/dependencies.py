"""Workflow-scoped dependency check for queued tasks."""

from __future__ import annotations

import logging

from geoflow.engine.models import TaskView
from geoflow.engine.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Decides whether a task still waits on prerequisite task types.

    Dependencies are matched by task type among sibling tasks of the same
    workflow; every sibling of a required type must be completed.  A required
    type that no sibling carries is never satisfied, so such a task stays
    blocked until the workflow is fixed by hand.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self.repository = repository

    def is_blocked(self, task: TaskView) -> bool:
        required = task.dependency_types
        if not required:
            return False

        remaining = self.repository.count_incomplete_dependencies(
            workflow_id=task.workflow_id,
            task_types=required,
        )
        if remaining > 0:
            logger.info(
                "Task %s waiting for dependencies to be completed. Remaining: %d",
                task.task_id,
                remaining,
            )
            return True
        return False
