from __future__ import annotations

import json

import allure
import pytest
from conftest import create_workflow, task_by_type

from geoflow.engine.errors import JobError
from geoflow.engine.models import TaskStatus
from geoflow.engine.repository import WorkflowRepository
from geoflow.jobs.base import JobContext
from geoflow.jobs.report import ReportGenerationJob

pytestmark = [
    allure.epic("Jobs"),
    allure.feature("Report Generation"),
]


def _complete(repository: WorkflowRepository, task_id: str, data: str) -> None:
    repository.save_task_status(task_id=task_id, status=TaskStatus.RUNNING)
    repository.complete_task(task_id=task_id, data=data)


def test_report_lists_every_prior_result(repository: WorkflowRepository) -> None:
    workflow = create_workflow(
        repository,
        ("polygonArea", 1, ()),
        ("polygonArea", 2, ()),
        ("reportGeneration", 3, ("polygonArea",)),
        client_id="client-7",
    )
    areas = [task for task in workflow.tasks if task.task_type == "polygonArea"]
    _complete(repository, areas[0].task_id, "100.5")
    _complete(repository, areas[1].task_id, "200.25")

    loaded = repository.load_workflow_with_tasks(workflow.workflow_id)
    assert loaded is not None
    context = JobContext(
        task=task_by_type(loaded, "reportGeneration"),
        workflow=loaded,
        prior_results=repository.list_workflow_results(workflow.workflow_id),
    )
    report = json.loads(ReportGenerationJob().run(context))

    assert report["workflowId"] == workflow.workflow_id
    assert report["tasks"] == [
        {"taskId": areas[0].task_id, "type": "polygonArea", "output": "100.5"},
        {"taskId": areas[1].task_id, "type": "polygonArea", "output": "200.25"},
    ]
    final_report = report["finalReport"]
    assert set(final_report) == {areas[0].task_id, areas[1].task_id}
    entry = final_report[areas[0].task_id]
    assert entry["clientId"] == "client-7"
    assert entry["taskType"] == "polygonArea"
    assert entry["stepNumber"] == 1
    assert entry["status"] == "completed"
    assert entry["output"] == "100.5"


def test_report_without_prior_results_fails(repository: WorkflowRepository) -> None:
    workflow = create_workflow(repository, ("reportGeneration", 1, ()))
    context = JobContext(task=workflow.tasks[0], workflow=workflow, prior_results=())

    with pytest.raises(JobError, match="No tasks to be reported"):
        ReportGenerationJob().run(context)
