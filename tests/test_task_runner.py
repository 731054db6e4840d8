from __future__ import annotations

import json

import allure
import pytest
from conftest import EQUATOR_SQUARE_AREA_M2, create_workflow, task_by_type

from geoflow.engine.errors import JobError, TaskStateError, UnknownTaskTypeError
from geoflow.engine.models import TaskStatus, WorkflowStatus
from geoflow.engine.repository import WorkflowRepository
from geoflow.engine.runner import TaskRunner
from geoflow.jobs.base import JobContext
from geoflow.jobs.registry import JobRegistry, default_job_registry

pytestmark = [
    allure.epic("Workflow Engine"),
    allure.feature("Task Execution"),
]


class _FailingJob:
    def run(self, context: JobContext) -> str:
        raise JobError("boom", task_id=context.task.task_id)


class _RecordingJob:
    def __init__(self) -> None:
        self.seen_statuses: list[TaskStatus] = []

    def run(self, context: JobContext) -> str:
        current = next(
            task for task in context.workflow.tasks if task.task_id == context.task.task_id
        )
        self.seen_statuses.append(current.status)
        return "ok"


def test_runner_completes_task_and_stores_result(
    repository: WorkflowRepository,
    geo_json: str,
) -> None:
    workflow = create_workflow(
        repository,
        ("polygonArea", 1, ()),
        ("reportGeneration", 2, ("polygonArea",)),
        geo_json=geo_json,
    )
    area_task = task_by_type(workflow, "polygonArea")

    outcome = TaskRunner(repository=repository, registry=default_job_registry()).run(area_task)

    assert outcome.status == TaskStatus.COMPLETED
    assert not outcome.workflow_completed
    assert float(outcome.output or "0") == pytest.approx(EQUATOR_SQUARE_AREA_M2, rel=1e-3)
    stored = repository.get_task(area_task.task_id)
    assert stored is not None
    assert stored.status == TaskStatus.COMPLETED
    results = repository.list_workflow_results(workflow.workflow_id)
    assert [result.task_id for result in results] == [area_task.task_id]
    loaded = repository.load_workflow_with_tasks(workflow.workflow_id)
    assert loaded is not None
    assert loaded.status == WorkflowStatus.RUNNING
    assert loaded.final_result is None


def test_runner_persists_running_status_before_job_runs(
    repository: WorkflowRepository,
) -> None:
    workflow = create_workflow(repository, ("record", 1, ()))
    job = _RecordingJob()

    TaskRunner(repository=repository, registry=JobRegistry({"record": job})).run(
        workflow.tasks[0],
    )

    assert job.seen_statuses == [TaskStatus.RUNNING]


def test_runner_marks_task_failed_and_reraises(repository: WorkflowRepository) -> None:
    workflow = create_workflow(repository, ("explode", 1, ()))
    task = workflow.tasks[0]
    runner = TaskRunner(repository=repository, registry=JobRegistry({"explode": _FailingJob()}))

    with pytest.raises(JobError, match="boom"):
        runner.run(task)

    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.status == TaskStatus.FAILED
    assert stored.error_summary == "JobError: boom"
    assert repository.list_workflow_results(workflow.workflow_id) == []
    loaded = repository.load_workflow_with_tasks(workflow.workflow_id)
    assert loaded is not None
    assert loaded.final_result is None


def test_runner_fails_task_with_unknown_type(repository: WorkflowRepository) -> None:
    workflow = create_workflow(repository, ("analysis", 1, ()))
    task = workflow.tasks[0]

    with pytest.raises(UnknownTaskTypeError):
        TaskRunner(repository=repository, registry=default_job_registry()).run(task)

    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.status == TaskStatus.FAILED


def test_runner_refuses_task_that_is_no_longer_queued(repository: WorkflowRepository) -> None:
    workflow = create_workflow(repository, ("record", 1, ()))
    task = workflow.tasks[0]
    repository.save_task_status(task_id=task.task_id, status=TaskStatus.RUNNING)
    job = _RecordingJob()

    with pytest.raises(TaskStateError):
        TaskRunner(repository=repository, registry=JobRegistry({"record": job})).run(task)
    assert job.seen_statuses == []


def test_runner_completes_workflow_with_final_result(
    repository: WorkflowRepository,
    geo_json: str,
) -> None:
    workflow = create_workflow(
        repository,
        ("polygonArea", 1, ()),
        ("reportGeneration", 2, ("polygonArea",)),
        geo_json=geo_json,
    )
    runner = TaskRunner(repository=repository, registry=default_job_registry())

    runner.run(task_by_type(workflow, "polygonArea"))
    outcome = runner.run(task_by_type(workflow, "reportGeneration"))

    assert outcome.workflow_completed
    loaded = repository.load_workflow_with_tasks(workflow.workflow_id)
    assert loaded is not None
    assert loaded.status == WorkflowStatus.COMPLETED
    final_result = json.loads(loaded.final_result or "[]")
    assert len(final_result) == 2
    assert float(final_result[0]) == pytest.approx(EQUATOR_SQUARE_AREA_M2, rel=1e-3)
    report = json.loads(final_result[1])
    assert report["workflowId"] == workflow.workflow_id
    assert [entry["type"] for entry in report["tasks"]] == ["polygonArea"]


def test_finalization_error_keeps_task_completed(
    repository: WorkflowRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    workflow = create_workflow(repository, ("record", 1, ()))

    def _locked(**_: object) -> bool:
        raise RuntimeError("database is locked")

    monkeypatch.setattr(repository, "save_workflow_final", _locked)
    runner = TaskRunner(repository=repository, registry=JobRegistry({"record": _RecordingJob()}))

    outcome = runner.run(workflow.tasks[0])

    assert outcome.status == TaskStatus.COMPLETED
    assert not outcome.workflow_completed
    assert repository.get_task(workflow.tasks[0].task_id).status == TaskStatus.COMPLETED
    assert repository.find_unfinalized_workflows() == [workflow.workflow_id]


def test_finalize_workflow_waits_for_every_task(repository: WorkflowRepository) -> None:
    workflow = create_workflow(repository, ("record", 1, ()), ("record", 2, ()))
    runner = TaskRunner(repository=repository, registry=JobRegistry({"record": _RecordingJob()}))

    runner.run(workflow.tasks[0])
    assert not runner.finalize_workflow(workflow.workflow_id)

    runner.run(workflow.tasks[1])
    assert not runner.finalize_workflow(workflow.workflow_id)
    loaded = repository.load_workflow_with_tasks(workflow.workflow_id)
    assert loaded.status == WorkflowStatus.COMPLETED
    assert json.loads(loaded.final_result or "[]") == ["ok", "ok"]
