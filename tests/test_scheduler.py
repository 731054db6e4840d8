from __future__ import annotations

import json

import allure
import pytest
from conftest import create_workflow, task_by_type

from geoflow.engine.errors import JobError
from geoflow.engine.models import TaskStatus, WorkflowStatus
from geoflow.engine.repository import WorkflowRepository
from geoflow.engine.scheduler import SchedulerConfig, SchedulerLoop
from geoflow.jobs.base import JobContext
from geoflow.jobs.registry import JobRegistry
from geoflow.jobs.report import ReportGenerationJob

pytestmark = [
    allure.epic("Workflow Engine"),
    allure.feature("Scheduler"),
]


class _FetchJob:
    def run(self, context: JobContext) -> str:
        return f"fetched:{context.task.step_number}"


class _FailingJob:
    def run(self, context: JobContext) -> str:
        raise JobError("upstream unavailable", task_id=context.task.task_id)


def _scheduler(repository: WorkflowRepository, **jobs) -> SchedulerLoop:
    registry = JobRegistry({"fetch": _FetchJob(), "reportGeneration": ReportGenerationJob()})
    for task_type, job in jobs.items():
        registry.register(task_type, job)
    return SchedulerLoop(
        SchedulerConfig(repository=repository, poll_interval_seconds=0, registry=registry),
    )


def test_dependent_task_runs_after_its_dependency(repository: WorkflowRepository) -> None:
    workflow = create_workflow(
        repository,
        ("reportGeneration", 2, ("fetch",)),
        ("fetch", 1, ()),
    )
    scheduler = _scheduler(repository)

    first = scheduler.run_once()
    assert first.processed == 1
    assert first.succeeded == 1
    assert first.workflows_completed == 0
    assert repository.get_task(task_by_type(workflow, "fetch").task_id).status == (
        TaskStatus.COMPLETED
    )
    assert repository.get_task(task_by_type(workflow, "reportGeneration").task_id).status == (
        TaskStatus.QUEUED
    )

    second = scheduler.run_once()
    assert second.processed == 1
    assert second.workflows_completed == 1

    loaded = repository.load_workflow_with_tasks(workflow.workflow_id)
    assert loaded is not None
    assert loaded.status == WorkflowStatus.COMPLETED
    final_result = json.loads(loaded.final_result or "[]")
    assert final_result[0] == "fetched:1"
    assert json.loads(final_result[1])["tasks"][0]["output"] == "fetched:1"

    idle = scheduler.run_once()
    assert idle.processed == 0
    assert idle.idle_polls == 1


def test_scheduler_skips_blocked_tasks_and_dispatches_runnable_one(
    repository: WorkflowRepository,
) -> None:
    blocked = create_workflow(repository, ("reportGeneration", 1, ("missing",)))
    runnable = create_workflow(repository, ("fetch", 1, ()))

    summary = _scheduler(repository).run_once()

    assert summary.blocked == 1
    assert summary.succeeded == 1
    assert repository.get_task(blocked.tasks[0].task_id).status == TaskStatus.QUEUED
    assert repository.get_task(runnable.tasks[0].task_id).status == TaskStatus.COMPLETED


def test_failed_task_does_not_stop_the_loop(repository: WorkflowRepository) -> None:
    failing = create_workflow(
        repository,
        ("explode", 1, ()),
        ("reportGeneration", 2, ("explode",)),
    )
    healthy = create_workflow(repository, ("fetch", 1, ()), ("reportGeneration", 2, ("fetch",)))

    summary = _scheduler(repository, explode=_FailingJob()).run_loop(max_idle_polls=1)

    assert summary.processed == 3
    assert summary.failed == 1
    assert summary.succeeded == 2
    assert summary.workflows_completed == 1
    assert summary.idle_polls == 1

    explode_task = repository.get_task(task_by_type(failing, "explode").task_id)
    assert explode_task.status == TaskStatus.FAILED
    assert "upstream unavailable" in (explode_task.error_summary or "")
    report_task = repository.get_task(task_by_type(failing, "reportGeneration").task_id)
    assert report_task.status == TaskStatus.QUEUED

    failed_workflow = repository.load_workflow_with_tasks(failing.workflow_id)
    assert failed_workflow.final_result is None
    completed_workflow = repository.load_workflow_with_tasks(healthy.workflow_id)
    assert completed_workflow.status == WorkflowStatus.COMPLETED


def test_unknown_task_type_fails_task_and_loop_continues(
    repository: WorkflowRepository,
) -> None:
    unknown = create_workflow(repository, ("analysis", 1, ()))
    known = create_workflow(repository, ("fetch", 1, ()))

    summary = _scheduler(repository).run_loop(max_idle_polls=1)

    assert summary.failed == 1
    assert summary.succeeded == 1
    assert repository.get_task(unknown.tasks[0].task_id).status == TaskStatus.FAILED
    assert repository.get_task(known.tasks[0].task_id).status == TaskStatus.COMPLETED


def test_run_loop_honors_max_cycles(repository: WorkflowRepository) -> None:
    create_workflow(repository, ("fetch", 1, ()), ("fetch", 2, ()), ("fetch", 3, ()))

    summary = _scheduler(repository).run_loop(max_cycles=2)

    assert summary.processed == 2
    assert len(repository.find_queued_tasks()) == 1


def test_requested_stop_prevents_further_dispatch(repository: WorkflowRepository) -> None:
    workflow = create_workflow(repository, ("fetch", 1, ()))
    scheduler = _scheduler(repository)
    scheduler.request_stop()

    assert scheduler.run_loop().processed == 0
    assert scheduler.run_once().processed == 0
    assert repository.get_task(workflow.tasks[0].task_id).status == TaskStatus.QUEUED


def test_selection_failure_is_logged_and_cycle_ends(repository: WorkflowRepository) -> None:
    scheduler = _scheduler(repository)

    def _broken() -> list:
        raise RuntimeError("database is locked")

    repository.find_queued_tasks = _broken  # type: ignore[method-assign]

    summary = scheduler.run_once()
    assert summary.processed == 0
    assert summary.idle_polls == 1


def test_workflow_left_unfinalized_is_recovered_on_next_cycle(
    repository: WorkflowRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    workflow = create_workflow(repository, ("fetch", 1, ()))
    save_final = repository.save_workflow_final
    calls: list[str] = []

    def _locked_once(**kwargs):
        calls.append(kwargs["workflow_id"])
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return save_final(**kwargs)

    monkeypatch.setattr(repository, "save_workflow_final", _locked_once)

    summary = _scheduler(repository).run_loop(max_idle_polls=3)

    assert summary.succeeded == 1
    assert summary.workflows_completed == 1
    assert calls == [workflow.workflow_id, workflow.workflow_id]
    loaded = repository.load_workflow_with_tasks(workflow.workflow_id)
    assert loaded.status == WorkflowStatus.COMPLETED
    assert json.loads(loaded.final_result or "[]") == ["fetched:1"]


def test_run_loop_does_not_sleep_after_last_allowed_cycle(
    repository: WorkflowRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    create_workflow(repository, ("fetch", 1, ()), ("fetch", 2, ()))
    scheduler = _scheduler(repository)
    sleeps: list[float] = []
    monkeypatch.setattr(scheduler, "_sleep_with_stop", sleeps.append)

    scheduler.run_loop(max_cycles=2)

    assert len(sleeps) == 1
