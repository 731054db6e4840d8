"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest

from geoflow.engine.models import TaskCreate, WorkflowCreate, WorkflowView
from geoflow.engine.repository import WorkflowRepository

# One degree square on the equator, counter-clockwise exterior ring.
EQUATOR_SQUARE_FEATURE = {
    "type": "Feature",
    "properties": {},
    "geometry": {
        "type": "Polygon",
        "coordinates": [[[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0], [0.0, 0.0]]],
    },
}
EQUATOR_SQUARE_AREA_M2 = 12_308_778_361.0


@pytest.fixture()
def geo_json() -> str:
    return json.dumps(EQUATOR_SQUARE_FEATURE)


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[WorkflowRepository]:
    repo = WorkflowRepository(tmp_path / "geoflow.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


def create_workflow(
    repository: WorkflowRepository,
    *steps: tuple[str, int, tuple[str, ...]],
    geo_json: str = "{}",
    client_id: str = "client-1",
) -> WorkflowView:
    """Persist a workflow from ``(task_type, step_number, depends_on)`` tuples."""

    return repository.create_workflow(
        WorkflowCreate(
            client_id=client_id,
            name="test",
            tasks=[
                TaskCreate(
                    task_type=task_type,
                    step_number=step_number,
                    geo_json=geo_json,
                    dependencies=depends_on,
                )
                for task_type, step_number, depends_on in steps
            ],
        ),
    )


def task_by_type(workflow: WorkflowView, task_type: str):
    return next(task for task in workflow.tasks if task.task_type == task_type)
