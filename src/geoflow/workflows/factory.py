"""Build a workflow and its task graph from a JSON definition file."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from geoflow.engine.errors import WorkflowDefinitionError
from geoflow.engine.models import TaskCreate, WorkflowCreate, WorkflowView
from geoflow.engine.repository import WorkflowRepository

logger = logging.getLogger(__name__)

EXAMPLE_WORKFLOW_PATH = Path(__file__).with_name("example_workflow.json")


@dataclass(slots=True)
class WorkflowStep:
    """One step of a workflow definition."""

    task_type: str
    step_number: int
    depends_on: tuple[str, ...] = ()


@dataclass(slots=True)
class WorkflowDefinition:
    """Parsed workflow definition."""

    name: str
    steps: list[WorkflowStep]


def read_workflow_definition(path: Path) -> WorkflowDefinition:
    """Deserialize and validate a workflow definition."""

    try:
        raw = json.loads(path.read_text("utf-8"))
    except FileNotFoundError as error:
        raise WorkflowDefinitionError(f"Workflow definition not found: {path}") from error
    except json.JSONDecodeError as error:
        raise WorkflowDefinitionError(f"Workflow definition is not valid JSON: {error}") from error
    if not isinstance(raw, dict):
        raise WorkflowDefinitionError(f"Expected JSON object in {path}")

    name = raw.get("name", path.stem)
    raw_steps = raw.get("steps")
    if not isinstance(name, str) or not name.strip():
        raise WorkflowDefinitionError("workflow.name must be a non-empty string")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise WorkflowDefinitionError("workflow.steps must be a non-empty array")

    steps = [_parse_step(index, item) for index, item in enumerate(raw_steps)]
    return WorkflowDefinition(name=name.strip(), steps=steps)


def _parse_step(index: int, item: object) -> WorkflowStep:
    if not isinstance(item, dict):
        raise WorkflowDefinitionError(f"workflow.steps[{index}] must be an object")

    task_type = item.get("taskType")
    if not isinstance(task_type, str) or not task_type.strip():
        raise WorkflowDefinitionError(
            f"workflow.steps[{index}].taskType must be a non-empty string",
        )

    step_number = item.get("stepNumber", index + 1)
    if not isinstance(step_number, int) or isinstance(step_number, bool):
        raise WorkflowDefinitionError(
            f"workflow.steps[{index}].stepNumber must be an integer",
        )

    depends_on = item.get("dependsOn", [])
    if isinstance(depends_on, str):
        depends_on = depends_on.split(",")
    if not isinstance(depends_on, list) or not all(isinstance(dep, str) for dep in depends_on):
        raise WorkflowDefinitionError(
            f"workflow.steps[{index}].dependsOn must be a list of task types",
        )

    return WorkflowStep(
        task_type=task_type.strip(),
        step_number=step_number,
        depends_on=tuple(dep.strip() for dep in depends_on if dep.strip()),
    )


class WorkflowFactory:
    """Persists a pending workflow with one queued task per definition step."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self.repository = repository

    def create_workflow(
        self,
        *,
        client_id: str,
        geo_json: str,
        definition_path: Path = EXAMPLE_WORKFLOW_PATH,
    ) -> WorkflowView:
        definition = read_workflow_definition(definition_path)
        workflow = self.repository.create_workflow(
            WorkflowCreate(
                client_id=client_id,
                name=definition.name,
                tasks=[
                    TaskCreate(
                        task_type=step.task_type,
                        step_number=step.step_number,
                        geo_json=geo_json,
                        dependencies=step.depends_on,
                    )
                    for step in definition.steps
                ],
            ),
        )
        logger.info(
            "Workflow %s (%s) created with %d tasks",
            workflow.workflow_id,
            definition.name,
            len(workflow.tasks),
        )
        return workflow
