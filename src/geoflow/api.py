"""Read-only HTTP API for workflow status and results."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from geoflow import __version__
from geoflow.engine.models import WorkflowStatus
from geoflow.engine.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class WorkflowStatusResponse(BaseModel):
    """API response model for workflow progress"""

    workflowId: str
    status: str
    completedTasks: int
    totalTasks: int


class WorkflowResultsResponse(BaseModel):
    """API response model for a completed workflow"""

    workflowId: str
    status: str
    finalResult: list[Any]


def decode_final_result(final_result: str | None) -> list[Any]:
    """Decode the stored result list, JSON-decoding each element where possible."""

    raw = json.loads(final_result or "[]")
    if not isinstance(raw, list):
        raw = [raw]
    return [_raw_value(item) for item in raw]


def _raw_value(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


def create_app(repository: WorkflowRepository) -> FastAPI:
    """Build the API bound to one repository."""

    app = FastAPI(title="geoflow", version=__version__)
    app.state.repository = repository

    @app.get("/workflows/{workflow_id}/status", response_model=WorkflowStatusResponse)
    def workflow_status(workflow_id: str, request: Request) -> Any:
        store: WorkflowRepository = request.app.state.repository
        try:
            workflow = store.load_workflow_with_tasks(workflow_id)
        except SQLAlchemyError:
            logger.exception("Error retrieving workflow %s", workflow_id)
            return _message(500, "Failed to retrieve workflow")
        if workflow is None:
            return _message(404, "Workflow not found")
        return WorkflowStatusResponse(
            workflowId=workflow.workflow_id,
            status=workflow.status.value,
            completedTasks=workflow.completed_tasks,
            totalTasks=len(workflow.tasks),
        )

    @app.get("/workflows/{workflow_id}/results", response_model=WorkflowResultsResponse)
    def workflow_results(workflow_id: str, request: Request) -> Any:
        store: WorkflowRepository = request.app.state.repository
        try:
            workflow = store.load_workflow_with_tasks(workflow_id)
            if workflow is None:
                return _message(404, "Workflow not found")
            if workflow.status != WorkflowStatus.COMPLETED:
                return _message(400, "Workflow not completed")
            final_result = decode_final_result(workflow.final_result)
        except (SQLAlchemyError, json.JSONDecodeError):
            logger.exception("Error retrieving workflow %s", workflow_id)
            return _message(500, "Failed to retrieve workflow")
        return WorkflowResultsResponse(
            workflowId=workflow.workflow_id,
            status=workflow.status.value,
            finalResult=final_result,
        )

    return app
