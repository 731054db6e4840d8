"""Persistent store for workflows, tasks and results."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from uuid import uuid4

from sqlalchemy import case, exists, func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from geoflow.engine.models import (
    TASK_TRANSITIONS,
    ResultView,
    TaskStatus,
    TaskView,
    WorkflowCreate,
    WorkflowStatus,
    WorkflowView,
    format_dependencies,
)
from geoflow.storage.alembic_runner import upgrade_head
from geoflow.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from geoflow.storage.sqlmodel_models import ResultRow, TaskRow, WorkflowRow

logger = logging.getLogger(__name__)


class WorkflowRepository:
    """Workflow persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    def create_workflow(self, payload: WorkflowCreate) -> WorkflowView:
        """Persist a pending workflow and its queued tasks in one transaction."""

        if not payload.tasks:
            raise ValueError("A workflow needs at least one task.")

        now = to_db_datetime(utc_now())
        workflow_id = payload.workflow_id or str(uuid4())
        with Session(self.engine) as session:
            session.add(
                WorkflowRow(
                    workflow_id=workflow_id,
                    client_id=payload.client_id,
                    name=payload.name,
                    status=WorkflowStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                ),
            )
            # Tables carry no ORM relationship, so the parent row must hit the DB
            # before its tasks for the foreign key to resolve.
            session.flush()
            for task in payload.tasks:
                session.add(
                    TaskRow(
                        task_id=str(uuid4()),
                        workflow_id=workflow_id,
                        client_id=payload.client_id,
                        task_type=task.task_type,
                        step_number=task.step_number,
                        dependencies=format_dependencies(list(task.dependencies)),
                        status=TaskStatus.QUEUED.value,
                        geo_json=task.geo_json,
                        created_at=now,
                        updated_at=now,
                    ),
                )
            session.commit()

        workflow = self.load_workflow_with_tasks(workflow_id)
        if workflow is None:  # pragma: no cover - just committed
            raise RuntimeError(f"Workflow vanished after insert: {workflow_id}")
        return workflow

    def find_queued_tasks(self) -> list[TaskView]:
        """List queued tasks across all workflows in dispatch order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow)
                .where(TaskRow.status == TaskStatus.QUEUED.value)
                .order_by(
                    col(TaskRow.created_at).asc(),
                    col(TaskRow.step_number).asc(),
                    col(TaskRow.task_id).asc(),
                ),
            ).all()
        return [_to_task_view(row) for row in rows]

    def count_incomplete_dependencies(
        self,
        *,
        workflow_id: str,
        task_types: Iterable[str],
    ) -> int:
        """Count unmet dependencies of the given types within one workflow.

        Every sibling task of a required type that is not completed counts
        once.  A required type without any sibling task also counts once, as
        it can never be completed.
        """

        types = sorted(set(task_types))
        if not types:
            return 0
        with Session(self.engine) as session:
            rows = session.exec(
                select(
                    TaskRow.task_type,
                    func.count(),
                    func.sum(
                        case((col(TaskRow.status) == TaskStatus.COMPLETED.value, 0), else_=1),
                    ),
                )
                .where(
                    col(TaskRow.workflow_id) == workflow_id,
                    col(TaskRow.task_type).in_(types),
                )
                .group_by(TaskRow.task_type),
            ).all()

        present = {task_type for task_type, _, _ in rows}
        incomplete = sum(int(not_completed or 0) for _, _, not_completed in rows)
        return incomplete + len(set(types) - present)

    def load_workflow_with_tasks(self, workflow_id: str) -> WorkflowView | None:
        """Return a workflow with its tasks ordered by step number."""

        with Session(self.engine) as session:
            workflow = session.exec(
                select(WorkflowRow).where(WorkflowRow.workflow_id == workflow_id),
            ).one_or_none()
            if workflow is None:
                return None
            task_rows = session.exec(
                select(TaskRow)
                .where(TaskRow.workflow_id == workflow_id)
                .order_by(col(TaskRow.step_number).asc(), col(TaskRow.created_at).asc()),
            ).all()
        view = _to_workflow_view(workflow)
        view.tasks = [_to_task_view(row) for row in task_rows]
        return view

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
        return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        workflow_id: str | None = None,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List tasks, optionally filtered by workflow and status."""

        with Session(self.engine) as session:
            statement = select(TaskRow)
            if workflow_id is not None:
                statement = statement.where(TaskRow.workflow_id == workflow_id)
            if status is not None:
                statement = statement.where(TaskRow.status == status.value)
            statement = statement.order_by(
                col(TaskRow.created_at).desc(),
                col(TaskRow.step_number).asc(),
            ).limit(limit)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def save_task_status(
        self,
        *,
        task_id: str,
        status: TaskStatus,
        expected: TaskStatus | None = None,
        error_summary: str | None = None,
    ) -> bool:
        """Move a task to ``status``.

        The transition must be allowed by the task state machine.  When
        ``expected`` is given the update only applies while the task is still
        in that state, and False is returned otherwise.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
            if row is None:
                raise RuntimeError(f"Task not found: {task_id}")

            previous = TaskStatus(row.status)
            if expected is not None and previous != expected:
                return False
            _check_transition(task_id=task_id, previous=previous, status=status)

            values: dict[str, object] = {"status": status.value, "updated_at": now}
            if status == TaskStatus.RUNNING:
                values["started_at"] = now
                values["finished_at"] = None
                values["error_summary"] = None
            elif status in {TaskStatus.COMPLETED, TaskStatus.FAILED}:
                values["finished_at"] = now
                values["error_summary"] = error_summary
            else:
                values["started_at"] = None
                values["finished_at"] = None
                values["error_summary"] = None

            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == previous.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_task(self, *, task_id: str, data: str | None) -> bool:
        """Store the task result and mark the running task completed atomically."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == TaskStatus.RUNNING.value,
                )
                .values(
                    status=TaskStatus.COMPLETED.value,
                    finished_at=now,
                    error_summary=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.add(ResultRow(task_id=task_id, data=data, created_at=now))
            session.commit()
            return True

    def list_workflow_results(self, workflow_id: str) -> list[ResultView]:
        """Return all results of a workflow's tasks in creation order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(ResultRow)
                .join(TaskRow, col(TaskRow.task_id) == col(ResultRow.task_id))
                .where(TaskRow.workflow_id == workflow_id)
                .order_by(col(ResultRow.result_id).asc()),
            ).all()
        return [
            ResultView(
                result_id=row.result_id or 0,
                task_id=row.task_id,
                data=row.data,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]

    def find_unfinalized_workflows(self) -> list[str]:
        """Ids of workflows whose tasks are all completed but that lack a final result."""

        task_of_workflow = col(TaskRow.workflow_id) == col(WorkflowRow.workflow_id)
        with Session(self.engine) as session:
            rows = session.exec(
                select(WorkflowRow.workflow_id)
                .where(
                    col(WorkflowRow.final_result).is_(None),
                    exists().where(task_of_workflow),
                    ~exists().where(
                        task_of_workflow,
                        col(TaskRow.status) != TaskStatus.COMPLETED.value,
                    ),
                )
                .order_by(col(WorkflowRow.created_at).asc()),
            ).all()
        return list(rows)

    def mark_workflow_running(self, workflow_id: str) -> bool:
        """Move a pending workflow to running; no-op for any other state."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(WorkflowRow)
                .where(
                    col(WorkflowRow.workflow_id) == workflow_id,
                    col(WorkflowRow.status) == WorkflowStatus.PENDING.value,
                )
                .values(status=WorkflowStatus.RUNNING.value, updated_at=now),
            )
            session.commit()
            return result.rowcount == 1

    def save_workflow_final(
        self,
        *,
        workflow_id: str,
        status: WorkflowStatus,
        final_result: str,
    ) -> bool:
        """Persist the aggregated final result; applies only once per workflow."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(WorkflowRow)
                .where(
                    col(WorkflowRow.workflow_id) == workflow_id,
                    col(WorkflowRow.final_result).is_(None),
                )
                .values(
                    status=status.value,
                    final_result=final_result,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def requeue_task(self, *, task_id: str) -> None:
        """Operator re-queue of a failed task."""

        with Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
        if row is None:
            raise RuntimeError(f"Task not found: {task_id}")
        if row.status != TaskStatus.FAILED.value:
            raise RuntimeError(f"Only failed tasks can be re-queued, got {row.status}.")
        requeued = self.save_task_status(
            task_id=task_id,
            status=TaskStatus.QUEUED,
            expected=TaskStatus.FAILED,
        )
        if not requeued:
            raise RuntimeError(
                "Task state changed concurrently while re-queuing; "
                f"please retry command (task_id={task_id}).",
            )
        logger.info("Task %s re-queued by operator", task_id)


def _check_transition(*, task_id: str, previous: TaskStatus, status: TaskStatus) -> None:
    if status not in TASK_TRANSITIONS[previous]:
        raise ValueError(
            f"Illegal task transition for {task_id}: {previous.value} -> {status.value}",
        )


def _to_task_view(row: TaskRow) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        workflow_id=row.workflow_id,
        client_id=row.client_id,
        task_type=row.task_type,
        step_number=row.step_number,
        dependencies=row.dependencies,
        status=TaskStatus(row.status),
        geo_json=row.geo_json,
        error_summary=row.error_summary,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        finished_at=(
            to_utc_aware_datetime(row.finished_at) if row.finished_at is not None else None
        ),
    )


def _to_workflow_view(row: WorkflowRow) -> WorkflowView:
    return WorkflowView(
        workflow_id=row.workflow_id,
        client_id=row.client_id,
        name=row.name,
        status=WorkflowStatus(row.status),
        final_result=row.final_result,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
    )
