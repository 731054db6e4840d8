"""SQLModel ORM tables for workflow storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class WorkflowRow(SQLModel, table=True):
    __tablename__ = "workflows"  # type: ignore[bad-override]

    workflow_id: str = Field(primary_key=True)
    client_id: str = Field(index=True)
    name: str | None = None
    status: str = Field(index=True)
    final_result: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_tasks_workflow_type_status", "workflow_id", "task_type", "status"),
    )

    task_id: str = Field(primary_key=True)
    workflow_id: str = Field(
        sa_column=Column(
            ForeignKey("workflows.workflow_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    client_id: str
    task_type: str = Field(index=True)
    step_number: int
    dependencies: str | None = None
    status: str = Field(index=True)
    geo_json: str = Field(sa_column=Column(Text, nullable=False))
    error_summary: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class ResultRow(SQLModel, table=True):
    __tablename__ = "results"  # type: ignore[bad-override]
    __table_args__ = (UniqueConstraint("task_id", name="uq_results_task_id"),)

    result_id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    data: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
