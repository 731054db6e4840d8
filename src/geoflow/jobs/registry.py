"""Mapping from task type to job implementation."""

from __future__ import annotations

from geoflow.engine.errors import UnknownTaskTypeError
from geoflow.jobs.base import Job
from geoflow.jobs.polygon_area import PolygonAreaJob
from geoflow.jobs.report import ReportGenerationJob

POLYGON_AREA_TASK_TYPE = "polygonArea"
REPORT_GENERATION_TASK_TYPE = "reportGeneration"


class JobRegistry:
    """Explicit task-type -> job lookup; unknown types fail fast."""

    def __init__(self, jobs: dict[str, Job] | None = None) -> None:
        self._jobs: dict[str, Job] = {}
        for task_type, job in (jobs or {}).items():
            self.register(task_type, job)

    def register(self, task_type: str, job: Job) -> None:
        normalized = task_type.strip()
        if not normalized:
            raise ValueError("Task type must be a non-empty string.")
        if normalized in self._jobs:
            raise ValueError(f"Job already registered for task type: {normalized!r}")
        self._jobs[normalized] = job

    def get(self, task_type: str) -> Job:
        try:
            return self._jobs[task_type]
        except KeyError:
            raise UnknownTaskTypeError(task_type) from None

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._jobs

    @property
    def task_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._jobs))


def default_job_registry() -> JobRegistry:
    """Registry with the built-in job variants."""

    return JobRegistry(
        {
            POLYGON_AREA_TASK_TYPE: PolygonAreaJob(),
            REPORT_GENERATION_TASK_TYPE: ReportGenerationJob(),
        },
    )
