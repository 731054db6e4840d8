"""Job implementations bound to task types."""

from geoflow.jobs.base import Job, JobContext
from geoflow.jobs.polygon_area import PolygonAreaJob
from geoflow.jobs.registry import JobRegistry, default_job_registry
from geoflow.jobs.report import ReportGenerationJob

__all__ = [
    "Job",
    "JobContext",
    "JobRegistry",
    "PolygonAreaJob",
    "ReportGenerationJob",
    "default_job_registry",
]
