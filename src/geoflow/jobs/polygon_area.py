"""Geodesic area of a GeoJSON polygon feature."""

from __future__ import annotations

import json
import logging

from pyproj import Geod
from shapely.errors import GEOSException
from shapely.geometry import Polygon, shape

from geoflow.engine.errors import JobError
from geoflow.jobs.base import JobContext

logger = logging.getLogger(__name__)

_WGS84 = Geod(ellps="WGS84")


class PolygonAreaJob:
    """Compute the area in square meters of the task's polygon feature."""

    def run(self, context: JobContext) -> str:
        task = context.task
        logger.info("Running polygon area for task %s", task.task_id)
        polygon = parse_polygon_feature(task.geo_json, task_id=task.task_id)
        try:
            signed_area, _ = _WGS84.geometry_area_perimeter(polygon)
        except (ValueError, TypeError, GEOSException) as error:
            raise JobError("Error calculating area", task_id=task.task_id) from error

        # Sign follows ring orientation.
        area = abs(signed_area)
        logger.info("Calculated area in square meters: %s", area)
        return str(area)


def parse_polygon_feature(payload: str, *, task_id: str | None = None) -> Polygon:
    """Parse a GeoJSON Feature<Polygon> (or bare Polygon geometry)."""

    try:
        raw = json.loads(payload)
    except (json.JSONDecodeError, TypeError) as error:
        raise JobError(f"GeoJSON payload is not valid JSON: {error}", task_id=task_id) from error
    if not isinstance(raw, dict):
        raise JobError("GeoJSON payload must be an object", task_id=task_id)

    geometry = raw.get("geometry") if raw.get("type") == "Feature" else raw
    if not isinstance(geometry, dict) or geometry.get("type") != "Polygon":
        found = geometry.get("type") if isinstance(geometry, dict) else type(geometry).__name__
        raise JobError(f"Expected a Polygon feature, got {found}", task_id=task_id)

    try:
        polygon = shape(geometry)
    except (KeyError, ValueError, TypeError, IndexError, GEOSException) as error:
        raise JobError(f"Invalid polygon coordinates: {error}", task_id=task_id) from error
    if not isinstance(polygon, Polygon) or polygon.is_empty:
        raise JobError("Polygon geometry is empty", task_id=task_id)
    return polygon
