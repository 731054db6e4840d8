"""Dependency-aware workflow runner for geospatial analysis tasks."""

__version__ = "0.1.0"
