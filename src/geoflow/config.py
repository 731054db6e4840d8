"""Runtime configuration for the workflow engine, CLI and read API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class SchedulerSettings:
    """Scheduler loop settings."""

    poll_interval_seconds: float = 5.0


@dataclass(slots=True)
class ApiSettings:
    """Read API server settings."""

    host: str = "127.0.0.1"
    port: int = 8000


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".geoflow.db")
    sqlite_busy_timeout_ms: int = 5000
    log_level: str = "INFO"
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    api: ApiSettings = field(default_factory=ApiSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("GEOFLOW_DB_PATH", ".geoflow.db")),
            sqlite_busy_timeout_ms=int(os.getenv("GEOFLOW_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("GEOFLOW_LOG_LEVEL", "INFO").strip().upper(),
            scheduler=SchedulerSettings(
                poll_interval_seconds=float(os.getenv("GEOFLOW_POLL_INTERVAL_SECONDS", "5.0")),
            ),
            api=ApiSettings(
                host=os.getenv("GEOFLOW_API_HOST", "127.0.0.1"),
                port=int(os.getenv("GEOFLOW_API_PORT", "8000")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.scheduler.poll_interval_seconds < 0:
            raise ValueError("GEOFLOW_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("GEOFLOW_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if not 0 < self.api.port < 65536:
            raise ValueError(f"GEOFLOW_API_PORT must be in 1..65535, got {self.api.port}.")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid GEOFLOW_LOG_LEVEL: {self.log_level!r}")
