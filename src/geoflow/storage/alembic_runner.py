"""Programmatic access to the Alembic migrations of the workflow database."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import create_engine

from geoflow.storage.common import sqlite_url

logger = logging.getLogger(__name__)

# src/geoflow/storage -> project root holding alembic.ini and alembic/
PROJECT_ROOT = Path(__file__).resolve().parents[3]


def _alembic_config(db_path: Path) -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", sqlite_url(db_path))
    return config


def upgrade_head(db_path: Path) -> None:
    """Bring the database at ``db_path`` to the latest schema revision."""

    db_path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("Applying workflow schema migrations to %s", db_path)
    command.upgrade(_alembic_config(db_path), "head")


def current_revision(db_path: Path) -> str | None:
    """Revision the database is stamped with, or None before the first upgrade."""

    engine = create_engine(sqlite_url(db_path))
    try:
        with engine.connect() as connection:
            return MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()
