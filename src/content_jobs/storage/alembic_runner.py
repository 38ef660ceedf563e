"""Runs the content-jobs Alembic migrations in-process."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def migration_config(db_path: Path) -> Config:
    """Alembic config pointing at the project migrations and `db_path`."""

    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Bring the SQLite database at `db_path` up to the latest revision."""

    db_path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("Upgrading %s to head.", db_path)
    command.upgrade(migration_config(db_path), "head")
