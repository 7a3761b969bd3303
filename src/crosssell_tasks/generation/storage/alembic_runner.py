"""Programmatic Alembic upgrades for the task generation store."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

# src/crosssell_tasks/generation/storage -> repository root
PROJECT_ROOT = Path(__file__).resolve().parents[4]


def alembic_config(db_path: Path) -> Config:
    """Build an Alembic config pointed at the given SQLite file."""

    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    logger.debug("Upgrading task store schema to head: %s", db_path)
    command.upgrade(alembic_config(db_path), "head")
