"""Datastore schema migrations.

Alembic drives the migration scripts shipped in ``packages/fga/migrations``.
The migration trigger fires only when a readiness probe reports
``ReadinessReason.SCHEMA_MISSING``; upgrading an already-migrated
datastore is a no-op.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory

from packages.fga.errors import MigrationFailedError
from packages.fga.models import ReadinessReason, ReadinessReport

logger = logging.getLogger(__name__)

MIGRATIONS_PATH = Path(__file__).parent / "migrations"

SUPPORTED_ENGINES = ("sqlite", "postgresql", "mysql")

# Separate from any host application's alembic_version table
VERSION_TABLE = "fga_alembic_version"


def alembic_config(uri: str | None = None) -> Config:
    """Build an in-memory alembic config pointing at the bundled scripts."""
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_PATH))
    if uri:
        # ConfigParser interpolation
        config.set_main_option("sqlalchemy.url", uri.replace("%", "%%"))
    return config


def required_revision(target_version: str = "head") -> str:
    """Resolve a target (``head`` or a revision id) to a concrete revision."""
    script = ScriptDirectory.from_config(alembic_config())
    if target_version == "head":
        return script.get_current_head()
    return script.get_revision(target_version).revision


def revision_satisfies(current: str | None, required: str) -> bool:
    """Whether a datastore at ``current`` already includes ``required``."""
    if current is None:
        return False
    script = ScriptDirectory.from_config(alembic_config())
    return any(rev.revision == required for rev in script.iterate_revisions(current, "base"))


def run_migrations(engine_kind: str, uri: str, target_version: str = "head") -> None:
    """Upgrade the datastore at ``uri`` to ``target_version``.

    Args:
        engine_kind: SQLAlchemy dialect name of the datastore
        uri: SQLAlchemy URL of the datastore
        target_version: Alembic revision id or ``head``
    """
    if engine_kind not in SUPPORTED_ENGINES:
        raise ValueError(f"unsupported datastore engine {engine_kind!r}")

    logger.info("Running %s datastore migrations to %s", engine_kind, target_version)
    command.upgrade(alembic_config(uri), target_version)
    logger.info("Datastore migrations completed")


def maybe_migrate(report: ReadinessReport, run_migration: Callable[[], None]) -> bool:
    """Run ``run_migration`` if the report says the schema is missing.

    Returns:
        True if a migration was run, False otherwise

    Raises:
        MigrationFailedError: If the migration raised. Not retried.
    """
    if report.is_ready or report.reason is not ReadinessReason.SCHEMA_MISSING:
        return False

    logger.warning("%s, running them now", report.message or "datastore requires migrations")
    try:
        run_migration()
    except Exception as e:
        raise MigrationFailedError(str(e)) from e
    return True
