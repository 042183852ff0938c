"""Apply the Alembic-style migration modules in this directory.

Each ``NNN_*.py`` module exposes ``upgrade()`` written against ``alembic.op``.
The runner installs an :class:`alembic.operations.Operations` context for the
target connection and records applied ids in
``app_python_migrations`` so repeated runs are no-ops.
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path

import sqlalchemy as sa
from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent

_applied = sa.Table(
    "app_python_migrations",
    sa.MetaData(),
    sa.Column("id", sa.String(length=255), primary_key=True),
    sa.Column(
        "applied_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    ),
)


def migration_ids(migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    return sorted(
        path.stem
        for path in migrations_dir.glob("[0-9][0-9][0-9]_*.py")
        if path.is_file()
    )


def run_migrations(engine: sa.Engine, migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """Apply pending migrations in order and return the ids that ran."""

    _applied.create(engine, checkfirst=True)
    with engine.connect() as conn:
        done = set(conn.scalars(sa.select(_applied.c.id)))

    ran: list[str] = []
    for migration_id in migration_ids(migrations_dir):
        if migration_id in done:
            continue
        module = importlib.import_module(f"app.migrations.{migration_id}")
        upgrade = getattr(module, "upgrade", None)
        if upgrade is None:
            continue

        with engine.begin() as conn:
            with Operations.context(MigrationContext.configure(conn)):
                upgrade()
            conn.execute(sa.insert(_applied).values(id=migration_id))
        logger.info("Applied migration %s", migration_id)
        ran.append(migration_id)
    return ran


__all__ = ["MIGRATIONS_DIR", "migration_ids", "run_migrations"]
