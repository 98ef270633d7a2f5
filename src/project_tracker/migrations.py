"""Versioned schema migrations.

Each migration carries a version number and the statements that bring the
schema from ``version - 1`` to ``version``. Startup applies every pending
migration in ascending order inside a single transaction and records each
one in ``db_version``; either all of them land or none do.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from .errors import MigrationFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    description: str
    statements: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        1,
        "Initial schema",
        (
            """
            CREATE TABLE db_version (
                version INTEGER PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE projects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                active INTEGER NOT NULL DEFAULT 1
            )
            """,
            """
            CREATE TABLE activities (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER NOT NULL
                    REFERENCES projects(id) ON DELETE CASCADE,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT ''
            )
            """,
        ),
    ),
    Migration(
        2,
        "Persist tracker settings",
        (
            """
            CREATE TABLE settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
            """,
        ),
    ),
    Migration(
        3,
        "Index activities by start time",
        (
            "CREATE INDEX idx_activities_start_time ON activities(start_time)",
            "CREATE INDEX idx_activities_project ON activities(project_id)",
        ),
    ),
)

LATEST_VERSION = MIGRATIONS[-1].version


def schema_exists(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'db_version'"
    ).fetchone()
    return row is not None


def current_schema_version(conn: sqlite3.Connection) -> int:
    """Return the applied schema version, ``0`` when no schema exists yet."""
    if not schema_exists(conn):
        return 0
    row = conn.execute("SELECT MAX(version) FROM db_version").fetchone()
    return int(row[0] or 0)


def upgrade_schema(
    conn: sqlite3.Connection,
    migrations: Sequence[Migration] = MIGRATIONS,
) -> int:
    """Apply pending migrations and return the resulting schema version.

    The connection must be in autocommit mode (``isolation_level=None``) so
    the explicit transaction below spans every statement.
    """
    try:
        current = current_schema_version(conn)
    except sqlite3.Error as exc:
        raise MigrationFailure(f"Could not read schema version: {exc}") from exc

    ordered = sorted(migrations, key=lambda migration: migration.version)
    pending = [migration for migration in ordered if migration.version > current]
    if not pending:
        logger.debug("Schema is up to date at version %d.", current)
        return current

    expected = list(range(current + 1, current + 1 + len(pending)))
    found = [migration.version for migration in pending]
    if found != expected:
        raise MigrationFailure(
            f"Migrations must be contiguous after version {current}; found {found}"
        )

    if current == 0:
        logger.info("Creating tracker database.")
    migration = pending[0]
    conn.execute("BEGIN")
    try:
        for migration in pending:
            logger.info(
                "Updating database to version %d (%s).",
                migration.version,
                migration.description,
            )
            for statement in migration.statements:
                conn.execute(statement)
            conn.execute(
                "INSERT INTO db_version (version, description, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.description, datetime.now().isoformat()),
            )
        conn.execute("COMMIT")
    except sqlite3.Error as exc:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise MigrationFailure(
            f"Migration to version {migration.version} failed: {exc}"
        ) from exc

    version = pending[-1].version
    logger.info("Using tracker DB version %d.", version)
    return version
