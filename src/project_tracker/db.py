"""SQLite persistence gateway for projects, activities and settings."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, Union

from .config import TrackerSettings
from .errors import PersistenceFailure
from .filters import Filter, matches
from .migrations import upgrade_schema
from .models import Activity, Project

logger = logging.getLogger(__name__)

DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"

MEMORY = ":memory:"


class Gateway(Protocol):
    """Operations the tracker core needs from its persistence layer."""

    def add_project(self, project: Project) -> Project: ...

    def add_projects(self, projects: Iterable[Project]) -> list[Project]: ...

    def remove_project(self, project: Project) -> None: ...

    def update_project(self, project: Project) -> None: ...

    def find_project_by_id(self, project_id: int) -> Optional[Project]: ...

    def get_all_projects(self) -> list[Project]: ...

    def is_project_administration_allowed(self) -> bool: ...

    def add_activity(self, activity: Activity) -> Activity: ...

    def add_activities(
        self,
        activities: Iterable[Activity],
        *,
        settings: Optional[TrackerSettings] = None,
    ) -> list[Activity]: ...

    def remove_activities(self, activities: Iterable[Activity]) -> None: ...

    def update_activity(self, activity: Activity) -> None: ...

    def get_activities(self, filter: Optional[Filter] = None) -> list[Activity]: ...

    def clear_data(self) -> None: ...

    def replace_data(
        self, projects: Iterable[Project], activities: Iterable[Activity]
    ) -> None: ...

    def load_settings(self) -> TrackerSettings: ...

    def save_settings(self, settings: TrackerSettings) -> None: ...


def open_database(
    path: Union[Path, str], *, check_same_thread: bool = True
) -> sqlite3.Connection:
    """Open the SQLite database and bring its schema to the latest version."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    enable_foreign_keys(conn)
    try:
        upgrade_schema(conn)
    except Exception:
        conn.close()
        raise
    return conn


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


@contextmanager
def gateway_connection(
    path: Union[Path, str], *, check_same_thread: bool = True
) -> Iterator["SqliteGateway"]:
    gateway = SqliteGateway(open_database(path, check_same_thread=check_same_thread))
    try:
        yield gateway
    finally:
        gateway.close()


def _format(value: datetime) -> str:
    return value.strftime(DATETIME_FMT)


def _parse(value: str) -> datetime:
    return datetime.strptime(value, DATETIME_FMT)


class SqliteGateway:
    """``Gateway`` implementation on top of a single SQLite connection.

    Project rows are hydrated through an identity map so every activity of a
    project shares the same ``Project`` instance.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._projects: dict[int, Project] = {}

    @classmethod
    def open(
        cls, path: Union[Path, str] = MEMORY, *, check_same_thread: bool = True
    ) -> "SqliteGateway":
        return cls(open_database(path, check_same_thread=check_same_thread))

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            self._conn.execute("BEGIN")
            try:
                yield self._conn
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            logger.error("Failed to %s: %s", action, exc)
            raise PersistenceFailure(f"Failed to {action}: {exc}") from exc

    @contextmanager
    def _reading(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
        except sqlite3.Error as exc:
            logger.error("Failed to %s: %s", action, exc)
            raise PersistenceFailure(f"Failed to {action}: {exc}") from exc

    def add_project(self, project: Project) -> Project:
        return self.add_projects([project])[0]

    def add_projects(self, projects: Iterable[Project]) -> list[Project]:
        batch = list(projects)
        with self._transaction("add projects") as conn:
            ids = [_insert_project(conn, project) for project in batch]
        for project, project_id in zip(batch, ids):
            project.id = project_id
            self._projects[project_id] = project
        return batch

    def remove_project(self, project: Project) -> None:
        with self._transaction("remove project") as conn:
            conn.execute("DELETE FROM projects WHERE id = ?", (project.id,))
        self._projects.pop(project.id, None)

    def update_project(self, project: Project) -> None:
        with self._transaction("update project") as conn:
            cur = conn.execute(
                "UPDATE projects SET title = ?, description = ?, active = ? WHERE id = ?",
                (project.title, project.description, 1 if project.active else 0, project.id),
            )
        if cur.rowcount == 0:
            raise PersistenceFailure(f"No project found for id={project.id}")

    def find_project_by_id(self, project_id: int) -> Optional[Project]:
        with self._reading("find project") as conn:
            row = conn.execute(
                "SELECT id, title, description, active FROM projects WHERE id = ?",
                (project_id,),
            ).fetchone()
        return self._project_from_row(row) if row else None

    def get_all_projects(self) -> list[Project]:
        with self._reading("load projects") as conn:
            rows = conn.execute(
                "SELECT id, title, description, active FROM projects ORDER BY id"
            ).fetchall()
        return [self._project_from_row(row) for row in rows]

    def is_project_administration_allowed(self) -> bool:
        return True

    def _project_from_row(self, row: sqlite3.Row) -> Project:
        project = self._projects.get(row["id"])
        if project is None:
            project = Project(
                title=row["title"],
                active=bool(row["active"]),
                description=row["description"],
                id=row["id"],
            )
            self._projects[project.id] = project
        else:
            project.title = row["title"]
            project.active = bool(row["active"])
            project.description = row["description"]
        return project

    def add_activity(self, activity: Activity) -> Activity:
        return self.add_activities([activity])[0]

    def add_activities(
        self,
        activities: Iterable[Activity],
        *,
        settings: Optional[TrackerSettings] = None,
    ) -> list[Activity]:
        """Insert ``activities``; ``settings`` are saved in the same transaction."""
        batch = list(activities)
        with self._transaction("add activities") as conn:
            ids = [_insert_activity(conn, activity) for activity in batch]
            if settings is not None:
                _write_settings(conn, settings)
        for activity, activity_id in zip(batch, ids):
            activity.id = activity_id
        logger.debug("Stored %d activities.", len(batch))
        return batch

    def remove_activities(self, activities: Iterable[Activity]) -> None:
        with self._transaction("remove activities") as conn:
            conn.executemany(
                "DELETE FROM activities WHERE id = ?",
                [(activity.id,) for activity in activities],
            )

    def update_activity(self, activity: Activity) -> None:
        with self._transaction("update activity") as conn:
            cur = conn.execute(
                """
                UPDATE activities
                SET project_id = ?, start_time = ?, end_time = ?, description = ?
                WHERE id = ?
                """,
                (
                    activity.project.id,
                    _format(activity.start),
                    _format(activity.end),
                    activity.description,
                    activity.id,
                ),
            )
        if cur.rowcount == 0:
            raise PersistenceFailure(f"No activity found for id={activity.id}")

    def get_activities(self, filter: Optional[Filter] = None) -> list[Activity]:
        """Return activities matching ``filter`` ordered by start time."""
        clauses: list[str] = []
        params: list[object] = []
        if filter is not None and filter.project_id is not None:
            clauses.append("a.project_id = ?")
            params.append(filter.project_id)
        if filter is not None and filter.start_date is not None:
            clauses.append("a.start_time >= ?")
            params.append(_format(datetime.combine(filter.start_date, datetime.min.time())))
        if filter is not None and filter.end_date is not None:
            clauses.append("a.start_time < ?")
            end = datetime.combine(filter.end_date, datetime.min.time()) + timedelta(days=1)
            params.append(_format(end))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._reading("load activities") as conn:
            rows = conn.execute(
                f"""
                SELECT
                    a.id, a.start_time, a.end_time, a.description,
                    p.id AS project_id, p.title, p.description AS project_description, p.active
                FROM activities a
                JOIN projects p ON p.id = a.project_id
                {where}
                ORDER BY a.start_time, a.id
                """,
                params,
            ).fetchall()

        activities = []
        for row in rows:
            project = self._projects.get(row["project_id"])
            if project is None:
                project = Project(
                    title=row["title"],
                    active=bool(row["active"]),
                    description=row["project_description"],
                    id=row["project_id"],
                )
                self._projects[project.id] = project
            activities.append(
                Activity(
                    start=_parse(row["start_time"]),
                    end=_parse(row["end_time"]),
                    project=project,
                    description=row["description"],
                    id=row["id"],
                )
            )
        return [activity for activity in activities if matches(filter, activity)]

    def clear_data(self) -> None:
        with self._transaction("clear data") as conn:
            conn.execute("DELETE FROM activities")
            conn.execute("DELETE FROM projects")
        self._projects.clear()

    def replace_data(self, projects: Iterable[Project], activities: Iterable[Activity]) -> None:
        """Swap every project and activity for the given ones, all or nothing."""
        project_batch = list(projects)
        activity_batch = list(activities)
        previous_ids = [project.id for project in project_batch]
        try:
            with self._transaction("replace data") as conn:
                conn.execute("DELETE FROM activities")
                conn.execute("DELETE FROM projects")
                for project in project_batch:
                    project.id = _insert_project(conn, project)
                activity_ids = [_insert_activity(conn, activity) for activity in activity_batch]
        except PersistenceFailure:
            for project, project_id in zip(project_batch, previous_ids):
                project.id = project_id
            raise
        self._projects = {project.id: project for project in project_batch}
        for activity, activity_id in zip(activity_batch, activity_ids):
            activity.id = activity_id
        logger.info(
            "Replaced data with %d projects and %d activities.",
            len(project_batch),
            len(activity_batch),
        )

    def load_settings(self) -> TrackerSettings:
        with self._reading("load settings") as conn:
            rows = conn.execute("SELECT key, value FROM settings").fetchall()
        record = {row["key"]: json.loads(row["value"]) for row in rows}
        return TrackerSettings.from_record(record)

    def save_settings(self, settings: TrackerSettings) -> None:
        with self._transaction("save settings") as conn:
            _write_settings(conn, settings)


def _insert_project(conn: sqlite3.Connection, project: Project) -> int:
    return conn.execute(
        "INSERT INTO projects (id, title, description, active) VALUES (?, ?, ?, ?)",
        (project.id, project.title, project.description, 1 if project.active else 0),
    ).lastrowid


def _insert_activity(conn: sqlite3.Connection, activity: Activity) -> int:
    return conn.execute(
        """
        INSERT INTO activities (id, project_id, start_time, end_time, description)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            activity.id,
            activity.project.id,
            _format(activity.start),
            _format(activity.end),
            activity.description,
        ),
    ).lastrowid


def _write_settings(conn: sqlite3.Connection, settings: TrackerSettings) -> None:
    conn.executemany(
        """
        INSERT INTO settings (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        [(key, json.dumps(value)) for key, value in settings.to_record().items()],
    )
