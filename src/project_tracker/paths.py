"""Where the tracker keeps its database and log file."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from platformdirs import PlatformDirs

APP_NAME = "ProjectTracker"

_DIRS = PlatformDirs(appname=APP_NAME, appauthor=False, roaming=True)


def _ensure(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    return _ensure(Path(_DIRS.user_data_path))


def get_log_dir() -> Path:
    return _ensure(Path(_DIRS.user_log_path))


def get_db_path() -> Path:
    return get_data_dir() / "tracker.sqlite3"


def get_log_path() -> Path:
    return get_log_dir() / "tracker.log"


def resolve_db_path(db_path: Optional[Union[Path, str]] = None) -> Path:
    """Return ``db_path`` if given, creating its parent, else the default location."""
    if db_path is None:
        return get_db_path()
    path = Path(db_path)
    _ensure(path.parent)
    return path
