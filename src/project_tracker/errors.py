"""Exception hierarchy for the tracker core."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for every error raised by the tracker."""


class InvalidTransition(TrackerError):
    """The requested start/stop is not allowed in the current tracking state."""


class InvalidTimestamp(TrackerError):
    """A timestamp lies in the future or before the open interval."""


class MigrationFailure(TrackerError):
    """Creating or upgrading the database schema failed."""


class PersistenceFailure(TrackerError):
    """A read or write against the persistence gateway failed."""


class NothingToUndo(TrackerError):
    """Undo or redo was requested with an empty history."""
