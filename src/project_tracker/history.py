"""Undo/redo of activity additions and removals."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Iterator, Optional

from .errors import NothingToUndo
from .events import Event, EventBus, EventKind
from .models import Activity, Project

if TYPE_CHECKING:
    from .controller import ActivityController

logger = logging.getLogger(__name__)

_VERBS = {
    EventKind.ACTIVITY_ADDED: "add",
    EventKind.ACTIVITY_REMOVED: "remove",
}


@dataclass(frozen=True, slots=True)
class EditRecord:
    """A reversible add or remove of a batch of activities."""

    kind: EventKind
    activities: tuple[Activity, ...]

    def __post_init__(self) -> None:
        if not self.kind.can_be_undone:
            raise ValueError(f"{self.kind.name} cannot be undone")

    def inverted(self) -> "EditRecord":
        kind = (
            EventKind.ACTIVITY_REMOVED
            if self.kind is EventKind.ACTIVITY_ADDED
            else EventKind.ACTIVITY_ADDED
        )
        return EditRecord(kind, self.activities)

    def describe(self, action: str) -> str:
        verb = _VERBS[self.kind]
        if len(self.activities) == 1:
            return f"{action} {verb} activity {self.activities[0]}"
        return f"{action} {verb} {len(self.activities)} activities"


class EditHistory:
    """Bounded undo stack plus redo stack fed by activity events.

    Undoing pushes the inverse record on the redo stack; redoing inverts it
    back. Edits made by undo/redo themselves are not recorded, any other
    edit clears the redo stack.
    """

    def __init__(self, controller: "ActivityController", limit: int = 50) -> None:
        self._controller = controller
        self._undo: deque[EditRecord] = deque(maxlen=limit)
        self._redo: list[EditRecord] = []
        self._replaying = False

    def bind(self, bus: EventBus) -> None:
        bus.subscribe(self._on_event, EventKind.ACTIVITY_ADDED, EventKind.ACTIVITY_REMOVED)
        bus.subscribe(self._on_project_removed, EventKind.PROJECT_REMOVED)

    def _on_project_removed(self, event: Event) -> None:
        self.forget_project(event.payload)

    def _on_event(self, event: Event) -> None:
        if self._replaying or not event.activities:
            return
        self._undo.append(EditRecord(event.kind, event.activities))
        self._redo.clear()

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_text(self) -> Optional[str]:
        if not self._undo:
            return None
        return self._undo[-1].describe("Undo")

    @property
    def redo_text(self) -> Optional[str]:
        if not self._redo:
            return None
        return self._redo[-1].inverted().describe("Redo")

    def undo(self) -> EditRecord:
        if not self._undo:
            raise NothingToUndo("Nothing to undo.")
        record = self._undo.pop()
        inverse = record.inverted()
        try:
            self._apply(inverse)
        except Exception:
            self._undo.append(record)
            raise
        self._redo.append(inverse)
        logger.debug("Undid %s of %d activities.", _VERBS[record.kind], len(record.activities))
        return record

    def redo(self) -> EditRecord:
        if not self._redo:
            raise NothingToUndo("Nothing to redo.")
        inverse = self._redo.pop()
        record = inverse.inverted()
        try:
            self._apply(record)
        except Exception:
            self._redo.append(inverse)
            raise
        self._undo.append(record)
        logger.debug("Redid %s of %d activities.", _VERBS[record.kind], len(record.activities))
        return record

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    def forget_project(self, project: Project) -> None:
        """Drop the activities of a deleted project from every record.

        Records left without activities are discarded.
        """
        self._undo = deque(_without_project(self._undo, project), maxlen=self._undo.maxlen)
        self._redo = list(_without_project(self._redo, project))

    def _apply(self, record: EditRecord) -> None:
        self._replaying = True
        try:
            if record.kind is EventKind.ACTIVITY_ADDED:
                self._controller.add_activities(record.activities, source=self)
            else:
                self._controller.remove_activities(record.activities, source=self)
        finally:
            self._replaying = False


def _without_project(records: Iterable[EditRecord], project: Project) -> Iterator[EditRecord]:
    for record in records:
        kept = tuple(activity for activity in record.activities if activity.project != project)
        if len(kept) == len(record.activities):
            yield record
        elif kept:
            yield EditRecord(record.kind, kept)
