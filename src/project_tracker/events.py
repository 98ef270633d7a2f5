"""Synchronous publish/subscribe channel for tracker events."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .models import Activity

logger = logging.getLogger(__name__)


class EventKind(enum.Enum):
    PROJECT_CHANGED = "project_changed"
    ACTIVITY_STARTED = "activity_started"
    ACTIVITY_STOPPED = "activity_stopped"
    PROJECT_ADDED = "project_added"
    PROJECT_REMOVED = "project_removed"
    ACTIVITY_ADDED = "activity_added"
    ACTIVITY_REMOVED = "activity_removed"
    ACTIVITY_CHANGED = "activity_changed"
    FILTER_CHANGED = "filter_changed"
    DATA_CHANGED = "data_changed"
    START_TIME_CHANGED = "start_time_changed"
    STOPWATCH_VISIBILITY_CHANGED = "stopwatch_visibility_changed"
    USER_IS_INACTIVE = "user_is_inactive"

    @property
    def can_be_undone(self) -> bool:
        return self in (EventKind.ACTIVITY_ADDED, EventKind.ACTIVITY_REMOVED)


@dataclass(frozen=True, slots=True)
class FieldChange:
    """Old and new value of a single changed field."""

    field: str
    old: Any
    new: Any


@dataclass(frozen=True, slots=True)
class Event:
    """A published event.

    The payload depends on the kind: a project for ``PROJECT_*``, a tuple of
    activities for ``ACTIVITY_ADDED``/``ACTIVITY_REMOVED``, a single activity
    for ``ACTIVITY_CHANGED``, the filter for ``FILTER_CHANGED`` and a
    datetime for ``START_TIME_CHANGED`` and ``USER_IS_INACTIVE``.
    """

    kind: EventKind
    payload: Any = None
    source: Any = None
    change: Optional[FieldChange] = None

    @property
    def activities(self) -> tuple[Activity, ...]:
        if self.kind in (EventKind.ACTIVITY_ADDED, EventKind.ACTIVITY_REMOVED):
            return tuple(self.payload)
        if self.kind is EventKind.ACTIVITY_CHANGED:
            return (self.payload,)
        return ()

    def __str__(self) -> str:
        return f"Event(kind={self.kind.name}, payload={self.payload!r})"


Handler = Callable[[Event], None]


class EventBus:
    """Delivers events to subscribers in registration order.

    Publishing happens on the caller's control flow. A handler may publish
    again; the nested event is delivered completely before the outer
    delivery resumes.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[Handler, frozenset[EventKind]]] = []

    def subscribe(self, handler: Handler, *kinds: EventKind) -> Callable[[], None]:
        """Register ``handler`` for ``kinds`` (every kind when none given)."""
        entry = (handler, frozenset(kinds or EventKind))
        self._subscriptions.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscriptions:
                self._subscriptions.remove(entry)

        return unsubscribe

    def publish(self, event: Event) -> None:
        logger.debug("Sending event notification for %s.", event)
        for handler, kinds in list(self._subscriptions):
            if event.kind in kinds:
                handler(event)

    def __len__(self) -> int:
        return len(self._subscriptions)
