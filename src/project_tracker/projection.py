"""Sorted, filtered views derived from the tracker's id-keyed store."""

from __future__ import annotations

import itertools
import logging
from bisect import bisect_left, bisect_right
from typing import Any, Callable, Generic, Iterable, Iterator, Optional, TypeVar

from .events import Event, EventBus, EventKind, FieldChange
from .filters import Filter, matches
from .models import Activity, Project

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SortedView(Generic[T]):
    """A list kept ordered by ``key``; insertion order breaks ties.

    Sort keys are captured when an item is inserted, so an item mutated in
    place keeps its old position until :meth:`reposition` is called.
    """

    def __init__(self, key: Callable[[T], Any]) -> None:
        self._key = key
        self._keys: list[tuple[Any, int]] = []
        self._items: list[T] = []
        self._entries: dict[T, tuple[Any, int]] = {}
        self._counter = itertools.count()

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item: object) -> bool:
        return item in self._entries

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __repr__(self) -> str:
        return f"SortedView({self._items!r})"

    def insert(self, item: T) -> bool:
        if item in self._entries:
            return False
        self._place(item, next(self._counter))
        return True

    def remove(self, item: T) -> bool:
        if item not in self._entries:
            return False
        self._take(item)
        return True

    def reposition(self, item: T) -> bool:
        """Re-sort ``item`` after its key changed; returns False if absent."""
        if item not in self._entries:
            return False
        _, seq = self._take(item)
        self._place(item, seq)
        return True

    def reset(self, items: Iterable[T]) -> None:
        self._keys.clear()
        self._items.clear()
        self._entries.clear()
        for item in items:
            self.insert(item)

    def _place(self, item: T, seq: int) -> None:
        entry = (self._key(item), seq)
        index = bisect_right(self._keys, entry)
        self._keys.insert(index, entry)
        self._items.insert(index, item)
        self._entries[item] = entry

    def _take(self, item: T) -> tuple[Any, int]:
        entry = self._entries.pop(item)
        index = bisect_left(self._keys, entry)
        del self._keys[index]
        del self._items[index]
        return entry


def _project_key(project: Project) -> str:
    return project.title.casefold()


def _activity_key(activity: Activity) -> Any:
    return activity.start


class FilteredProjection:
    """Projects and activities of the store plus three derived views.

    ``active_projects`` and ``all_projects`` are ordered by title,
    ``activities`` holds the activities matching the current filter ordered
    by start time. All mutators are idempotent per id so a change applied
    directly and again through its event lands only once.
    """

    def __init__(self, filter: Optional[Filter] = None) -> None:
        self._filter = filter
        self._projects: dict[int, Project] = {}
        self._activities: dict[int, Activity] = {}
        self.active_projects: SortedView[Project] = SortedView(_project_key)
        self.all_projects: SortedView[Project] = SortedView(_project_key)
        self.activities: SortedView[Activity] = SortedView(_activity_key)

    @property
    def filter(self) -> Optional[Filter]:
        return self._filter

    @property
    def projects(self) -> dict[int, Project]:
        return dict(self._projects)

    def all_activities(self) -> list[Activity]:
        return sorted(self._activities.values(), key=lambda activity: (activity.start, activity.id))

    def find_activity(self, activity_id: int) -> Optional[Activity]:
        return self._activities.get(activity_id)

    def find_project(self, project_id: int) -> Optional[Project]:
        return self._projects.get(project_id)

    def load(self, projects: Iterable[Project], activities: Iterable[Activity]) -> None:
        """Replace the store with ``projects`` and ``activities``."""
        self._projects = {project.id: project for project in projects}
        self._activities = {activity.id: activity for activity in activities}
        self.all_projects.reset(self._projects.values())
        self.active_projects.reset(
            project for project in self._projects.values() if project.active
        )
        self._apply_filter()
        logger.debug(
            "Loaded %d projects and %d activities.",
            len(self._projects),
            len(self._activities),
        )

    def set_filter(self, filter: Optional[Filter]) -> bool:
        if filter == self._filter:
            return False
        self._filter = filter
        self._apply_filter()
        return True

    def _apply_filter(self) -> None:
        logger.debug("Applying filter %s to activities.", self._filter)
        self.activities.reset(
            activity
            for activity in self._activities.values()
            if matches(self._filter, activity)
        )

    def add_activities(self, activities: Iterable[Activity]) -> None:
        for activity in activities:
            self._activities[activity.id] = activity
            if matches(self._filter, activity):
                self.activities.insert(activity)

    def remove_activities(self, activities: Iterable[Activity]) -> None:
        for activity in activities:
            self._activities.pop(activity.id, None)
            self.activities.remove(activity)

    def refresh_activity(self, activity: Activity) -> None:
        """Re-evaluate filter membership and position of a changed activity."""
        self._activities[activity.id] = activity
        matched = matches(self._filter, activity)
        if activity in self.activities:
            if matched:
                self.activities.reposition(activity)
            else:
                self.activities.remove(activity)
        elif matched:
            self.activities.insert(activity)

    def add_project(self, project: Project) -> None:
        self._projects[project.id] = project
        self.all_projects.insert(project)
        if project.active:
            self.active_projects.insert(project)

    def remove_project(self, project: Project) -> None:
        self._projects.pop(project.id, None)
        self.all_projects.remove(project)
        self.active_projects.remove(project)
        self.remove_activities(
            [activity for activity in self._activities.values() if activity.project == project]
        )

    def refresh_project(self, project: Project, change: Optional[FieldChange] = None) -> None:
        """Restore view order and membership after a project field changed."""
        self._projects[project.id] = project
        if change is not None and change.field == "title":
            self.all_projects.reposition(project)
            self.active_projects.reposition(project)
        elif change is not None and change.field == "active":
            if project.active:
                self.active_projects.insert(project)
            else:
                self.active_projects.remove(project)

    def bind(self, bus: EventBus) -> None:
        bus.subscribe(
            self._on_event,
            EventKind.ACTIVITY_ADDED,
            EventKind.ACTIVITY_REMOVED,
            EventKind.ACTIVITY_CHANGED,
            EventKind.PROJECT_ADDED,
            EventKind.PROJECT_REMOVED,
            EventKind.PROJECT_CHANGED,
            EventKind.FILTER_CHANGED,
        )

    def _on_event(self, event: Event) -> None:
        kind = event.kind
        if kind is EventKind.ACTIVITY_ADDED:
            self.add_activities(event.activities)
        elif kind is EventKind.ACTIVITY_REMOVED:
            self.remove_activities(event.activities)
        elif kind is EventKind.ACTIVITY_CHANGED:
            self.refresh_activity(event.payload)
        elif kind is EventKind.PROJECT_ADDED:
            self.add_project(event.payload)
        elif kind is EventKind.PROJECT_REMOVED:
            self.remove_project(event.payload)
        elif kind is EventKind.PROJECT_CHANGED:
            if event.change is not None and event.payload is not None:
                self.refresh_project(event.payload, event.change)
        elif kind is EventKind.FILTER_CHANGED:
            self.set_filter(event.payload)
