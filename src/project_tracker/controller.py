"""The tracking state machine and every mutation of tracked data."""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from .config import TrackerSettings
from .db import Gateway
from .errors import InvalidTimestamp, InvalidTransition
from .events import Event, EventBus, EventKind, FieldChange
from .filters import Filter
from .history import EditHistory, EditRecord
from .models import Activity, Project, check_interval, naive_local, next_midnight
from .normalization import normalize_description, normalize_title
from .projection import FilteredProjection

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass(slots=True)
class TrackingState:
    """The single open interval, if any."""

    active: bool = False
    start: Optional[datetime] = None
    selected_project: Optional[Project] = None
    description: str = ""


def split_interval(start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
    """Cut ``[start, end)`` at every midnight in between.

    The pieces are contiguous, each lies within one calendar day and
    together they cover exactly ``[start, end)``. An empty interval yields
    no pieces.
    """
    pieces: list[tuple[datetime, datetime]] = []
    cursor = start
    while cursor < end:
        boundary = min(next_midnight(cursor), end)
        pieces.append((cursor, boundary))
        cursor = boundary
    return pieces


class ActivityController:
    """Owns the tracking state and applies every change to tracked data.

    Each mutation is persisted through the gateway first, then applied to
    the projection and finally announced on the event bus, all while holding
    :attr:`lock`.
    """

    def __init__(
        self,
        gateway: Gateway,
        settings: Optional[TrackerSettings] = None,
        *,
        bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or TrackerSettings()
        self.bus = bus or EventBus()
        self.lock = threading.RLock()
        self._clock = clock or datetime.now
        self.state = TrackingState()
        self.projection = FilteredProjection()
        self.projection.bind(self.bus)
        self.history = EditHistory(self, limit=self.settings.undo_limit)
        self.history.bind(self.bus)
        self.project_admin_allowed = False
        self.stopwatch_visible = True
        self._last_user_activity = self.now()
        self._user_inactive = False

    @classmethod
    def from_gateway(
        cls,
        gateway: Gateway,
        *,
        bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "ActivityController":
        """Create and initialize a controller from the persisted settings."""
        controller = cls(gateway, gateway.load_settings(), bus=bus, clock=clock)
        controller.initialize()
        return controller

    def now(self) -> datetime:
        return self._clock()

    @property
    def active(self) -> bool:
        return self.state.active

    @property
    def start_time(self) -> Optional[datetime]:
        return self.state.start

    @property
    def selected_project(self) -> Optional[Project]:
        return self.state.selected_project

    @property
    def description(self) -> str:
        return self.state.description

    @property
    def filter(self) -> Optional[Filter]:
        return self.projection.filter

    @property
    def activities(self) -> list[Activity]:
        return list(self.projection.activities)

    @property
    def elapsed(self) -> Optional[timedelta]:
        if not self.state.active or self.state.start is None:
            return None
        return self.now() - self.state.start

    def initialize(self) -> None:
        """Restore persisted state and load the store into the projection."""
        with self.lock:
            logger.debug("Initializing the tracker.")
            settings = self.settings
            selected = None
            if settings.selected_project_id is not None:
                selected = self.gateway.find_project_by_id(settings.selected_project_id)
            active = settings.active and settings.start is not None and selected is not None
            if settings.active and not active:
                logger.warning("Discarding inconsistent tracking state %s.", settings)
            self.state = TrackingState(
                active=active,
                start=settings.start if active else None,
                selected_project=selected,
                description=settings.last_description,
            )

            self.project_admin_allowed = self.gateway.is_project_administration_allowed()
            self.projection.set_filter(settings.filter)
            self.projection.load(self.gateway.get_all_projects(), self.gateway.get_activities())

            start = self.state.start
            if self.state.active and start is not None and start.date() < self.now().date():
                logger.info("Closing activity left open since %s.", start)
                try:
                    self.stop()
                except (InvalidTransition, InvalidTimestamp) as exc:
                    logger.warning("Could not close stale activity: %s", exc)

    def _publish(
        self,
        kind: EventKind,
        payload: Any = None,
        *,
        source: Any = None,
        change: Optional[FieldChange] = None,
    ) -> None:
        self.bus.publish(Event(kind, payload, source if source is not None else self, change))

    def _settings_for(self, state: TrackingState, filter: Any = _UNSET) -> TrackerSettings:
        return dataclasses.replace(
            self.settings,
            active=state.active,
            start=state.start,
            selected_project_id=state.selected_project.id if state.selected_project else None,
            last_description=state.description,
            filter=self.settings.filter if filter is _UNSET else filter,
        )

    def _persist(self, state: TrackingState, filter: Any = _UNSET) -> None:
        """Save settings derived from ``state`` and adopt both on success."""
        settings = self._settings_for(state, filter)
        self.gateway.save_settings(settings)
        self.settings = settings
        self.state = state

    def _transition(self, **changes: Any) -> None:
        self._persist(dataclasses.replace(self.state, **changes))

    def _record_interval(
        self,
        start: datetime,
        end: datetime,
        project: Project,
        description: str,
        next_state: TrackingState,
    ) -> list[Activity]:
        """Store the pieces of ``[start, end)`` and move to ``next_state`` in one write."""
        activities = [
            Activity(start=piece_start, end=piece_end, project=project, description=description)
            for piece_start, piece_end in split_interval(start, end)
        ]
        settings = self._settings_for(next_state)
        stored = self.gateway.add_activities(activities, settings=settings)
        self.settings = settings
        self.state = next_state
        self.projection.add_activities(stored)
        return stored

    def start(self, at: Optional[datetime] = None) -> None:
        """Open a new interval for the selected project."""
        with self.lock:
            if self.state.selected_project is None:
                raise InvalidTransition("No project is selected.")
            if self.state.active:
                raise InvalidTransition("An activity is already running.")
            now = self.now()
            start = naive_local(at) if at is not None else now
            if start > now:
                raise InvalidTimestamp("The start time must not be in the future.")

            logger.debug("Starting activity at %s.", start)
            self._transition(active=True, start=start)

            self._publish(EventKind.START_TIME_CHANGED, start)
            self._publish(EventKind.ACTIVITY_STARTED, self.state.selected_project)

    def stop(self, at: Optional[datetime] = None, notify: bool = True) -> list[Activity]:
        """Close the open interval, split at each midnight it crosses.

        Returns the recorded activities in chronological order. With
        ``notify=False`` nothing is published.
        """
        with self.lock:
            if not self.state.active or self.state.start is None:
                raise InvalidTransition("No activity is running.")
            now = self.now()
            end = naive_local(at) if at is not None else now
            if end > now:
                raise InvalidTimestamp("The stop time must not be in the future.")
            start = self.state.start
            if end < start:
                raise InvalidTimestamp("The stop time must not be before the start time.")

            logger.debug("Stopping activity started at %s at %s.", start, end)
            project = self.state.selected_project
            recorded = self._record_interval(
                start,
                end,
                project,
                self.state.description,
                dataclasses.replace(self.state, active=False, start=None, description=""),
            )

            if notify:
                for activity in recorded:
                    self._publish(EventKind.ACTIVITY_ADDED, (activity,))
                self._publish(EventKind.ACTIVITY_STOPPED, project)
            return recorded

    def change_project(self, project: Optional[Project]) -> None:
        """Select ``project``; a running interval is closed and reopened on it."""
        with self.lock:
            if project == self.state.selected_project:
                return
            logger.debug("Changing project to %s.", project)
            previous = self.state.selected_project

            if not self.state.active:
                self._transition(selected_project=project)
            else:
                now = self.now()
                still_active = project is not None
                recorded = self._record_interval(
                    self.state.start,
                    now,
                    previous,
                    self.state.description,
                    dataclasses.replace(
                        self.state,
                        selected_project=project,
                        active=still_active,
                        start=now if still_active else None,
                        description="",
                    ),
                )
                for activity in recorded:
                    self._publish(EventKind.ACTIVITY_ADDED, (activity,))
                if still_active:
                    self._publish(EventKind.START_TIME_CHANGED, now)
                else:
                    self._publish(EventKind.ACTIVITY_STOPPED, previous)

            self._publish(EventKind.PROJECT_CHANGED, project)

    def set_start(self, at: datetime) -> None:
        """Move the start of the running interval."""
        with self.lock:
            if not self.state.active:
                raise InvalidTransition("No activity is running.")
            at = naive_local(at)
            if at > self.now():
                raise InvalidTimestamp("The start time must not be in the future.")
            self._transition(start=at)
            self._publish(EventKind.START_TIME_CHANGED, at)

    def set_description(self, description: str) -> None:
        with self.lock:
            normalized = normalize_description(description)
            if normalized == self.state.description:
                return
            self._transition(description=normalized)

    def set_filter(self, filter: Optional[Filter], source: Any = None) -> None:
        with self.lock:
            if filter == self.projection.filter:
                return
            self._persist(self.state, filter=filter)
            self.projection.set_filter(filter)
            self._publish(EventKind.FILTER_CHANGED, filter, source=source)

    def add_project(self, project: Project, source: Any = None) -> Project:
        with self.lock:
            project.title = normalize_title(project.title)
            logger.debug("Adding project %s.", project)
            stored = self.gateway.add_project(project)
            self.projection.add_project(stored)
            self._publish(EventKind.PROJECT_ADDED, stored, source=source)
            return stored

    def remove_project(self, project: Project, source: Any = None) -> None:
        """Remove ``project`` together with all of its activities."""
        with self.lock:
            if self.state.active and project == self.state.selected_project:
                raise InvalidTransition("Cannot remove the project that is being tracked.")
            logger.debug("Removing project %s.", project)
            self.gateway.remove_project(project)
            if project == self.state.selected_project:
                self._transition(selected_project=None)
            self.projection.remove_project(project)
            self._publish(EventKind.PROJECT_REMOVED, project, source=source)

    def update_project(
        self,
        project: Project,
        *,
        title: Any = _UNSET,
        active: Any = _UNSET,
        description: Any = _UNSET,
        source: Any = None,
    ) -> None:
        """Change fields of ``project``, publishing one event per changed field."""
        changes = {"title": title, "active": active, "description": description}
        if title is not _UNSET:
            changes["title"] = normalize_title(title)
        with self.lock:
            for field, value in changes.items():
                old = getattr(project, field)
                if value is _UNSET or value == old:
                    continue
                setattr(project, field, value)
                try:
                    self.gateway.update_project(project)
                except Exception:
                    setattr(project, field, old)
                    raise
                change = FieldChange(field, old, value)
                self.projection.refresh_project(project, change)
                self._publish(EventKind.PROJECT_CHANGED, project, source=source, change=change)

    def add_activity(self, activity: Activity, source: Any = None) -> Activity:
        return self.add_activities([activity], source=source)[0]

    def add_activities(self, activities: Iterable[Activity], source: Any = None) -> list[Activity]:
        with self.lock:
            stored = self.gateway.add_activities(activities)
            logger.debug("Added %d activities.", len(stored))
            self.projection.add_activities(stored)
            self._publish(EventKind.ACTIVITY_ADDED, tuple(stored), source=source)
            return stored

    def remove_activity(self, activity: Activity, source: Any = None) -> None:
        self.remove_activities([activity], source=source)

    def remove_activities(self, activities: Iterable[Activity], source: Any = None) -> None:
        batch = tuple(activities)
        with self.lock:
            self.gateway.remove_activities(batch)
            logger.debug("Removed %d activities.", len(batch))
            self.projection.remove_activities(batch)
            self._publish(EventKind.ACTIVITY_REMOVED, batch, source=source)

    def update_activity(
        self,
        activity: Activity,
        *,
        start: Any = _UNSET,
        end: Any = _UNSET,
        project: Any = _UNSET,
        description: Any = _UNSET,
        source: Any = None,
    ) -> None:
        """Change fields of ``activity``, publishing one event per changed field.

        Raises ``ValueError`` if the result would not be a valid activity.
        """
        changes = {"start": start, "end": end, "project": project, "description": description}
        if start is not _UNSET:
            changes["start"] = naive_local(start)
        if end is not _UNSET:
            changes["end"] = naive_local(end)
        if description is not _UNSET:
            changes["description"] = normalize_description(description)
        changes = {
            field: value
            for field, value in changes.items()
            if value is not _UNSET and value != getattr(activity, field)
        }
        if not changes:
            return
        check_interval(changes.get("start", activity.start), changes.get("end", activity.end))
        with self.lock:
            old_values = {field: getattr(activity, field) for field in changes}
            for field, value in changes.items():
                setattr(activity, field, value)
            try:
                self.gateway.update_activity(activity)
            except Exception:
                for field, value in old_values.items():
                    setattr(activity, field, value)
                raise
            self.projection.refresh_activity(activity)
            for field, value in changes.items():
                self._publish(
                    EventKind.ACTIVITY_CHANGED,
                    activity,
                    source=source,
                    change=FieldChange(field, old_values[field], value),
                )

    def import_data(self, projects: Iterable[Project], activities: Iterable[Activity]) -> None:
        """Replace all projects and activities, keeping the current filter."""
        with self.lock:
            logger.info("Importing data.")
            self.gateway.replace_data(projects, activities)
            self.projection.load(self.gateway.get_all_projects(), self.gateway.get_activities())
            self.history.clear()

            selected = self.state.selected_project
            if selected is not None and self.projection.find_project(selected.id) is None:
                self._transition(selected_project=None, active=False, start=None)
            self._publish(EventKind.DATA_CHANGED)

    def fire_data_changed(self) -> None:
        with self.lock:
            self._publish(EventKind.DATA_CHANGED)

    def change_stopwatch_visibility(self) -> None:
        with self.lock:
            self.stopwatch_visible = not self.stopwatch_visible
            self._publish(EventKind.STOPWATCH_VISIBILITY_CHANGED, self.stopwatch_visible)

    def undo(self) -> EditRecord:
        with self.lock:
            return self.history.undo()

    def redo(self) -> EditRecord:
        with self.lock:
            return self.history.redo()

    @property
    def user_inactive(self) -> bool:
        return self._user_inactive

    def record_user_activity(self, at: Optional[datetime] = None) -> None:
        """Note that the user was active; ignored once flagged inactive."""
        with self.lock:
            if not self._user_inactive:
                self._last_user_activity = at or self.now()

    def check_inactivity(self, at: Optional[datetime] = None) -> bool:
        """Publish ``USER_IS_INACTIVE`` once the threshold has elapsed.

        Returns True when the event was published by this call.
        """
        with self.lock:
            if self._user_inactive:
                return False
            now = at or self.now()
            if now - self._last_user_activity < self.settings.inactivity_threshold:
                return False
            self._user_inactive = True
            logger.info("User inactive since %s.", self._last_user_activity)
            self._publish(EventKind.USER_IS_INACTIVE, self._last_user_activity)
            return True

    def reset_user_inactivity(self) -> None:
        with self.lock:
            self._last_user_activity = self.now()
            self._user_inactive = False
