"""Shared fixtures for tracker tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from project_tracker.controller import ActivityController
from project_tracker.db import SqliteGateway
from project_tracker.events import Event
from project_tracker.models import Project


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list:
        return [event.kind for event in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 2, 9, 0))


@pytest.fixture
def gateway():
    gw = SqliteGateway.open(check_same_thread=False)
    yield gw
    gw.close()


@pytest.fixture
def controller(gateway, clock) -> ActivityController:
    tracker = ActivityController(gateway, clock=clock)
    tracker.initialize()
    return tracker


@pytest.fixture
def project(controller) -> Project:
    return controller.add_project(Project(title="Alpha"))


@pytest.fixture
def events(controller, project) -> EventRecorder:
    recorder = EventRecorder()
    controller.bus.subscribe(recorder)
    return recorder
