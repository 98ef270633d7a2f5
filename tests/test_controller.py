from datetime import datetime, timedelta, timezone

import pytest

from project_tracker.config import TrackerSettings
from project_tracker.controller import ActivityController, split_interval
from project_tracker.errors import InvalidTimestamp, InvalidTransition, PersistenceFailure
from project_tracker.events import EventKind
from project_tracker.filters import Filter
from project_tracker.models import Activity, Project


def test_start_requires_selected_project(controller, events):
    with pytest.raises(InvalidTransition):
        controller.start()
    assert not controller.active
    assert events.events == []


def test_start_twice_is_rejected(controller, project):
    controller.change_project(project)
    controller.start()
    with pytest.raises(InvalidTransition):
        controller.start()
    assert controller.active


def test_stop_without_start_fails_without_side_effects(controller, gateway, events):
    with pytest.raises(InvalidTransition):
        controller.stop()
    assert gateway.get_activities() == []
    assert controller.activities == []
    assert events.events == []


def test_start_publishes_start_events_and_persists(controller, project, gateway, events, clock):
    controller.change_project(project)
    events.clear()
    controller.start(clock.now - timedelta(minutes=30))

    assert controller.active
    assert events.kinds == [EventKind.START_TIME_CHANGED, EventKind.ACTIVITY_STARTED]
    stored = gateway.load_settings()
    assert stored.active is True
    assert stored.start == datetime(2024, 1, 2, 8, 30)
    assert stored.selected_project_id == project.id


def test_stop_same_day_records_single_activity(controller, project, gateway, events, clock):
    controller.change_project(project)
    controller.set_description("  write   report ")
    controller.start(datetime(2024, 1, 2, 8, 0))
    events.clear()

    recorded = controller.stop(datetime(2024, 1, 2, 8, 45))

    assert len(recorded) == 1
    activity = recorded[0]
    assert (activity.start, activity.end) == (datetime(2024, 1, 2, 8, 0), datetime(2024, 1, 2, 8, 45))
    assert activity.description == "write report"
    assert activity.project == project
    assert gateway.get_activities() == recorded
    assert controller.activities == recorded
    assert not controller.active
    assert controller.start_time is None
    assert controller.description == ""
    assert events.kinds == [EventKind.ACTIVITY_ADDED, EventKind.ACTIVITY_STOPPED]


def test_stop_across_midnight_splits_at_midnight(controller, project, events):
    controller.change_project(project)
    controller.set_description("deploy")
    controller.start(datetime(2024, 1, 1, 23, 30))
    events.clear()

    day_one, day_two = controller.stop(datetime(2024, 1, 2, 0, 15))

    assert (day_one.start, day_one.end) == (datetime(2024, 1, 1, 23, 30), datetime(2024, 1, 2, 0, 0))
    assert (day_two.start, day_two.end) == (datetime(2024, 1, 2, 0, 0), datetime(2024, 1, 2, 0, 15))
    assert day_one.project == day_two.project == project
    assert day_one.description == day_two.description == "deploy"
    assert day_one.duration + day_two.duration == timedelta(minutes=45)
    assert events.kinds == [
        EventKind.ACTIVITY_ADDED,
        EventKind.ACTIVITY_ADDED,
        EventKind.ACTIVITY_STOPPED,
    ]
    assert events.events[0].activities == (day_one,)
    assert events.events[1].activities == (day_two,)


def test_stop_spanning_several_days_splits_per_day(controller, project):
    controller.change_project(project)
    controller.start(datetime(2023, 12, 30, 22, 0))

    recorded = controller.stop(datetime(2024, 1, 2, 1, 0))

    assert [(a.start, a.end) for a in recorded] == [
        (datetime(2023, 12, 30, 22, 0), datetime(2023, 12, 31, 0, 0)),
        (datetime(2023, 12, 31, 0, 0), datetime(2024, 1, 1, 0, 0)),
        (datetime(2024, 1, 1, 0, 0), datetime(2024, 1, 2, 0, 0)),
        (datetime(2024, 1, 2, 0, 0), datetime(2024, 1, 2, 1, 0)),
    ]


@pytest.mark.parametrize(
    "start, end",
    [
        (datetime(2024, 1, 1, 23, 30), datetime(2024, 1, 2, 0, 15)),
        (datetime(2024, 1, 1, 0, 0), datetime(2024, 1, 1, 0, 1)),
        (datetime(2024, 2, 28, 12, 0), datetime(2024, 3, 1, 12, 0)),
        (datetime(2024, 1, 1, 5, 0), datetime(2024, 1, 2, 0, 0)),
    ],
)
def test_split_interval_covers_exactly(start, end):
    pieces = split_interval(start, end)

    assert pieces[0][0] == start
    assert pieces[-1][1] == end
    for (_, first_end), (second_start, _) in zip(pieces, pieces[1:]):
        assert first_end == second_start
        assert first_end.time() == datetime.min.time()
    assert sum((b - a for a, b in pieces), timedelta()) == end - start
    for piece_start, piece_end in pieces:
        Activity(start=piece_start, end=piece_end, project=Project("x"))


def test_split_interval_of_empty_interval():
    moment = datetime(2024, 1, 1, 12, 0)
    assert split_interval(moment, moment) == []


def test_stop_in_future_is_rejected(controller, project, clock, events):
    controller.change_project(project)
    controller.start(clock.now - timedelta(hours=1))
    events.clear()

    with pytest.raises(InvalidTimestamp):
        controller.stop(clock.now + timedelta(seconds=1))

    assert controller.active
    assert controller.activities == []
    assert events.events == []


def test_stop_before_start_is_rejected(controller, project, clock):
    controller.change_project(project)
    controller.start(clock.now - timedelta(hours=1))
    with pytest.raises(InvalidTimestamp):
        controller.stop(clock.now - timedelta(hours=2))
    assert controller.active


def test_silent_stop_records_without_events(controller, project, gateway, events, clock):
    controller.change_project(project)
    controller.start(clock.now - timedelta(hours=1))
    events.clear()

    recorded = controller.stop(notify=False)

    assert len(recorded) == 1
    assert controller.activities == recorded
    assert gateway.get_activities() == recorded
    assert not controller.active
    assert events.events == []
    assert not controller.history.can_undo


def test_persistence_failure_leaves_state_and_view_untouched(
    controller, project, gateway, clock, monkeypatch
):
    controller.change_project(project)
    controller.start(clock.now - timedelta(hours=1))

    def fail(activities, settings=None):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(gateway, "add_activities", fail)
    with pytest.raises(PersistenceFailure):
        controller.stop()

    assert controller.active
    assert controller.activities == []


def test_failed_settings_write_stores_no_activity(controller, project, gateway, clock):
    controller.change_project(project)
    controller.start(clock.now - timedelta(hours=1))
    gateway.connection.execute("DROP TABLE settings")

    with pytest.raises(PersistenceFailure):
        controller.stop()

    assert controller.active
    assert gateway.get_activities() == []
    assert controller.activities == []

    gateway.connection.execute("CREATE TABLE settings (key TEXT PRIMARY KEY, value TEXT)")
    controller.stop()
    assert len(gateway.get_activities()) == 1


def test_failed_settings_write_keeps_project_switch_undone(controller, project, gateway, clock):
    beta = controller.add_project(Project(title="Beta"))
    controller.change_project(project)
    started = clock.now - timedelta(hours=1)
    controller.start(started)
    gateway.connection.execute("DROP TABLE settings")

    with pytest.raises(PersistenceFailure):
        controller.change_project(beta)

    assert controller.selected_project == project
    assert controller.start_time == started
    assert gateway.get_activities() == []


def test_start_in_future_is_rejected(controller, project, clock, events):
    controller.change_project(project)
    events.clear()

    with pytest.raises(InvalidTimestamp):
        controller.start(clock.now + timedelta(minutes=1))

    assert not controller.active
    assert events.events == []


def test_timezone_aware_times_are_converted_to_local(controller, project, clock):
    started = clock.now - timedelta(hours=1)
    controller.change_project(project)

    controller.start(started.astimezone(timezone.utc))
    assert controller.start_time == started
    assert controller.start_time.tzinfo is None

    [recorded] = controller.stop(clock.now.astimezone(timezone.utc))
    assert (recorded.start, recorded.end) == (started, clock.now)


def test_change_project_to_same_project_is_noop(controller, project, events, clock):
    controller.change_project(project)
    controller.start(clock.now - timedelta(hours=1))
    events.clear()

    controller.change_project(project)

    assert events.events == []
    assert controller.activities == []
    assert controller.active


def test_change_project_while_idle_only_selects(controller, project, events):
    controller.change_project(project)

    assert controller.selected_project == project
    assert events.kinds == [EventKind.PROJECT_CHANGED]
    assert events.events[0].payload == project
    assert controller.activities == []


def test_change_project_while_tracking_splits_interval(controller, project, events, clock):
    other = controller.add_project(Project(title="Beta"))
    controller.change_project(project)
    controller.set_description("review")
    controller.start(clock.now - timedelta(hours=1))
    events.clear()

    controller.change_project(other)

    (recorded,) = controller.activities
    assert recorded.project == project
    assert recorded.description == "review"
    assert (recorded.start, recorded.end) == (clock.now - timedelta(hours=1), clock.now)
    assert controller.active
    assert controller.selected_project == other
    assert controller.start_time == clock.now
    assert controller.description == ""
    assert events.kinds == [
        EventKind.ACTIVITY_ADDED,
        EventKind.START_TIME_CHANGED,
        EventKind.PROJECT_CHANGED,
    ]
    assert events.events[-1].payload == other


def test_change_project_to_none_while_tracking_stops(controller, project, events, clock):
    controller.change_project(project)
    controller.start(clock.now - timedelta(minutes=10))
    events.clear()

    controller.change_project(None)

    assert not controller.active
    assert len(controller.activities) == 1
    assert events.kinds == [
        EventKind.ACTIVITY_ADDED,
        EventKind.ACTIVITY_STOPPED,
        EventKind.PROJECT_CHANGED,
    ]


def test_set_filter_equal_filter_publishes_nothing(controller, project, events):
    controller.set_filter(Filter(project_id=project.id))
    events.clear()

    controller.set_filter(Filter(project_id=project.id))

    assert events.events == []


def test_set_filter_persists_and_publishes(controller, project, gateway, events):
    new_filter = Filter(description="meeting")
    controller.set_filter(new_filter)

    assert events.kinds == [EventKind.FILTER_CHANGED]
    assert events.events[0].payload == new_filter
    assert gateway.load_settings().filter == new_filter


def test_state_is_restored_from_gateway(controller, project, gateway, clock):
    controller.change_project(project)
    controller.set_description("notes")
    controller.start(clock.now - timedelta(minutes=20))

    restored = ActivityController.from_gateway(gateway, clock=clock)

    assert restored.active
    assert restored.start_time == clock.now - timedelta(minutes=20)
    assert restored.selected_project == project
    assert restored.description == "notes"


def test_initialize_closes_interval_left_open_on_previous_day(controller, project, gateway, clock):
    controller.change_project(project)
    controller.start(datetime(2024, 1, 1, 22, 0))

    restored = ActivityController.from_gateway(gateway, clock=clock)

    assert not restored.active
    assert [(a.start, a.end) for a in restored.activities] == [
        (datetime(2024, 1, 1, 22, 0), datetime(2024, 1, 2, 0, 0)),
        (datetime(2024, 1, 2, 0, 0), clock.now),
    ]
    assert gateway.load_settings().active is False


def test_initialize_discards_active_state_without_project(gateway, clock):
    gateway.save_settings(TrackerSettings(active=True, start=clock.now, selected_project_id=99))

    restored = ActivityController.from_gateway(gateway, clock=clock)

    assert not restored.active
    assert restored.selected_project is None


def test_set_start_moves_running_interval(controller, project, events, clock):
    controller.change_project(project)
    controller.start()
    events.clear()

    controller.set_start(clock.now - timedelta(minutes=5))

    assert controller.start_time == clock.now - timedelta(minutes=5)
    assert events.kinds == [EventKind.START_TIME_CHANGED]
    with pytest.raises(InvalidTimestamp):
        controller.set_start(clock.now + timedelta(minutes=5))


def test_update_project_publishes_field_change(controller, project, events, gateway):
    controller.update_project(project, title="Aardvark", active=False)

    assert events.kinds == [EventKind.PROJECT_CHANGED, EventKind.PROJECT_CHANGED]
    title_change, active_change = (event.change for event in events.events)
    assert (title_change.field, title_change.old, title_change.new) == ("title", "Alpha", "Aardvark")
    assert (active_change.field, active_change.old, active_change.new) == ("active", True, False)
    assert gateway.find_project_by_id(project.id).title == "Aardvark"
    assert project not in controller.projection.active_projects


def test_remove_tracked_project_is_rejected(controller, project, clock):
    controller.change_project(project)
    controller.start(clock.now - timedelta(minutes=5))
    with pytest.raises(InvalidTransition):
        controller.remove_project(project)


def test_remove_project_drops_its_activities(controller, project, gateway, clock, events):
    controller.add_activity(
        Activity(start=clock.now - timedelta(hours=2), end=clock.now - timedelta(hours=1), project=project)
    )
    controller.change_project(project)
    events.clear()

    controller.remove_project(project)

    assert controller.activities == []
    assert gateway.get_activities() == []
    assert controller.selected_project is None
    assert events.kinds == [EventKind.PROJECT_REMOVED]


def test_update_activity_rejects_invalid_interval(controller, project, clock):
    activity = controller.add_activity(
        Activity(start=clock.now - timedelta(hours=2), end=clock.now - timedelta(hours=1), project=project)
    )
    with pytest.raises(ValueError):
        controller.update_activity(activity, end=activity.start)
    assert activity.end == clock.now - timedelta(hours=1)


def test_import_data_replaces_store_and_keeps_filter(controller, project, events, clock):
    beta = Project(title="Beta")
    imported = Activity(start=clock.now - timedelta(hours=3), end=clock.now - timedelta(hours=2), project=beta)
    controller.set_filter(Filter(description="x"))
    events.clear()

    controller.import_data([beta], [imported])

    assert [p.title for p in controller.projection.all_projects] == ["Beta"]
    assert controller.filter == Filter(description="x")
    assert controller.activities == []
    assert controller.projection.all_activities() == [imported]
    assert events.kinds[-1] is EventKind.DATA_CHANGED
    assert not controller.history.can_undo


def test_failed_import_keeps_existing_data(controller, project, gateway, clock):
    existing = controller.add_activity(
        Activity(start=clock.now - timedelta(hours=2), end=clock.now - timedelta(hours=1), project=project)
    )
    beta = Project(title="Beta")
    orphan = Activity(
        start=clock.now - timedelta(hours=3),
        end=clock.now - timedelta(hours=2),
        project=Project(title="Ghost", id=99),
    )

    with pytest.raises(PersistenceFailure):
        controller.import_data([beta], [orphan])

    assert beta.id is None
    assert gateway.get_all_projects() == [project]
    assert [a.id for a in gateway.get_activities()] == [existing.id]
    assert controller.activities == [existing]
    assert list(controller.projection.all_projects) == [project]


def test_stopwatch_visibility_toggle(controller, events):
    controller.change_stopwatch_visibility()
    assert controller.stopwatch_visible is False
    assert events.kinds == [EventKind.STOPWATCH_VISIBILITY_CHANGED]
