import random
from datetime import date, datetime, timedelta

from project_tracker.filters import Filter, matches
from project_tracker.models import Activity, Project
from project_tracker.projection import FilteredProjection, SortedView


def _activity(project, start, minutes=30, description=""):
    return Activity(
        start=start,
        end=start + timedelta(minutes=minutes),
        project=project,
        description=description,
    )


def _expected_ids(gateway, current_filter):
    return [a.id for a in gateway.get_activities() if matches(current_filter, a)]


def test_sorted_view_orders_by_key_then_insertion():
    view = SortedView(key=lambda item: item[0])
    for item in [(2, "a"), (1, "b"), (2, "c"), (0, "d")]:
        view.insert(item)

    assert list(view) == [(0, "d"), (1, "b"), (2, "a"), (2, "c")]
    assert view.insert((1, "b")) is False
    assert view.remove((2, "a")) is True
    assert view.remove((2, "a")) is False
    assert list(view) == [(0, "d"), (1, "b"), (2, "c")]


def test_filter_change_round_trip(controller, project, gateway, clock):
    other = controller.add_project(Project(title="Beta"))
    first = controller.add_activity(_activity(project, datetime(2024, 1, 1, 9, 0)))
    controller.add_activity(_activity(other, datetime(2024, 1, 1, 10, 0)))

    controller.set_filter(Filter(project_id=other.id))
    assert first not in controller.activities

    controller.set_filter(None)
    assert first in controller.activities
    assert [a.id for a in controller.activities] == _expected_ids(gateway, None)


def test_filtered_view_matches_store_after_random_operations(controller, project, gateway):
    rng = random.Random(1234)
    projects = [project, controller.add_project(Project(title="Beta"))]
    filters = [
        None,
        Filter(project_id=projects[0].id),
        Filter(project_id=projects[1].id),
        Filter(start_date=date(2024, 1, 1), end_date=date(2024, 1, 1)),
        Filter(description="bug"),
    ]
    base = datetime(2023, 12, 31, 8, 0)
    slot = 0

    for _ in range(60):
        action = rng.choice(["add", "add", "remove", "filter", "undo"])
        if action == "add":
            slot += 1
            start = base + timedelta(days=slot // 8, hours=slot % 8)
            controller.add_activity(
                _activity(
                    rng.choice(projects),
                    start,
                    description=rng.choice(["fix bug", "meeting", ""]),
                )
            )
        elif action == "remove":
            stored = gateway.get_activities()
            if stored:
                target = controller.projection.find_activity(rng.choice(stored).id)
                controller.remove_activity(target)
        elif action == "filter":
            controller.set_filter(rng.choice(filters))
        elif controller.history.can_undo:
            controller.undo()

        assert [a.id for a in controller.activities] == _expected_ids(gateway, controller.filter)
        starts = [a.start for a in controller.activities]
        assert starts == sorted(starts)


def test_activity_change_reevaluates_membership(controller, project):
    activity = controller.add_activity(
        _activity(project, datetime(2024, 1, 1, 9, 0), description="meeting")
    )
    controller.set_filter(Filter(description="meeting"))
    assert activity in controller.activities

    controller.update_activity(activity, description="coding")
    assert activity not in controller.activities

    controller.update_activity(activity, description="meeting notes")
    assert activity in controller.activities


def test_activity_change_keeps_order(controller, project):
    early = controller.add_activity(_activity(project, datetime(2024, 1, 1, 9, 0)))
    late = controller.add_activity(_activity(project, datetime(2024, 1, 1, 11, 0)))

    controller.update_activity(early, start=datetime(2024, 1, 1, 12, 0), end=datetime(2024, 1, 1, 13, 0))

    assert controller.activities == [late, early]


def test_project_title_change_repositions(controller, project):
    beta = controller.add_project(Project(title="Beta"))
    gamma = controller.add_project(Project(title="gamma"))
    assert list(controller.projection.all_projects) == [project, beta, gamma]

    controller.update_project(project, title="Zulu")

    assert list(controller.projection.all_projects) == [beta, gamma, project]
    assert list(controller.projection.active_projects) == [beta, gamma, project]


def test_project_active_flag_toggles_active_view(controller, project):
    beta = controller.add_project(Project(title="Beta"))

    controller.update_project(beta, active=False)
    assert list(controller.projection.active_projects) == [project]
    assert list(controller.projection.all_projects) == [project, beta]

    controller.update_project(beta, active=True)
    assert list(controller.projection.active_projects) == [project, beta]


def test_projection_is_idempotent_per_id(project):
    projection = FilteredProjection()
    projection.add_project(project)
    activity = _activity(project, datetime(2024, 1, 1, 9, 0))
    activity.id = 7

    projection.add_activities([activity])
    projection.add_activities([activity])

    assert list(projection.activities) == [activity]
    projection.remove_activities([activity])
    projection.remove_activities([activity])
    assert list(projection.activities) == []


def test_load_builds_all_views(gateway, project):
    archived = Project(title="Old", active=False)
    gateway.add_projects([archived])
    stored = gateway.add_activity(_activity(project, datetime(2024, 1, 1, 9, 0)))

    projection = FilteredProjection(Filter(project_id=archived.id))
    projection.load(gateway.get_all_projects(), gateway.get_activities())

    assert list(projection.active_projects) == [project]
    assert list(projection.all_projects) == [project, archived]
    assert list(projection.activities) == []
    projection.set_filter(None)
    assert list(projection.activities) == [stored]
