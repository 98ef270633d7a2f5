"""Aggregations of tracked time and console summaries."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Hashable, Iterable, TypeVar

from .filters import Filter
from .models import Activity, Project

K = TypeVar("K", bound=Hashable)


def _accumulate(
    activities: Iterable[Activity], key: Callable[[Activity], K]
) -> dict[K, timedelta]:
    totals: defaultdict[K, timedelta] = defaultdict(timedelta)
    for activity in activities:
        totals[key(activity)] += activity.duration
    return dict(totals)


def hours_by_day(activities: Iterable[Activity]) -> dict[date, timedelta]:
    return _accumulate(activities, lambda activity: activity.day)


def hours_by_week(activities: Iterable[Activity]) -> dict[tuple[int, int], timedelta]:
    """Totals keyed by ``(iso_year, iso_week)``."""

    def week(activity: Activity) -> tuple[int, int]:
        iso = activity.day.isocalendar()
        return iso[0], iso[1]

    return _accumulate(activities, week)


def hours_by_month(activities: Iterable[Activity]) -> dict[tuple[int, int], timedelta]:
    return _accumulate(activities, lambda activity: (activity.start.year, activity.start.month))


def hours_by_quarter(activities: Iterable[Activity]) -> dict[tuple[int, int], timedelta]:
    return _accumulate(
        activities,
        lambda activity: (activity.start.year, (activity.start.month - 1) // 3 + 1),
    )


def hours_by_project(activities: Iterable[Activity]) -> dict[Project, timedelta]:
    return _accumulate(activities, lambda activity: activity.project)


def accumulate_activities(
    activities: Iterable[Activity],
) -> dict[tuple[date, Project, str], timedelta]:
    """Totals per day, project and description."""
    return _accumulate(
        activities,
        lambda activity: (activity.day, activity.project, activity.description),
    )


REPORTS: dict[str, Callable[[Iterable[Activity]], dict]] = {
    "day": hours_by_day,
    "week": hours_by_week,
    "month": hours_by_month,
    "quarter": hours_by_quarter,
    "project": hours_by_project,
}


def format_bucket(key: object) -> str:
    """Render a report bucket key for display."""
    if isinstance(key, date):
        return key.strftime("%Y-%m-%d")
    if isinstance(key, Project):
        return key.title
    return "-".join(f"{part:02d}" if isinstance(part, int) else str(part) for part in key)


def format_duration(seconds: float | timedelta) -> str:
    if isinstance(seconds, timedelta):
        seconds = seconds.total_seconds()
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, activities: Iterable[Activity]) -> None:
        self.activities = list(activities)

    def print_daily_summary(self, day: datetime | date) -> None:
        target = day.date() if isinstance(day, datetime) else day
        todays = [
            activity
            for activity in self.activities
            if Filter(start_date=target, end_date=target).matches(activity)
        ]
        if not todays:
            print("No activity recorded for the selected day.")
            return

        total = sum((activity.duration for activity in todays), timedelta())
        print(f"Summary for {target.strftime('%Y-%m-%d')}")
        print("-" * 40)
        print(f"Tracked time: {format_duration(total)}")
        print()

        by_project = sorted(
            hours_by_project(todays).items(), key=lambda item: item[1], reverse=True
        )
        print("Projects:")
        for project, duration in by_project[:5]:
            print(f"  {project.title:<30} {format_duration(duration)}")

        print()
        print("Activities:")
        for activity in todays:
            label = activity.description or "(no description)"
            print(
                f"  {activity.start:%H:%M}-{activity.end:%H:%M} "
                f"{activity.project.title[:12]:<12} {label[:45]}"
            )

    def print_report(self, by: str) -> None:
        totals = REPORTS[by](self.activities)
        if not totals:
            print("No activity recorded.")
            return
        for key in sorted(totals, key=bucket_sort_key):
            print(f"  {format_bucket(key):<30} {format_duration(totals[key])}")


def bucket_sort_key(key: object) -> tuple:
    if isinstance(key, Project):
        return (key.title.casefold(),)
    if isinstance(key, date):
        return (key.toordinal(),)
    return tuple(key)
