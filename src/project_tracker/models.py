"""Domain models for projects and recorded activities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional


def naive_local(value: datetime) -> datetime:
    """Return ``value`` as naive local time, converting timezone-aware values."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def next_midnight(value: datetime) -> datetime:
    """Return the midnight immediately following the calendar day of ``value``."""
    return datetime.combine(value.date() + timedelta(days=1), time.min)


def check_interval(start: datetime, end: datetime) -> None:
    """Raise ``ValueError`` unless ``[start, end)`` is non-empty and within one day."""
    if end <= start:
        raise ValueError(f"activity must end after it starts ({start} >= {end})")
    if end > next_midnight(start):
        raise ValueError("activity must not span more than one calendar day")


@dataclass(slots=True, eq=False)
class Project:
    """A project time can be booked on.

    Inactive projects stay in the store (and on their historical activities)
    but are not offered for new tracking.
    """

    title: str
    active: bool = True
    description: str = ""
    id: Optional[int] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Project):
            return NotImplemented
        if self.id is None or other.id is None:
            return self is other
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id) if self.id is not None else id(self)

    def __str__(self) -> str:
        return self.title


@dataclass(slots=True, eq=False)
class Activity:
    """A closed interval of work on a single project within one calendar day."""

    start: datetime
    end: datetime
    project: Project
    description: str = ""
    id: Optional[int] = None

    def __post_init__(self) -> None:
        check_interval(self.start, self.end)

    @property
    def day(self) -> date:
        return self.start.date()

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_seconds(self) -> float:
        return self.duration.total_seconds()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Activity):
            return NotImplemented
        if self.id is None or other.id is None:
            return self is other
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id) if self.id is not None else id(self)

    def __str__(self) -> str:
        return (
            f"{self.project.title} {self.start:%Y-%m-%d} "
            f"{self.start:%H:%M}-{self.end:%H:%M}"
        )
