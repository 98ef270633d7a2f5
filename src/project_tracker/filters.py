"""Activity filters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from .models import Activity


@dataclass(frozen=True, slots=True)
class Filter:
    """Predicate selecting which activities are visible.

    Every criterion is optional; unset criteria match everything. The date
    range is inclusive and applies to the day an activity starts on.
    """

    project_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None

    def matches(self, activity: Activity) -> bool:
        if self.project_id is not None and activity.project.id != self.project_id:
            return False
        day = activity.day
        if self.start_date is not None and day < self.start_date:
            return False
        if self.end_date is not None and day > self.end_date:
            return False
        if self.description:
            needle = self.description.casefold()
            if needle not in (activity.description or "").casefold():
                return False
        return True

    @property
    def is_empty(self) -> bool:
        return (
            self.project_id is None
            and self.start_date is None
            and self.end_date is None
            and not self.description
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "description": self.description,
        }

    @classmethod
    def from_record(cls, record: Optional[dict[str, Any]]) -> Optional["Filter"]:
        if not record:
            return None
        start = record.get("start_date")
        end = record.get("end_date")
        return cls(
            project_id=record.get("project_id"),
            start_date=date.fromisoformat(start) if start else None,
            end_date=date.fromisoformat(end) if end else None,
            description=record.get("description") or None,
        )


def matches(filter: Optional[Filter], activity: Activity) -> bool:
    """Apply ``filter`` to ``activity``; an absent filter matches everything."""
    return filter is None or filter.matches(activity)
