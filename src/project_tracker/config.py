"""Configuration models and helpers for the tracker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from .filters import Filter
from .models import naive_local


@dataclass(slots=True)
class TrackerSettings:
    """Process state and preferences persisted across restarts."""

    active: bool = False
    start: Optional[datetime] = None
    selected_project_id: Optional[int] = None
    last_description: str = ""
    filter: Optional[Filter] = None
    inactivity_threshold: timedelta = timedelta(minutes=5)
    sample_interval: timedelta = timedelta(seconds=30)
    undo_limit: int = 50

    @classmethod
    def from_intervals(
        cls,
        idle_minutes: float,
        sample_seconds: float | None = None,
    ) -> "TrackerSettings":
        """Build tuning from an idle threshold in minutes.

        Without ``sample_seconds`` the threshold is sampled ten times per
        period, but never more often than every five seconds.
        """
        threshold = timedelta(minutes=idle_minutes)
        if sample_seconds is not None:
            sample = timedelta(seconds=sample_seconds)
        else:
            sample = max(threshold / 10, timedelta(seconds=5))
        return cls(inactivity_threshold=threshold, sample_interval=sample)

    def to_record(self) -> dict[str, Any]:
        """Flatten into JSON-compatible values keyed by setting name."""
        return {
            "active": self.active,
            "start": self.start.isoformat() if self.start else None,
            "selected_project_id": self.selected_project_id,
            "last_description": self.last_description,
            "filter": self.filter.to_record() if self.filter else None,
            "inactivity_threshold": self.inactivity_threshold.total_seconds(),
            "sample_interval": self.sample_interval.total_seconds(),
            "undo_limit": self.undo_limit,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "TrackerSettings":
        settings = cls()
        if "active" in record:
            settings.active = bool(record["active"])
        if record.get("start"):
            settings.start = naive_local(datetime.fromisoformat(record["start"]))
        if "selected_project_id" in record:
            settings.selected_project_id = record["selected_project_id"]
        if "last_description" in record:
            settings.last_description = record["last_description"] or ""
        settings.filter = Filter.from_record(record.get("filter"))
        if record.get("inactivity_threshold") is not None:
            settings.inactivity_threshold = timedelta(
                seconds=float(record["inactivity_threshold"])
            )
        if record.get("sample_interval") is not None:
            settings.sample_interval = timedelta(seconds=float(record["sample_interval"]))
        if record.get("undo_limit") is not None:
            settings.undo_limit = int(record["undo_limit"])
        return settings
