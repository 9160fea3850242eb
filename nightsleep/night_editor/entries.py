"""
Sleep entries as seen by the night editor.

A SleepEntry is an immutable snapshot of one persisted (or not-yet-persisted)
sleep interval. Every edit produces new SleepEntry objects and new tuples.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional, Sequence, Tuple

from nightsleep.utils.time_utils import minute_bucket, now_like

START_TIME = "start_time"
END_TIME = "end_time"


@dataclass(frozen=True)
class SleepEntry:
    start_time: datetime
    end_time: Optional[datetime] = None
    id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_ongoing(self) -> bool:
        return self.end_time is None

    @property
    def is_persisted(self) -> bool:
        return bool(self.id)

    def live_end(self, now: Optional[datetime] = None) -> datetime:
        """End time, or "now" for an ongoing entry."""
        if self.end_time is not None:
            return self.end_time
        return now if now is not None else now_like(self.start_time)

    def duration_minutes(self, now: Optional[datetime] = None) -> float:
        return max(0.0, (self.live_end(now) - self.start_time).total_seconds() / 60.0)

    def contains(self, instant: datetime, now: Optional[datetime] = None) -> bool:
        """True when instant lies in [start_time, live end)."""
        return self.start_time <= instant < self.live_end(now)

    def with_fields(self, **changes) -> "SleepEntry":
        return replace(self, **changes)

    def identity_key(self) -> str:
        """Stable key component: the id, or the minute-truncated start for placeholders."""
        if self.id:
            return str(self.id)
        return f"new@{minute_bucket(self.start_time).isoformat()}"


def sort_entries(entries: Iterable[SleepEntry]) -> Tuple[SleepEntry, ...]:
    return tuple(sorted(entries, key=lambda e: e.start_time))


def same_entry(left: SleepEntry, right: SleepEntry) -> bool:
    """
    Match by id when both carry one; otherwise compare minute-truncated
    start/end. Entries created by an optimistic split have no id yet.
    """
    if left.id and right.id:
        return left.id == right.id
    if minute_bucket(left.start_time) != minute_bucket(right.start_time):
        return False
    return minute_bucket(left.end_time) == minute_bucket(right.end_time)


def find_entry(entries: Sequence[SleepEntry], candidate: SleepEntry) -> Optional[int]:
    """Index of the entry matching `candidate`, or None."""
    for index, entry in enumerate(entries):
        if same_entry(entry, candidate):
            return index
    return None


def is_sub_minute(entry: SleepEntry, min_seconds: int = 60) -> bool:
    """Finished entries shorter than the persistence threshold."""
    if entry.end_time is None or entry.end_time <= entry.start_time:
        return False
    return (entry.end_time - entry.start_time).total_seconds() < min_seconds
