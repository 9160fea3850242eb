# night_window.py
"""
Night Window Classifier

Buckets sleep entries into nights. A night is anchored at the most recent
17:30 (wall clock of the entry's own datetime) at or before the entry start
and spans 990 minutes. Entries with the same anchor belong to the same night.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from nightsleep.night_editor.entries import SleepEntry, sort_entries
from nightsleep.night_editor.sleep_config import SleepConfig, get_sleep_config
from nightsleep.utils.time_utils import now_like


def night_anchor(start: datetime, cfg: Optional[SleepConfig] = None) -> datetime:
    cfg = cfg or get_sleep_config()
    anchor = start.replace(
        hour=cfg.anchor_time.hour,
        minute=cfg.anchor_time.minute,
        second=0,
        microsecond=0,
    )
    if start.hour * 60 + start.minute < cfg.anchor_minutes:
        anchor = anchor - timedelta(days=1)
    return anchor


def night_window_end(anchor: datetime, cfg: Optional[SleepConfig] = None) -> datetime:
    cfg = cfg or get_sleep_config()
    return anchor + timedelta(minutes=cfg.window_minutes)


def minutes_from_anchor(date: datetime, anchor: datetime) -> float:
    return max(0.0, (date - anchor).total_seconds() / 60.0)


def same_night(a: SleepEntry, b: SleepEntry, cfg: Optional[SleepConfig] = None) -> bool:
    return night_anchor(a.start_time, cfg) == night_anchor(b.start_time, cfg)


@dataclass(frozen=True)
class NightGroup:
    entries: Tuple[SleepEntry, ...]
    start: datetime
    end: datetime
    total_minutes: float
    anchor: datetime

    @property
    def span_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    @property
    def entry_ids(self) -> List[str]:
        return [e.id for e in self.entries if e.id]

    @property
    def is_ongoing(self) -> bool:
        return bool(self.entries) and self.entries[-1].end_time is None


def build_night_group(
    entries: Iterable[SleepEntry],
    now: Optional[datetime] = None,
    cfg: Optional[SleepConfig] = None,
) -> Optional[NightGroup]:
    """
    Aggregate entries into a NightGroup. Returns None for an empty list.
    The anchor is taken from the earliest entry.
    """
    ordered = sort_entries(entries)
    if not ordered:
        return None

    first = ordered[0]
    last = ordered[-1]
    now = now if now is not None else now_like(first.start_time)

    return NightGroup(
        entries=ordered,
        start=first.start_time,
        end=last.live_end(now),
        total_minutes=sum(e.duration_minutes(now) for e in ordered),
        anchor=night_anchor(first.start_time, cfg),
    )


def group_into_nights(
    entries: Iterable[SleepEntry],
    now: Optional[datetime] = None,
    cfg: Optional[SleepConfig] = None,
) -> List[NightGroup]:
    """Group entries by night anchor, newest night first."""
    buckets: Dict[datetime, List[SleepEntry]] = OrderedDict()
    for entry in sort_entries(entries):
        buckets.setdefault(night_anchor(entry.start_time, cfg), []).append(entry)

    groups = [build_night_group(bucket, now, cfg) for bucket in buckets.values()]
    return sorted((g for g in groups if g is not None), key=lambda g: g.start, reverse=True)


def entries_in_night(
    entries: Sequence[SleepEntry],
    anchor: datetime,
    cfg: Optional[SleepConfig] = None,
) -> Tuple[SleepEntry, ...]:
    return sort_entries(e for e in entries if night_anchor(e.start_time, cfg) == anchor)
