# wake_phases.py
"""
Wake phases are the gaps between consecutive sleep entries of a night.
They are never stored; derive them from the entry list whenever needed.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Sequence

from nightsleep.night_editor.entries import SleepEntry, sort_entries


@dataclass(frozen=True)
class WakePhase:
    start: datetime
    end: datetime
    duration_seconds: int
    prev_entry: SleepEntry
    next_entry: SleepEntry

    @property
    def duration_minutes(self) -> float:
        return self.duration_seconds / 60.0


def derive_wake_phases(entries: Sequence[SleepEntry]) -> List[WakePhase]:
    ordered = sort_entries(entries)
    phases: List[WakePhase] = []
    for prev, nxt in zip(ordered, ordered[1:]):
        if prev.end_time is None:
            continue
        duration_seconds = round((nxt.start_time - prev.end_time).total_seconds())
        # abutting or overlapping entries are not a wake phase
        if duration_seconds > 0:
            phases.append(
                WakePhase(
                    start=prev.end_time,
                    end=nxt.start_time,
                    duration_seconds=duration_seconds,
                    prev_entry=prev,
                    next_entry=nxt,
                )
            )
    return phases


def total_wake_seconds(entries: Sequence[SleepEntry]) -> int:
    return sum(p.duration_seconds for p in derive_wake_phases(entries))
