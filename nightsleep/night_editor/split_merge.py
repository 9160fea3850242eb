# split_merge.py
"""
Split / Merge Operator

Pure planning of the structural edits of a night:
- split: insert a wake phase into one sleep entry (one entry -> two)
- merge: remove a wake phase (two adjacent entries -> one)
- delete: the ids of a whole night

Planning never touches the store. Invalid requests raise NightEditError,
which the editor reports back as a failed EditorResult.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from nightsleep.night_editor.entries import SleepEntry, find_entry, sort_entries
from nightsleep.night_editor.errors import EditorError, NightEditError
from nightsleep.night_editor.sleep_config import SleepConfig, get_sleep_config
from nightsleep.utils.time_utils import truncate_to_minute


@dataclass(frozen=True)
class SplitPlan:
    target: SleepEntry
    first: SleepEntry
    second: SleepEntry
    split_at: datetime
    wake_minutes: int
    entries: Tuple[SleepEntry, ...]


@dataclass(frozen=True)
class MergePlan:
    prev_entry: SleepEntry
    next_entry: SleepEntry
    merged: SleepEntry
    entries: Tuple[SleepEntry, ...]


@dataclass(frozen=True)
class WakeProposal:
    target: SleepEntry
    start: datetime
    end: datetime

    @property
    def wake_minutes(self) -> int:
        return max(0, round((self.end - self.start).total_seconds() / 60))


def _containing_entry(
    entries: Sequence[SleepEntry],
    instant: datetime,
    now: datetime,
    preferred: Optional[SleepEntry] = None,
) -> Optional[int]:
    if preferred is not None:
        index = find_entry(entries, preferred)
        if index is not None and entries[index].contains(instant, now):
            return index
    for index, entry in enumerate(entries):
        if entry.contains(instant, now):
            return index
    return None


def plan_split(
    entries: Sequence[SleepEntry],
    split_at: datetime,
    wake_minutes: float,
    now: datetime,
    target: Optional[SleepEntry] = None,
) -> SplitPlan:
    ordered = sort_entries(entries)
    wake_minutes = int(round(wake_minutes))
    if wake_minutes < 1:
        raise NightEditError(EditorError.INVALID_INPUT, "The wake phase must last at least 1 minute.")

    index = _containing_entry(ordered, split_at, now, preferred=target)
    if index is None:
        raise NightEditError(
            EditorError.TARGET_NOT_FOUND,
            "The chosen wake start lies outside every sleep entry of this night. Please adjust it.",
        )

    resolved = ordered[index]
    segment_end = resolved.live_end(now)
    if split_at <= resolved.start_time:
        raise NightEditError(EditorError.INVALID_INPUT, "The wake phase must start after the sleep start.")

    resumed_at = split_at + timedelta(minutes=wake_minutes)
    if resumed_at >= segment_end:
        if resolved.is_ongoing:
            raise NightEditError(EditorError.INVALID_INPUT, "The wake phase cannot end in the future.")
        raise NightEditError(EditorError.INVALID_INPUT, "The wake phase is too long for this sleep entry.")

    first = resolved.with_fields(end_time=split_at)
    second = resolved.with_fields(id=None, start_time=resumed_at)
    new_entries = ordered[:index] + (first, second) + ordered[index + 1:]

    return SplitPlan(
        target=resolved,
        first=first,
        second=second,
        split_at=split_at,
        wake_minutes=wake_minutes,
        entries=new_entries,
    )


def plan_merge(
    entries: Sequence[SleepEntry],
    prev_entry: SleepEntry,
    next_entry: SleepEntry,
) -> MergePlan:
    ordered = sort_entries(entries)
    prev_index = find_entry(ordered, prev_entry)
    next_index = find_entry(ordered, next_entry)
    if prev_index is None or next_index is None or next_index != prev_index + 1:
        raise NightEditError(
            EditorError.TARGET_NOT_FOUND,
            "The selected sleep entries could not be matched. Please reopen the night and try again.",
        )

    resolved_prev = ordered[prev_index]
    resolved_next = ordered[next_index]
    if resolved_prev.end_time is None:
        raise NightEditError(EditorError.INVALID_INPUT, "A running sleep entry cannot be merged forward.")

    merged = resolved_prev.with_fields(end_time=resolved_next.end_time)
    if merged.end_time is not None and merged.end_time <= merged.start_time:
        raise NightEditError(EditorError.INVALID_INPUT, "The entry times are invalid and cannot be merged.")

    return MergePlan(
        prev_entry=resolved_prev,
        next_entry=resolved_next,
        merged=merged,
        entries=ordered[:prev_index] + (merged,) + ordered[next_index + 1:],
    )


def deletable_ids(entries: Sequence[SleepEntry]) -> List[str]:
    """Unique persisted ids; optimistic placeholders without an id are skipped."""
    seen: List[str] = []
    for entry in entries:
        if entry.id and entry.id not in seen:
            seen.append(entry.id)
    return seen


def propose_wake_phase(
    entries: Sequence[SleepEntry],
    now: datetime,
    cfg: Optional[SleepConfig] = None,
) -> Optional[WakeProposal]:
    """
    Default "add wake phase" draft: the middle of the longest entry, lasting
    the configured default (15 minutes).
    """
    cfg = cfg or get_sleep_config()
    ordered = sort_entries(entries)
    if not ordered:
        return None

    longest = max(ordered, key=lambda e: e.live_end(now) - e.start_time)
    duration = longest.live_end(now) - longest.start_time
    start = truncate_to_minute(longest.start_time + duration / 2)
    end = start + timedelta(minutes=cfg.default_wake_minutes)
    return WakeProposal(target=longest, start=start, end=end)
