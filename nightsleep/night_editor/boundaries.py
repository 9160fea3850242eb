# boundaries.py
"""
Boundary Reconciler

Validates picker edits of the four editable edges of a night:
- night start (first entry start_time)
- night end (last entry end_time)
- wake start (end_time of the entry before a wake phase)
- wake end (start_time of the entry after a wake phase)

Each edge has a string key. The last accepted value per key is kept in a
BoundaryReferenceMap; it is the baseline for the no-op guard and for linked
shifts. Rejections are silent: a decision with accepted=False.

Linked shift: moving night start at/after night end (or night end at/before
night start) moves the whole night by the same delta instead of inverting it.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from nightsleep.night_editor.entries import (
    END_TIME,
    START_TIME,
    SleepEntry,
    find_entry,
    sort_entries,
)
from nightsleep.night_editor.wake_phases import WakePhase
from nightsleep.utils.logging_config import get_logger
from nightsleep.utils.time_utils import truncate_to_minute

logger = get_logger(__name__)


class BoundaryKind(Enum):
    NIGHT_START = "night-start"
    NIGHT_END = "night-end"
    WAKE_START = "wake-start"
    WAKE_END = "wake-end"


def night_start_key(entry: SleepEntry) -> str:
    return f"{BoundaryKind.NIGHT_START.value}-{entry.identity_key()}"


def night_end_key(entry: SleepEntry) -> str:
    return f"{BoundaryKind.NIGHT_END.value}-{entry.identity_key()}"


def wake_start_key(prev_entry: SleepEntry, next_entry: SleepEntry) -> str:
    return f"{BoundaryKind.WAKE_START.value}-{prev_entry.identity_key()}-{next_entry.identity_key()}"


def wake_end_key(prev_entry: SleepEntry, next_entry: SleepEntry) -> str:
    return f"{BoundaryKind.WAKE_END.value}-{prev_entry.identity_key()}-{next_entry.identity_key()}"


class BoundaryReferenceMap:
    """Last accepted value per boundary key, scoped to one editor session."""

    def __init__(self):
        self._values: Dict[str, datetime] = {}

    def get(self, key: str) -> Optional[datetime]:
        return self._values.get(key)

    def accept(self, key: str, value: datetime) -> None:
        self._values[key] = value

    def clear(self) -> None:
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: str) -> bool:
        return key in self._values


@dataclass(frozen=True)
class FieldChange:
    """Set `field` of `entry` (as it was before the edit) to `value`."""
    entry: SleepEntry
    field: str
    value: Optional[datetime]


@dataclass(frozen=True)
class BoundaryDecision:
    accepted: bool
    kind: BoundaryKind
    key: str
    entries: Tuple[SleepEntry, ...]
    changes: Tuple[FieldChange, ...] = ()
    linked_key: Optional[str] = None
    reason: str = ""

    @property
    def linked(self) -> bool:
        return self.linked_key is not None


def _shift(entry: SleepEntry, delta: timedelta, open_end: Optional[datetime] = None) -> SleepEntry:
    end = entry.end_time if entry.end_time is not None else open_end
    return entry.with_fields(
        start_time=entry.start_time + delta,
        end_time=end + delta if end is not None else None,
    )


def _shift_changes(
    entries: Sequence[SleepEntry],
    shifted: Sequence[SleepEntry],
    delta: timedelta,
) -> Tuple[FieldChange, ...]:
    """
    Field writes for a whole-night shift, ordered so every stored entry stays
    valid (start < end) and non-overlapping after each single write.
    """
    pairs = list(zip(entries, shifted))
    moving_later = delta > timedelta(0)
    if moving_later:
        pairs.reverse()

    changes = []
    for before, after in pairs:
        start_change = FieldChange(before, START_TIME, after.start_time)
        end_change = FieldChange(before, END_TIME, after.end_time)
        if moving_later:
            changes.extend([end_change, start_change])
        else:
            changes.extend([start_change, end_change])
    return tuple(changes)


class BoundaryReconciler:
    def __init__(self, references: Optional[BoundaryReferenceMap] = None):
        self.references = references if references is not None else BoundaryReferenceMap()

    def _last_accepted(self, key: str, live: datetime) -> datetime:
        cached = self.references.get(key)
        return cached if cached is not None else live

    @staticmethod
    def _reject(kind: BoundaryKind, key: str, entries: Tuple[SleepEntry, ...], reason: str) -> BoundaryDecision:
        logger.debug(f"Rejected {key}: {reason}")
        return BoundaryDecision(accepted=False, kind=kind, key=key, entries=entries, reason=reason)

    # ------------------------------------------------------------------
    # Night edges
    # ------------------------------------------------------------------
    def propose_night_start(
        self,
        entries: Sequence[SleepEntry],
        candidate: datetime,
        now: datetime,
    ) -> BoundaryDecision:
        ordered = sort_entries(entries)
        kind = BoundaryKind.NIGHT_START
        if not ordered:
            return self._reject(kind, kind.value, ordered, "empty night")

        first, last = ordered[0], ordered[-1]
        key = night_start_key(first)
        end_key = night_end_key(last)
        candidate = truncate_to_minute(candidate)

        original_start = self._last_accepted(key, first.start_time)
        if candidate == truncate_to_minute(original_start):
            return self._reject(kind, key, ordered, "unchanged")

        night_end = self._last_accepted(end_key, last.live_end(now))

        if candidate >= night_end:
            if last.is_ongoing:
                return self._reject(kind, key, ordered, "cannot shift a running night past now")
            delta = candidate - original_start
            shifted = tuple(_shift(e, delta) for e in ordered)
            self.references.accept(key, candidate)
            self.references.accept(end_key, night_end + delta)
            logger.info(f"Linked shift of night by {delta} via {key}")
            return BoundaryDecision(
                accepted=True,
                kind=kind,
                key=key,
                entries=shifted,
                changes=_shift_changes(ordered, shifted, delta),
                linked_key=end_key,
            )

        if len(ordered) > 1 and first.end_time is not None and candidate >= first.end_time:
            return self._reject(kind, key, ordered, "would overlap the next sleep entry")

        updated = first.with_fields(start_time=candidate)
        self.references.accept(key, candidate)
        return BoundaryDecision(
            accepted=True,
            kind=kind,
            key=key,
            entries=(updated,) + ordered[1:],
            changes=(FieldChange(first, START_TIME, candidate),),
        )

    def propose_night_end(
        self,
        entries: Sequence[SleepEntry],
        candidate: datetime,
        now: datetime,
    ) -> BoundaryDecision:
        ordered = sort_entries(entries)
        kind = BoundaryKind.NIGHT_END
        if not ordered:
            return self._reject(kind, kind.value, ordered, "empty night")

        first, last = ordered[0], ordered[-1]
        key = night_end_key(last)
        start_key = night_start_key(first)
        candidate = truncate_to_minute(candidate)

        original_end = self._last_accepted(key, last.live_end(now))
        if candidate == truncate_to_minute(original_end):
            return self._reject(kind, key, ordered, "unchanged")

        night_start = self._last_accepted(start_key, first.start_time)

        if candidate <= night_start:
            delta = candidate - original_end
            shifted = tuple(_shift(e, delta, open_end=original_end) for e in ordered)
            self.references.accept(key, candidate)
            self.references.accept(start_key, night_start + delta)
            logger.info(f"Linked shift of night by {delta} via {key}")
            return BoundaryDecision(
                accepted=True,
                kind=kind,
                key=key,
                entries=shifted,
                changes=_shift_changes(ordered, shifted, delta),
                linked_key=start_key,
            )

        if len(ordered) > 1 and candidate <= last.start_time:
            return self._reject(kind, key, ordered, "would overlap the previous sleep entry")

        updated = last.with_fields(end_time=candidate)
        self.references.accept(key, candidate)
        return BoundaryDecision(
            accepted=True,
            kind=kind,
            key=key,
            entries=ordered[:-1] + (updated,),
            changes=(FieldChange(last, END_TIME, candidate),),
        )

    # ------------------------------------------------------------------
    # Wake phase edges
    # ------------------------------------------------------------------
    def _locate_phase(self, ordered: Tuple[SleepEntry, ...], phase: WakePhase):
        prev_index = find_entry(ordered, phase.prev_entry)
        next_index = find_entry(ordered, phase.next_entry)
        if prev_index is None or next_index is None or next_index != prev_index + 1:
            return None
        return prev_index, next_index

    def propose_wake_start(
        self,
        entries: Sequence[SleepEntry],
        phase: WakePhase,
        candidate: datetime,
    ) -> BoundaryDecision:
        ordered = sort_entries(entries)
        kind = BoundaryKind.WAKE_START
        key = wake_start_key(phase.prev_entry, phase.next_entry)
        located = self._locate_phase(ordered, phase)
        if located is None:
            return self._reject(kind, key, ordered, "wake phase no longer present")

        prev_index, next_index = located
        prev_entry, next_entry = ordered[prev_index], ordered[next_index]
        candidate = truncate_to_minute(candidate)

        current = self._last_accepted(key, prev_entry.end_time or phase.start)
        if candidate == truncate_to_minute(current):
            return self._reject(kind, key, ordered, "unchanged")

        wake_end = self._last_accepted(wake_end_key(phase.prev_entry, phase.next_entry), next_entry.start_time)
        if candidate <= prev_entry.start_time or candidate >= wake_end:
            return self._reject(kind, key, ordered, "outside the wake phase bounds")

        updated = prev_entry.with_fields(end_time=candidate)
        self.references.accept(key, candidate)
        new_entries = list(ordered)
        new_entries[prev_index] = updated
        return BoundaryDecision(
            accepted=True,
            kind=kind,
            key=key,
            entries=tuple(new_entries),
            changes=(FieldChange(prev_entry, END_TIME, candidate),),
        )

    def propose_wake_end(
        self,
        entries: Sequence[SleepEntry],
        phase: WakePhase,
        candidate: datetime,
    ) -> BoundaryDecision:
        ordered = sort_entries(entries)
        kind = BoundaryKind.WAKE_END
        key = wake_end_key(phase.prev_entry, phase.next_entry)
        located = self._locate_phase(ordered, phase)
        if located is None:
            return self._reject(kind, key, ordered, "wake phase no longer present")

        prev_index, next_index = located
        prev_entry, next_entry = ordered[prev_index], ordered[next_index]
        candidate = truncate_to_minute(candidate)

        current = self._last_accepted(key, next_entry.start_time)
        if candidate == truncate_to_minute(current):
            return self._reject(kind, key, ordered, "unchanged")

        wake_start = self._last_accepted(
            wake_start_key(phase.prev_entry, phase.next_entry),
            prev_entry.end_time or phase.start,
        )
        if candidate <= wake_start:
            return self._reject(kind, key, ordered, "outside the wake phase bounds")
        if next_entry.end_time is not None and candidate >= next_entry.end_time:
            return self._reject(kind, key, ordered, "would swallow the next sleep entry")

        updated = next_entry.with_fields(start_time=candidate)
        self.references.accept(key, candidate)
        new_entries = list(ordered)
        new_entries[next_index] = updated
        return BoundaryDecision(
            accepted=True,
            kind=kind,
            key=key,
            entries=tuple(new_entries),
            changes=(FieldChange(next_entry, START_TIME, candidate),),
        )
