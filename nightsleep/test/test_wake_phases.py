from datetime import datetime, timezone

from nightsleep.night_editor.entries import SleepEntry
from nightsleep.night_editor.wake_phases import derive_wake_phases, total_wake_seconds


def _dt(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def _entry(start, end=None, entry_id=None):
    return SleepEntry(start_time=_dt(start), end_time=_dt(end) if end else None, id=entry_id)


def test_gap_between_entries_is_a_wake_phase():
    a = _entry("2024-01-01T22:00:00", "2024-01-02T02:00:00", "a")
    b = _entry("2024-01-02T02:10:30", "2024-01-02T06:00:00", "b")
    phases = derive_wake_phases([b, a])
    assert len(phases) == 1
    phase = phases[0]
    assert phase.start == a.end_time
    assert phase.end == b.start_time
    assert phase.duration_seconds == 630
    assert phase.prev_entry == a
    assert phase.next_entry == b


def test_abutting_entries_have_no_wake_phase():
    a = _entry("2024-01-01T22:00:00", "2024-01-02T02:00:00", "a")
    b = _entry("2024-01-02T02:00:00", "2024-01-02T06:00:00", "b")
    assert derive_wake_phases([a, b]) == []
    assert total_wake_seconds([a, b]) == 0


def test_ongoing_previous_entry_has_no_wake_phase():
    a = _entry("2024-01-01T22:00:00", None, "a")
    b = _entry("2024-01-02T02:00:00", "2024-01-02T06:00:00", "b")
    assert derive_wake_phases([a, b]) == []


def test_derivation_is_idempotent_and_total_sums_phases():
    entries = [
        _entry("2024-01-01T22:00:00", "2024-01-02T01:00:00", "a"),
        _entry("2024-01-02T01:15:00", "2024-01-02T03:00:00", "b"),
        _entry("2024-01-02T03:05:00", "2024-01-02T06:00:00", "c"),
    ]
    first = derive_wake_phases(entries)
    second = derive_wake_phases(entries)
    assert first == second
    assert [p.duration_seconds for p in first] == [900, 300]
    assert total_wake_seconds(entries) == 1200
    assert first[0].duration_minutes == 15
