from datetime import datetime, timedelta, timezone

import pytest

from nightsleep.night_editor.editor import NightSleepEditor
from nightsleep.night_editor.entries import END_TIME, START_TIME, SleepEntry
from nightsleep.night_editor.errors import EditorError
from nightsleep.night_editor.night_window import build_night_group, entries_in_night
from nightsleep.night_editor.sleep_actions import SleepEntryActions

NOW = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)


def _dt(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def _entry(start, end=None, entry_id=None):
    return SleepEntry(start_time=_dt(start), end_time=_dt(end) if end else None, id=entry_id)


class _FakeActions(SleepEntryActions):
    """In-memory store with switchable failures."""

    def __init__(self, entries, cfg):
        self.cfg = cfg
        self.store = {e.id: e for e in entries}
        self.calls = []
        self.fail = set()
        self.during_split = None
        self.during_adjust = None
        self._next_id = 0

    def split_entry(self, target, split_at, wake_minutes):
        self.calls.append(("split", target.id, split_at, wake_minutes))
        if self.during_split is not None:
            self.during_split()
        if "split" in self.fail:
            return False
        original = self.store[target.id]
        self.store[target.id] = original.with_fields(end_time=split_at)
        self._next_id += 1
        new_id = f"n{self._next_id}"
        self.store[new_id] = SleepEntry(
            start_time=split_at + timedelta(minutes=wake_minutes),
            end_time=original.end_time,
            id=new_id,
        )
        return True

    def merge_entries(self, entry_a, entry_b):
        self.calls.append(("merge", entry_a.id, entry_b.id))
        if "merge" in self.fail:
            return False
        self.store[entry_a.id] = self.store[entry_a.id].with_fields(end_time=self.store[entry_b.id].end_time)
        del self.store[entry_b.id]
        return True

    def adjust_boundary(self, entry, field, new_time):
        self.calls.append(("adjust", entry.id, field, new_time))
        if self.during_adjust is not None:
            self.during_adjust()
        if "adjust" in self.fail:
            return False
        self.store[entry.id] = self.store[entry.id].with_fields(**{field: new_time})
        return True

    def delete_entries(self, ids):
        self.calls.append(("delete", list(ids)))
        if "delete" in self.fail:
            return False
        for entry_id in ids:
            self.store.pop(entry_id, None)
        return True

    def load_night(self, anchor, now=None):
        entries = entries_in_night(list(self.store.values()), anchor, self.cfg)
        return build_night_group(entries, now, self.cfg)


def _make(entries, cfg, timers):
    actions = _FakeActions(entries, cfg)
    group = build_night_group(entries, NOW, cfg)
    editor = NightSleepEditor(group, actions, cfg=cfg, timer_factory=timers, now_fn=lambda: NOW)
    return editor, actions


def _single():
    return [_entry("2024-01-01T22:00:00", "2024-01-02T06:00:00", "e")]


def _pair():
    return [
        _entry("2024-01-01T22:00:00", "2024-01-02T02:00:00", "a"),
        _entry("2024-01-02T02:10:00", "2024-01-02T06:00:00", "b"),
    ]


# =========================================================================
# Boundary edits
# =========================================================================

def test_night_start_edit_is_optimistic_then_persisted(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)

    decision = editor.change_night_start(_dt("2024-01-01T21:30:00"))
    assert decision.accepted
    assert editor.night_group.start == _dt("2024-01-01T21:30:00")
    assert editor.is_optimistic
    assert editor.is_saving
    assert actions.calls == []

    timers.fire_all()
    assert actions.calls == [("adjust", "a", START_TIME, _dt("2024-01-01T21:30:00"))]
    assert not editor.is_optimistic
    assert not editor.is_saving
    assert editor.night_group.start == _dt("2024-01-01T21:30:00")


def test_three_rapid_edits_write_once_with_last_value(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)
    for value in ("2024-01-01T21:30:00", "2024-01-01T21:20:00", "2024-01-01T21:10:00"):
        editor.change_night_start(_dt(value))

    timers.fire_all()
    assert actions.calls == [("adjust", "a", START_TIME, _dt("2024-01-01T21:10:00"))]


def test_linked_shift_is_written_in_safe_order(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)

    decision = editor.change_night_start(_dt("2024-01-02T07:00:00"))
    assert decision.linked
    assert editor.night_group.end == _dt("2024-01-02T15:00:00")

    timers.fire_all()
    assert actions.calls == [
        ("adjust", "e", END_TIME, _dt("2024-01-02T15:00:00")),
        ("adjust", "e", START_TIME, _dt("2024-01-02T07:00:00")),
    ]
    assert actions.store["e"].start_time == _dt("2024-01-02T07:00:00")
    assert editor.night_group.start == _dt("2024-01-02T07:00:00")


def test_linked_shift_cancels_pending_opposite_edge(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)
    assert editor.change_night_end(_dt("2024-01-02T06:30:00")).accepted
    assert editor.change_night_start(_dt("2024-01-02T07:00:00")).linked

    timers.fire_all()
    assert actions.calls == [
        ("adjust", "e", END_TIME, _dt("2024-01-02T15:30:00")),
        ("adjust", "e", START_TIME, _dt("2024-01-02T07:00:00")),
    ]


def test_failed_boundary_write_reloads_authoritative_night(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)
    actions.fail.add("adjust")

    editor.change_night_start(_dt("2024-01-01T21:30:00"))
    timers.fire_all()

    assert not editor.is_optimistic
    assert editor.night_group.start == _dt("2024-01-01T22:00:00")


def test_wake_end_edit_moves_next_entry_start(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)
    phase = editor.wake_phases[0]

    assert editor.change_wake_end(phase, _dt("2024-01-02T02:30:00")).accepted
    assert editor.total_wake_seconds == 1800

    timers.fire_all()
    assert actions.store["b"].start_time == _dt("2024-01-02T02:30:00")


def test_rejected_edit_schedules_nothing(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)
    phase = editor.wake_phases[0]

    assert not editor.change_wake_start(phase, _dt("2024-01-01T21:00:00")).accepted
    assert timers.created == []
    assert not editor.is_optimistic


def test_epoch_picker_value_lands_on_night_date(cfg, timers):
    editor, _ = _make(_pair(), cfg, timers)
    decision = editor.change_night_start(datetime(1970, 1, 1, 21, 30, tzinfo=timezone.utc))
    assert decision.accepted
    assert editor.night_group.start == _dt("2024-01-01T21:30:00")


def test_authoritative_night_clears_edge_cache(cfg, timers):
    editor, _ = _make(_pair(), cfg, timers)
    original = editor.night_group
    assert editor.change_night_start(_dt("2024-01-01T21:30:00")).accepted

    editor.receive_authoritative(original)
    assert not editor.is_optimistic
    assert editor.change_night_start(_dt("2024-01-01T21:30:00")).accepted


# =========================================================================
# Split / merge / delete
# =========================================================================

def test_split_adds_wake_phase(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)

    result = editor.split(_dt("2024-01-02T02:00:00"), 10)
    assert result.ok
    assert actions.calls == [("split", "e", _dt("2024-01-02T02:00:00"), 10)]
    assert [e.id for e in editor.night_group.entries] == ["e", "n1"]
    assert [p.duration_seconds for p in editor.wake_phases] == [600]
    assert not editor.is_optimistic


def test_failed_split_rolls_back(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)
    actions.fail.add("split")

    result = editor.split(_dt("2024-01-02T02:00:00"), 10)
    assert not result.ok
    assert result.error is EditorError.WRITE_FAILED
    assert result.can_retry
    assert len(editor.night_group.entries) == 1
    assert not editor.is_optimistic
    assert not editor.is_saving


def test_split_outside_night_needs_user_input(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)
    result = editor.split(_dt("2024-01-02T08:00:00"), 10)
    assert result.error is EditorError.TARGET_NOT_FOUND
    assert result.needs_user_input
    assert actions.calls == []


def test_second_structural_edit_while_saving_is_busy(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)
    nested = []
    actions.during_split = lambda: nested.append(editor.split(_dt("2024-01-02T04:00:00"), 5))

    assert editor.split(_dt("2024-01-02T02:00:00"), 10).ok
    assert [r.error for r in nested] == [EditorError.BUSY]


def test_split_writes_queued_night_end_first(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)
    assert editor.change_night_end(_dt("2024-01-02T07:00:00")).accepted

    assert editor.split(_dt("2024-01-02T02:00:00"), 10).ok
    timers.fire_all()

    assert actions.calls == [
        ("adjust", "e", END_TIME, _dt("2024-01-02T07:00:00")),
        ("split", "e", _dt("2024-01-02T02:00:00"), 10),
    ]
    stored = sorted((e.start_time, e.end_time) for e in actions.store.values())
    assert stored == [
        (_dt("2024-01-01T22:00:00"), _dt("2024-01-02T02:00:00")),
        (_dt("2024-01-02T02:10:00"), _dt("2024-01-02T07:00:00")),
    ]
    assert editor.night_group.end == _dt("2024-01-02T07:00:00")


def test_merge_writes_queued_wake_start_first(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)
    assert editor.change_wake_start(editor.wake_phases[0], _dt("2024-01-02T01:50:00")).accepted

    assert editor.merge(*_pair()).ok
    timers.fire_all()

    assert [c[0] for c in actions.calls] == ["adjust", "merge"]
    assert [(e.id, e.start_time, e.end_time) for e in actions.store.values()] == [
        ("a", _dt("2024-01-01T22:00:00"), _dt("2024-01-02T06:00:00")),
    ]
    assert editor.wake_phases == []


def test_structural_edit_while_edge_write_runs_is_busy(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)
    nested = []
    actions.during_adjust = lambda: nested.append(editor.split(_dt("2024-01-02T02:00:00"), 10))

    editor.change_night_end(_dt("2024-01-02T07:00:00"))
    timers.fire_all()

    assert [r.error for r in nested] == [EditorError.BUSY]
    assert [c[0] for c in actions.calls] == ["adjust"]
    assert len(actions.store) == 1


def test_add_wake_uses_proposal(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)
    proposal = editor.propose_wake()
    assert proposal.start == _dt("2024-01-02T02:00:00")

    assert editor.add_wake(proposal).ok
    assert actions.calls == [("split", "e", _dt("2024-01-02T02:00:00"), 15)]


def test_split_then_merge_round_trip(cfg, timers):
    editor, actions = _make(_single(), cfg, timers)
    assert editor.split(_dt("2024-01-02T02:00:00"), 10).ok

    assert editor.remove_wake_phase(editor.wake_phases[0]).ok
    entries = editor.night_group.entries
    assert len(entries) == 1
    assert (entries[0].start_time, entries[0].end_time) == (
        _dt("2024-01-01T22:00:00"),
        _dt("2024-01-02T06:00:00"),
    )


def test_failed_merge_rolls_back(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)
    actions.fail.add("merge")

    result = editor.merge(*_pair())
    assert result.error is EditorError.WRITE_FAILED
    assert [e.id for e in editor.night_group.entries] == ["a", "b"]


def test_delete_night_closes_editor(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)
    editor.change_night_start(_dt("2024-01-01T21:30:00"))

    result = editor.delete_night()
    assert result.ok
    assert editor.is_closed
    assert actions.store == {}
    timers.fire_all()
    assert [c[0] for c in actions.calls] == ["delete"]


def test_delete_night_without_saved_entries(cfg, timers):
    editor, actions = _make([_entry("2024-01-01T22:00:00", "2024-01-02T06:00:00")], cfg, timers)
    result = editor.delete_night()
    assert result.error is EditorError.NOTHING_TO_DELETE
    assert not editor.is_closed


def test_failed_delete_keeps_editor_open(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)
    actions.fail.add("delete")
    result = editor.delete_night()
    assert result.error is EditorError.WRITE_FAILED
    assert not editor.is_closed


# =========================================================================
# Anomaly / summary / close
# =========================================================================

def test_anomalous_night_fix_applies_through_night_end(cfg, timers):
    editor, actions = _make([_entry("2024-01-01T20:00:00", "2024-01-04T07:15:00", "e")], cfg, timers)
    assert editor.is_anomalous
    assert editor.proposed_end_fix == _dt("2024-01-02T07:15:00")
    # only a proposal until applied
    assert actions.store["e"].end_time == _dt("2024-01-04T07:15:00")

    decision = editor.apply_anomaly_fix()
    assert decision.accepted
    timers.fire_all()
    assert actions.store["e"].end_time == _dt("2024-01-02T07:15:00")
    assert not editor.is_anomalous
    assert editor.proposed_end_fix is None
    assert editor.apply_anomaly_fix() is None


def test_summary(cfg, timers):
    editor, _ = _make(_pair(), cfg, timers)
    summary = editor.summary()
    assert summary["sleep_minutes"] == 470
    assert summary["sleep_text"] == "7h 50m"
    assert summary["wake_text"] == "10 Min"
    assert summary["wake_count"] == 1
    assert summary["start_text"] == "22:00"
    assert summary["end_text"] == "06:00"
    assert summary["is_anomalous"] is False


def test_close_drops_pending_writes(cfg, timers):
    editor, actions = _make(_pair(), cfg, timers)
    editor.change_night_start(_dt("2024-01-01T21:30:00"))
    editor.close()

    timers.fire_all()
    assert actions.calls == []
    assert editor.is_closed
    assert not editor.change_night_start(_dt("2024-01-01T21:00:00")).accepted
    assert editor.split(_dt("2024-01-02T01:00:00"), 5).error is EditorError.BUSY


@pytest.mark.parametrize("wake_minutes", [0, 0.4])
def test_split_with_too_short_wake_is_invalid(cfg, timers, wake_minutes):
    editor, _ = _make(_single(), cfg, timers)
    assert editor.split(_dt("2024-01-02T02:00:00"), wake_minutes).error is EditorError.INVALID_INPUT
