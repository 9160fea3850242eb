# editor.py
"""
Night Sleep Editor
==================

One editing session over one night. Wires the pieces together:

- boundary drags go through the BoundaryReconciler, are shown optimistically
  and persisted by the PersistenceScheduler (debounced, per edge)
- split / merge / delete go straight to the host actions; the optimistic
  overlay is rolled back when the host reports a failure. Queued edge
  writes are flushed first; while one is still running the edit is BUSY
- every successful write ends with a reload of the authoritative night

Public methods are safe to call from any thread; debounced writes run on
timer threads.
"""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from nightsleep.night_editor.anomaly import is_anomalous, propose_end_fix
from nightsleep.night_editor.boundaries import (
    BoundaryDecision,
    BoundaryKind,
    BoundaryReconciler,
    FieldChange,
)
from nightsleep.night_editor.entries import SleepEntry
from nightsleep.night_editor.errors import EditorError, EditorResult, NightEditError
from nightsleep.night_editor.formatting import (
    format_clock_time,
    format_wake_duration,
    minutes_to_hmm,
)
from nightsleep.night_editor.night_window import NightGroup
from nightsleep.night_editor.overlay import (
    Authoritative,
    NightState,
    apply_optimistic,
    baseline_of,
    is_optimistic,
    receive_authoritative,
)
from nightsleep.night_editor.persistence_scheduler import PersistenceScheduler, TimerFactory
from nightsleep.night_editor.sleep_actions import SleepEntryActions
from nightsleep.night_editor.sleep_config import SleepConfig, get_sleep_config
from nightsleep.night_editor.split_merge import (
    WakeProposal,
    deletable_ids,
    plan_merge,
    plan_split,
    propose_wake_phase,
)
from nightsleep.night_editor.wake_phases import WakePhase, derive_wake_phases, total_wake_seconds
from nightsleep.utils.error_logging import log_critical_error, log_warning_banner
from nightsleep.utils.logging_config import EditorLoggerAdapter, get_logger
from nightsleep.utils.time_utils import now_like, sanitize_picked_time

logger = get_logger(__name__)

_WRITE_FAILED_MESSAGE = "The change could not be saved. Please try again."
_BUSY_MESSAGE = "Another save is still running. Please wait."


class NightSleepEditor:
    def __init__(
        self,
        group: NightGroup,
        actions: SleepEntryActions,
        cfg: Optional[SleepConfig] = None,
        scheduler: Optional[PersistenceScheduler] = None,
        timer_factory: Optional[TimerFactory] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.cfg = cfg or get_sleep_config()
        self.actions = actions
        self._scheduler = scheduler or PersistenceScheduler(self.cfg, timer_factory=timer_factory)
        self._reconciler = BoundaryReconciler()
        self._now_fn = now_fn or (lambda: now_like(group.start))

        self._lock = threading.RLock()
        self._state: NightState = Authoritative(group)
        self._structural_busy = False
        self._closed = False

        self.log = EditorLoggerAdapter(logger, {"editor_key": f"night@{group.anchor.isoformat()}"})

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------
    @property
    def night_group(self) -> NightGroup:
        with self._lock:
            return self._state.group

    @property
    def entries(self):
        return self.night_group.entries

    @property
    def wake_phases(self) -> List[WakePhase]:
        return derive_wake_phases(self.entries)

    @property
    def total_wake_seconds(self) -> int:
        return total_wake_seconds(self.entries)

    @property
    def is_anomalous(self) -> bool:
        group = self.night_group
        return is_anomalous(group.start, group.end, self.cfg)

    @property
    def proposed_end_fix(self) -> Optional[datetime]:
        """Suggested night end for an anomalous night, None otherwise."""
        group = self.night_group
        if not is_anomalous(group.start, group.end, self.cfg):
            return None
        return propose_end_fix(group.start, group.end, self.cfg)

    @property
    def is_optimistic(self) -> bool:
        with self._lock:
            return is_optimistic(self._state)

    @property
    def is_saving(self) -> bool:
        with self._lock:
            if self._structural_busy:
                return True
        return self._scheduler.is_busy or self._scheduler.has_pending

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def summary(self) -> Dict[str, Any]:
        group = self.night_group
        wake_seconds = total_wake_seconds(group.entries)
        return {
            "start": group.start,
            "end": group.end,
            "start_text": format_clock_time(group.start),
            "end_text": format_clock_time(group.end),
            "sleep_minutes": group.total_minutes,
            "sleep_text": minutes_to_hmm(group.total_minutes),
            "wake_seconds": wake_seconds,
            "wake_text": format_wake_duration(wake_seconds),
            "wake_count": len(derive_wake_phases(group.entries)),
            "entry_count": len(group.entries),
            "is_ongoing": group.is_ongoing,
            "is_anomalous": self.is_anomalous,
            "is_saving": self.is_saving,
        }

    # ------------------------------------------------------------------
    # Boundary edits
    # ------------------------------------------------------------------
    def change_night_start(self, candidate: Optional[datetime]) -> BoundaryDecision:
        with self._lock:
            group = self._state.group
            if self._closed:
                return self._closed_decision(BoundaryKind.NIGHT_START)
            candidate = sanitize_picked_time(candidate, group.start)
            now = self._now_fn()
            decision = self._reconciler.propose_night_start(group.entries, candidate, now)
            self._apply_decision(decision, now)
            return decision

    def change_night_end(self, candidate: Optional[datetime]) -> BoundaryDecision:
        with self._lock:
            group = self._state.group
            if self._closed:
                return self._closed_decision(BoundaryKind.NIGHT_END)
            candidate = sanitize_picked_time(candidate, group.end)
            now = self._now_fn()
            decision = self._reconciler.propose_night_end(group.entries, candidate, now)
            self._apply_decision(decision, now)
            return decision

    def change_wake_start(self, phase: WakePhase, candidate: Optional[datetime]) -> BoundaryDecision:
        with self._lock:
            if self._closed:
                return self._closed_decision(BoundaryKind.WAKE_START)
            candidate = sanitize_picked_time(candidate, phase.start)
            decision = self._reconciler.propose_wake_start(self._state.group.entries, phase, candidate)
            self._apply_decision(decision, self._now_fn())
            return decision

    def change_wake_end(self, phase: WakePhase, candidate: Optional[datetime]) -> BoundaryDecision:
        with self._lock:
            if self._closed:
                return self._closed_decision(BoundaryKind.WAKE_END)
            candidate = sanitize_picked_time(candidate, phase.end)
            decision = self._reconciler.propose_wake_end(self._state.group.entries, phase, candidate)
            self._apply_decision(decision, self._now_fn())
            return decision

    def apply_anomaly_fix(self) -> Optional[BoundaryDecision]:
        """Apply the proposed end fix through the night-end edge. Only call on user confirmation."""
        fix = self.proposed_end_fix
        if fix is None:
            return None
        self.log.info(f"Applying anomaly fix: night end -> {fix.isoformat()}")
        return self.change_night_end(fix)

    def _closed_decision(self, kind: BoundaryKind) -> BoundaryDecision:
        return BoundaryDecision(
            accepted=False,
            kind=kind,
            key=kind.value,
            entries=self._state.group.entries,
            reason="editor closed",
        )

    def _apply_decision(self, decision: BoundaryDecision, now: datetime) -> None:
        # caller holds self._lock
        if not decision.accepted:
            return
        self._state = apply_optimistic(self._state, decision.entries, now, self.cfg)
        if decision.linked_key is not None:
            self._scheduler.cancel(decision.linked_key)

        key = decision.key
        changes = decision.changes
        self._scheduler.schedule(key, lambda: self._persist_changes(key, changes))

    def _persist_changes(self, key: str, changes: Tuple[FieldChange, ...]) -> None:
        """Runs on a timer thread: write each field change in order, then reload."""
        for change in changes:
            if not self.actions.adjust_boundary(change.entry, change.field, change.value):
                log_warning_banner(
                    f"Boundary write {change.field}={change.value} for entry {change.entry.id} failed; reloading",
                    context=f"editor.{key}",
                )
                self.reload()
                return

        self.log.debug(f"Persisted {len(changes)} change(s) for {key}")
        # Reloading while other edges are still queued would flash stale values
        if not self._scheduler.has_pending:
            self.reload()

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------
    def propose_wake(self) -> Optional[WakeProposal]:
        return propose_wake_phase(self.entries, self._now_fn(), self.cfg)

    def add_wake(self, proposal: WakeProposal) -> EditorResult:
        return self.split(proposal.start, proposal.wake_minutes, target=proposal.target)

    def split(
        self,
        split_at: Optional[datetime],
        wake_minutes: float,
        target: Optional[SleepEntry] = None,
    ) -> EditorResult:
        """Insert a wake phase of `wake_minutes` starting at `split_at`."""
        blocked = self._settle_edge_writes()
        if blocked is not None:
            return blocked

        with self._lock:
            blocked = self._blocked_result(edge_writes=True)
            if blocked is not None:
                return blocked

            group = self._state.group
            now = self._now_fn()
            split_at = sanitize_picked_time(split_at, target.start_time if target else group.start)
            try:
                plan = plan_split(group.entries, split_at, wake_minutes, now, target=target)
            except NightEditError as e:
                self.log.info(f"Split rejected: {e.message}")
                return EditorResult.failure(e.code, e.message)

            if not plan.target.is_persisted:
                return EditorResult.failure(
                    EditorError.TARGET_NOT_FOUND,
                    "The selected sleep entry is not saved yet. Please wait a moment and try again.",
                )

            snapshot = self._state
            self._state = apply_optimistic(self._state, plan.entries, now, self.cfg)
            self._structural_busy = True

        ok = self._run_action("split_entry", self.actions.split_entry, plan.target, plan.split_at, plan.wake_minutes)
        return self._finish_structural(ok, snapshot, "split")

    def merge(self, prev_entry: SleepEntry, next_entry: SleepEntry) -> EditorResult:
        """Remove the wake phase between two adjacent entries."""
        blocked = self._settle_edge_writes()
        if blocked is not None:
            return blocked

        with self._lock:
            blocked = self._blocked_result(edge_writes=True)
            if blocked is not None:
                return blocked

            try:
                plan = plan_merge(self._state.group.entries, prev_entry, next_entry)
            except NightEditError as e:
                self.log.info(f"Merge rejected: {e.message}")
                return EditorResult.failure(e.code, e.message)

            if not plan.prev_entry.is_persisted or not plan.next_entry.is_persisted:
                return EditorResult.failure(
                    EditorError.TARGET_NOT_FOUND,
                    "The selected sleep entries could not be matched. Please reopen the night and try again.",
                )

            snapshot = self._state
            self._state = apply_optimistic(self._state, plan.entries, self._now_fn(), self.cfg)
            self._structural_busy = True

        ok = self._run_action("merge_entries", self.actions.merge_entries, plan.prev_entry, plan.next_entry)
        return self._finish_structural(ok, snapshot, "merge")

    def remove_wake_phase(self, phase: WakePhase) -> EditorResult:
        return self.merge(phase.prev_entry, phase.next_entry)

    def delete_night(self) -> EditorResult:
        """Delete every saved entry of the night. Closes the editor on success."""
        with self._lock:
            blocked = self._blocked_result()
            if blocked is not None:
                return blocked

            ids = deletable_ids(self._state.group.entries)
            if not ids:
                return EditorResult.failure(EditorError.NOTHING_TO_DELETE, "This night has no saved entries.")
            self._structural_busy = True
            # Writes queued for entries about to disappear are pointless
            self._scheduler.cancel_all()

        ok = self._run_action("delete_entries", self.actions.delete_entries, ids)
        with self._lock:
            self._structural_busy = False
        if not ok:
            return EditorResult.failure(EditorError.WRITE_FAILED, "The night could not be deleted. Please try again.")

        self.log.info(f"Deleted night with {len(ids)} entries")
        self.close()
        return EditorResult.success(entries=())

    def _blocked_result(self, edge_writes: bool = False) -> Optional[EditorResult]:
        # caller holds self._lock
        if self._closed:
            return EditorResult.failure(EditorError.BUSY, "The editor is closed.")
        if self._structural_busy:
            return EditorResult.failure(EditorError.BUSY, _BUSY_MESSAGE)
        if edge_writes and (self._scheduler.has_pending or self._scheduler.is_busy):
            return EditorResult.failure(EditorError.BUSY, _BUSY_MESSAGE)
        return None

    def _settle_edge_writes(self) -> Optional[EditorResult]:
        """
        Write queued edge edits before a split or merge. Their field changes
        point at entries the structural edit is about to replace, so they
        must not fire afterwards.
        """
        with self._lock:
            blocked = self._blocked_result()
            if blocked is not None:
                return blocked

        flushed = self._scheduler.flush()
        if flushed:
            self.log.info(f"Wrote {flushed} queued edge edit(s) before structural edit")

        with self._lock:
            return self._blocked_result(edge_writes=True)

    def _run_action(self, name: str, action, *args) -> bool:
        try:
            return bool(action(*args))
        except Exception as e:
            log_critical_error(f"editor.{name}", f"Host action {name} raised", e)
            return False

    def _finish_structural(self, ok: bool, snapshot: NightState, label: str) -> EditorResult:
        with self._lock:
            self._structural_busy = False
            if not ok:
                self._state = snapshot
                self.log.warning(f"{label} failed; optimistic change rolled back")
                return EditorResult.failure(EditorError.WRITE_FAILED, _WRITE_FAILED_MESSAGE)

        self.reload()
        return EditorResult.success(entries=self.entries)

    # ------------------------------------------------------------------
    # Authoritative state
    # ------------------------------------------------------------------
    def receive_authoritative(self, group: NightGroup) -> None:
        """Replace whatever is shown with the store's night and forget cached edges."""
        with self._lock:
            if self._closed:
                return
            self._state = receive_authoritative(self._state, group)
            self._reconciler.references.clear()

    def reload(self) -> Optional[NightGroup]:
        """
        Load the night from the host. Tries the anchor of the shown night
        first, then the anchor of the last authoritative night (a shift may
        have moved the night across the anchor).
        """
        with self._lock:
            if self._closed:
                return None
            anchors = [self._state.group.anchor]
            baseline_anchor = baseline_of(self._state).anchor
            if baseline_anchor not in anchors:
                anchors.append(baseline_anchor)
        now = self._now_fn()

        for anchor in anchors:
            try:
                group = self.actions.load_night(anchor, now)
            except Exception as e:
                log_critical_error("editor.reload", f"Loading night {anchor.isoformat()} failed", e)
                return None
            if group is not None:
                self.receive_authoritative(group)
                return group

        self.log.warning("Night has no entries left after reload")
        return None

    def close(self) -> None:
        """Stop pending timers and drop caches. Writes already running finish on their own."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._reconciler.references.clear()
        self._scheduler.cancel_all()
        self.log.debug("Editor closed")
