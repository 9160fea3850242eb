# sleep_actions.py
"""
Host persistence actions used by the night editor.

SleepEntryActions is the seam between the editor and whatever stores the
entries. DbSleepEntryActions implements it on top of sleep_db (SQLAlchemy).
All operations report success as a bool; details go to the log.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from nightsleep.night_editor import sleep_db
from nightsleep.night_editor.anomaly import auto_close_end, is_stale_running_entry
from nightsleep.night_editor.entries import END_TIME, START_TIME, SleepEntry
from nightsleep.night_editor.night_window import (
    NightGroup,
    build_night_group,
    entries_in_night,
)
from nightsleep.night_editor.sleep_config import SleepConfig, get_sleep_config
from nightsleep.utils.error_logging import log_critical_error
from nightsleep.utils.logging_config import get_logger
from nightsleep.utils.time_utils import now_like, update_local_timezone

logger = get_logger(__name__)


class SleepEntryActions(ABC):
    """Operations the editor needs from its host."""

    @abstractmethod
    def split_entry(self, target: SleepEntry, split_at: datetime, wake_minutes: int) -> bool:
        """Shorten `target` to end at split_at and create the resumed entry."""

    @abstractmethod
    def merge_entries(self, entry_a: SleepEntry, entry_b: SleepEntry) -> bool:
        """Extend entry_a to entry_b's end and remove entry_b."""

    @abstractmethod
    def adjust_boundary(self, entry: SleepEntry, field: str, new_time: Optional[datetime]) -> bool:
        """Write one boundary field of a persisted entry."""

    @abstractmethod
    def delete_entries(self, ids: Sequence[str]) -> bool:
        """Delete all given entries as one action."""

    @abstractmethod
    def load_night(self, anchor: datetime, now: Optional[datetime] = None) -> Optional[NightGroup]:
        """Authoritative night for `anchor`, or None when it has no entries left."""


class DbSleepEntryActions(SleepEntryActions):
    def __init__(self, cfg: Optional[SleepConfig] = None):
        self.cfg = cfg or get_sleep_config()
        update_local_timezone(self.cfg.local_timezone)

    def split_entry(self, target: SleepEntry, split_at: datetime, wake_minutes: int) -> bool:
        if not target.id:
            logger.warning("split_entry: target has no id")
            return False

        resumed_at = split_at + timedelta(minutes=wake_minutes)
        if not sleep_db.update_sleep_entry(target.id, end_time=split_at):
            return False

        new_id = sleep_db.create_sleep_entry(resumed_at, target.end_time, target.notes)
        if new_id is None:
            # Put the first half back so the night is not left truncated
            restored = sleep_db.update_sleep_entry(target.id, end_time=target.end_time)
            log_critical_error(
                "sleep_actions.split_entry",
                f"Could not create resumed entry after splitting {target.id} "
                f"(original end restored: {restored})",
                include_traceback=False,
            )
            return False

        logger.info(f"Split entry {target.id} at {split_at.isoformat()} ({wake_minutes} min awake) -> {new_id}")
        return True

    def merge_entries(self, entry_a: SleepEntry, entry_b: SleepEntry) -> bool:
        if not entry_a.id or not entry_b.id:
            logger.warning("merge_entries: both entries need an id")
            return False

        if not sleep_db.update_sleep_entry(entry_a.id, end_time=entry_b.end_time):
            return False

        if not sleep_db.delete_sleep_entries([entry_b.id]):
            restored = sleep_db.update_sleep_entry(entry_a.id, end_time=entry_a.end_time)
            log_critical_error(
                "sleep_actions.merge_entries",
                f"Could not delete {entry_b.id} after extending {entry_a.id} "
                f"(original end restored: {restored})",
                include_traceback=False,
            )
            return False

        logger.info(f"Merged entry {entry_b.id} into {entry_a.id}")
        return True

    def adjust_boundary(self, entry: SleepEntry, field: str, new_time: Optional[datetime]) -> bool:
        if not entry.id:
            logger.warning(f"adjust_boundary: entry starting {entry.start_time} has no id yet")
            return False
        if field == START_TIME:
            if new_time is None:
                return False
            return sleep_db.update_sleep_entry(entry.id, start_time=new_time)
        if field == END_TIME:
            return sleep_db.update_sleep_entry(entry.id, end_time=new_time)
        raise ValueError(f"Unknown boundary field: {field}")

    def delete_entries(self, ids: Sequence[str]) -> bool:
        return sleep_db.delete_sleep_entries(ids)

    def load_night(self, anchor: datetime, now: Optional[datetime] = None) -> Optional[NightGroup]:
        # Every entry starting within one day of the anchor shares it
        until = anchor + timedelta(days=1)
        sleep_db.cleanup_sub_minute_entries(self.cfg.min_persisted_seconds, anchor, until)
        candidates = sleep_db.get_sleep_entries_between(anchor, until)
        candidates = self._close_stale_entries(candidates, now or now_like(anchor))
        return build_night_group(entries_in_night(candidates, anchor, self.cfg), now, self.cfg)

    def _close_stale_entries(self, entries: List[SleepEntry], now: datetime) -> List[SleepEntry]:
        """Give running entries that were never stopped an end time, capped at the next entry's start."""
        out = []
        for index, entry in enumerate(entries):
            if entry.id and is_stale_running_entry(entry, now, self.cfg):
                end_time = auto_close_end(entry, self.cfg)
                if index + 1 < len(entries):
                    end_time = min(end_time, entries[index + 1].start_time)
                if sleep_db.update_sleep_entry(entry.id, end_time=end_time):
                    logger.warning(f"Auto-closed stale running entry {entry.id} at {end_time.isoformat()}")
                    entry = entry.with_fields(end_time=end_time)
            out.append(entry)
        return out
