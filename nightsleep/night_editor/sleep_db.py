# sleep_db.py
"""
Sleep Database Layer

Handles all database operations for sleep entries:
- Creating, updating and deleting entries
- Querying entries for a time range
- Cleanup of finished entries shorter than one minute

Times are stored in UTC and handed back as local-time SleepEntry objects.
"""
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from nightsleep.models.base import get_session
from nightsleep.models.sleep_entries import SleepEntryRecord
from nightsleep.night_editor.entries import SleepEntry, is_sub_minute
from nightsleep.utils.error_logging import log_critical_error
from nightsleep.utils.logging_config import get_logger
from nightsleep.utils.time_utils import local_to_utc, utc_to_local

logger = get_logger(__name__)

_UNSET = object()


def _duration_minutes(start_time: datetime, end_time: Optional[datetime]) -> Optional[float]:
    if end_time is None:
        return None
    return round((end_time - start_time).total_seconds() / 60, 2)


def _to_entry(record: SleepEntryRecord) -> SleepEntry:
    return SleepEntry(
        id=record.id,
        start_time=utc_to_local(record.start_time),
        end_time=utc_to_local(record.end_time) if record.end_time else None,
        notes=record.notes,
    )


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    return local_to_utc(value) if value is not None else None


# =========================================================================
# Writes
# =========================================================================

def create_sleep_entry(
        start_time: datetime,
        end_time: Optional[datetime] = None,
        notes: Optional[str] = None,
) -> Optional[str]:
    """
    Record a new sleep entry.

    Args:
        start_time: When sleep started
        end_time: When sleep ended, None if ongoing
        notes: Free text carried over from the entry that was split

    Returns:
        ID of the created entry, or None if failed
    """
    if end_time is not None and end_time <= start_time:
        logger.error(f"create_sleep_entry: end {end_time} is not after start {start_time}")
        return None

    session = get_session()
    try:
        start_utc = _to_utc(start_time)
        end_utc = _to_utc(end_time)
        record = SleepEntryRecord(
            start_time=start_utc,
            end_time=end_utc,
            duration_minutes=_duration_minutes(start_utc, end_utc),
            notes=notes,
        )
        session.add(record)
        session.commit()

        entry_id = record.id
        logger.info(f"Recorded sleep entry (ID: {entry_id}) starting {start_time.isoformat()}")
        return entry_id

    except SQLAlchemyError as e:
        session.rollback()
        log_critical_error(
            "sleep_db.create_sleep_entry",
            f"Failed to record sleep entry starting {start_time}",
            e
        )
        return None
    finally:
        session.close()


def update_sleep_entry(entry_id: str, start_time=_UNSET, end_time=_UNSET) -> bool:
    """
    Update start and/or end of an entry and recompute its duration.
    Passing end_time=None reopens the entry (ongoing).

    Returns:
        True if successful, False otherwise (missing entry, start >= end, DB error)
    """
    session = get_session()
    try:
        record = session.query(SleepEntryRecord).filter(
            SleepEntryRecord.id == entry_id
        ).first()

        if not record:
            logger.warning(f"update_sleep_entry: entry {entry_id} not found")
            return False

        new_start = _to_utc(start_time) if start_time is not _UNSET else utc_to_local(record.start_time)
        if end_time is not _UNSET:
            new_end = _to_utc(end_time)
        else:
            new_end = utc_to_local(record.end_time) if record.end_time else None

        if new_end is not None and new_start >= new_end:
            logger.error(f"update_sleep_entry: rejected {entry_id}, start {new_start} >= end {new_end}")
            return False

        record.start_time = _to_utc(new_start)
        record.end_time = _to_utc(new_end)
        record.duration_minutes = _duration_minutes(new_start, new_end)

        session.commit()
        return True

    except SQLAlchemyError as e:
        session.rollback()
        log_critical_error(
            "sleep_db.update_sleep_entry",
            f"Failed to update sleep entry {entry_id}",
            e
        )
        return False
    finally:
        session.close()


def delete_sleep_entries(entry_ids: Sequence[str]) -> bool:
    """
    Delete several entries in one transaction.

    Returns:
        True if the transaction committed, False otherwise
    """
    ids = [i for i in entry_ids if i]
    if not ids:
        return False

    session = get_session()
    try:
        deleted_count = session.query(SleepEntryRecord).filter(
            SleepEntryRecord.id.in_(ids)
        ).delete(synchronize_session=False)

        session.commit()

        if deleted_count != len(set(ids)):
            logger.warning(f"Deleted {deleted_count} of {len(set(ids))} requested sleep entries")
        else:
            logger.info(f"Deleted {deleted_count} sleep entries")
        return True

    except SQLAlchemyError as e:
        session.rollback()
        log_critical_error(
            "sleep_db.delete_sleep_entries",
            f"Failed to delete sleep entries {ids}",
            e
        )
        return False
    finally:
        session.close()


# =========================================================================
# Reads
# =========================================================================

def get_sleep_entry(entry_id: str) -> Optional[SleepEntry]:
    session = get_session()
    try:
        record = session.query(SleepEntryRecord).filter(
            SleepEntryRecord.id == entry_id
        ).first()
        return _to_entry(record) if record else None

    except SQLAlchemyError as e:
        log_critical_error(
            "sleep_db.get_sleep_entry",
            f"Failed to fetch sleep entry {entry_id}",
            e
        )
        return None
    finally:
        session.close()


def get_sleep_entries_between(start: datetime, end: datetime) -> List[SleepEntry]:
    """
    Entries whose start lies in [start, end), oldest first.
    """
    session = get_session()
    try:
        records = session.query(SleepEntryRecord).filter(
            SleepEntryRecord.start_time >= _to_utc(start),
            SleepEntryRecord.start_time < _to_utc(end),
        ).order_by(SleepEntryRecord.start_time).all()

        return [_to_entry(r) for r in records]

    except SQLAlchemyError as e:
        log_critical_error(
            "sleep_db.get_sleep_entries_between",
            f"Failed to fetch sleep entries between {start} and {end}",
            e
        )
        return []
    finally:
        session.close()


def cleanup_sub_minute_entries(
        min_seconds: int = 60,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
) -> int:
    """
    Delete finished entries shorter than `min_seconds` (accidental start/stop taps).
    With `start`/`end` only entries starting in [start, end) are looked at.

    Returns:
        Number of records deleted
    """
    session = get_session()
    try:
        # duration_minutes is rounded to 2 places; is_sub_minute below is exact
        query = session.query(SleepEntryRecord).filter(
            SleepEntryRecord.end_time.isnot(None),
            SleepEntryRecord.duration_minutes < min_seconds / 60 + 0.01,
        )
        if start is not None:
            query = query.filter(SleepEntryRecord.start_time >= _to_utc(start))
        if end is not None:
            query = query.filter(SleepEntryRecord.start_time < _to_utc(end))
        finished = query.all()

        doomed = [r.id for r in finished if is_sub_minute(_to_entry(r), min_seconds)]
        if not doomed:
            return 0

        deleted_count = session.query(SleepEntryRecord).filter(
            SleepEntryRecord.id.in_(doomed)
        ).delete(synchronize_session=False)
        session.commit()

        logger.info(f"Cleaned up {deleted_count} sub-minute sleep entries (<{min_seconds}s)")
        return deleted_count

    except SQLAlchemyError as e:
        session.rollback()
        log_critical_error(
            "sleep_db.cleanup_sub_minute_entries",
            f"Failed to cleanup sleep entries shorter than {min_seconds}s",
            e
        )
        return 0
    finally:
        session.close()
