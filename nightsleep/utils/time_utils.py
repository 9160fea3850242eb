from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo
from typing import Optional, Union

from nightsleep.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_LOCAL_TZ = "Europe/Berlin"

# Process-wide config; if you later need per-user TZ, do not mutate this globally.
GLOBAL_CONFIG = {
    "local_timezone": DEFAULT_LOCAL_TZ
}

# Pickers may hand back epoch-era dates when only the clock time was changed
MIN_VALID_MANUAL_YEAR = 2000
MAX_VALID_MANUAL_YEAR = 2100


def get_local_timezone() -> ZoneInfo:
    """
    Returns the configured local timezone.
    Falls back to UTC if misconfigured.
    """
    tz_name = GLOBAL_CONFIG.get("local_timezone") or DEFAULT_LOCAL_TZ
    try:
        return ZoneInfo(tz_name)
    except Exception as e:
        logger.error(f"Invalid timezone '{tz_name}', falling back to UTC: {e}")
        return ZoneInfo("UTC")


def update_local_timezone(new_timezone: str) -> None:
    """
    Updates the local timezone used by helpers.

    Raises if the timezone is invalid.
    """
    try:
        ZoneInfo(new_timezone)
    except Exception as e:
        raise ValueError(f"Invalid timezone: {new_timezone}") from e

    GLOBAL_CONFIG["local_timezone"] = new_timezone
    logger.info(f"Local timezone updated to {new_timezone}")


def _parse_iso_like(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except Exception as e:
        raise ValueError(f"Invalid datetime string: {value}") from e


def local_to_utc(local_time: Union[str, datetime]) -> datetime:
    """
    Converts a local time (string or datetime) to an aware UTC datetime.
    Naive input is assumed to be in the configured local timezone.
    """
    if isinstance(local_time, datetime):
        dt = local_time
    elif isinstance(local_time, str):
        dt = _parse_iso_like(local_time)
    else:
        raise TypeError(f"Unsupported type for local_to_utc: {type(local_time)}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=get_local_timezone())

    return dt.astimezone(timezone.utc)


def utc_to_local(utc_time: Union[str, datetime]) -> datetime:
    """
    Converts a UTC time (string or datetime) to an aware local datetime.
    Naive input is assumed to be UTC (SQLite hands stored values back naive).
    """
    if isinstance(utc_time, datetime):
        dt = utc_time
    elif isinstance(utc_time, str):
        dt = _parse_iso_like(utc_time)
    else:
        raise TypeError(f"Unsupported type for utc_to_local: {type(utc_time)}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(get_local_timezone())


def now_like(reference: Optional[datetime] = None) -> datetime:
    """
    Current time in the same representation as `reference`: aware in the
    reference's zone, or naive local time when the reference is naive.
    """
    if reference is not None and reference.tzinfo is None:
        return datetime.now()
    if reference is not None:
        return datetime.now(reference.tzinfo)
    return datetime.now(get_local_timezone())


def truncate_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def minute_bucket(value: Optional[datetime]) -> Optional[datetime]:
    """Minute-truncated value, or None (used for tolerant timestamp comparison)."""
    if value is None:
        return None
    return truncate_to_minute(value)


def with_reference_date(picked: datetime, reference: datetime) -> datetime:
    """Keep the clock time of `picked` but move it onto the calendar day of `reference`."""
    return reference.replace(hour=picked.hour, minute=picked.minute, second=0, microsecond=0)


def _is_valid_manual_date(value: datetime) -> bool:
    return MIN_VALID_MANUAL_YEAR <= value.year <= MAX_VALID_MANUAL_YEAR


def sanitize_picked_time(value: Optional[datetime], reference: datetime) -> datetime:
    """
    Normalize a picker value into a usable absolute instant.

    - Valid values are returned minute-truncated.
    - Epoch-era values (year < 2000) keep their clock time but take the
      reference's calendar day.
    - Anything else falls back to the reference.
    """
    if value is None:
        return truncate_to_minute(reference)
    if _is_valid_manual_date(value):
        return truncate_to_minute(value)
    if value.year < MIN_VALID_MANUAL_YEAR:
        patched = with_reference_date(value, reference)
        if _is_valid_manual_date(patched):
            return patched
    logger.debug(f"Discarding out-of-range picker value {value!r}; using reference {reference!r}")
    return truncate_to_minute(reference)

