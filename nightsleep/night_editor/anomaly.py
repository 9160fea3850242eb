# anomaly.py
"""
Anomaly Detector & Auto-Fixer

A night spanning more than 24 hours is almost always a missed "woke up" tap
that left an entry open for days. The fixer proposes an end timestamp that
keeps the recorded wake-up clock time but moves it to the calendar day that
gives the most plausible night length.

Proposals are never applied here; the editor applies one only on explicit
confirmation.

The same span bounds a running entry: one left open longer than that was
never stopped and gets closed at start + span when its night is loaded.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from nightsleep.night_editor.entries import SleepEntry
from nightsleep.night_editor.sleep_config import SleepConfig, get_sleep_config
from nightsleep.utils.logging_config import get_logger

logger = get_logger(__name__)


def span_minutes(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


def is_anomalous(start: datetime, end: datetime, cfg: Optional[SleepConfig] = None) -> bool:
    cfg = cfg or get_sleep_config()
    return span_minutes(start, end) > cfg.anomaly_max_span_minutes


def is_stale_running_entry(entry: SleepEntry, now: datetime, cfg: Optional[SleepConfig] = None) -> bool:
    """A running entry older than the anomaly span was never stopped."""
    cfg = cfg or get_sleep_config()
    if not entry.is_ongoing:
        return False
    return span_minutes(entry.start_time, now) > cfg.anomaly_max_span_minutes


def auto_close_end(entry: SleepEntry, cfg: Optional[SleepConfig] = None) -> datetime:
    """End time given to a stale running entry: its start plus the anomaly span."""
    cfg = cfg or get_sleep_config()
    return entry.start_time + timedelta(minutes=cfg.anomaly_max_span_minutes)


def _end_on_day(start: datetime, end: datetime, offset_days: int) -> datetime:
    day = start.date() + timedelta(days=offset_days)
    return end.replace(year=day.year, month=day.month, day=day.day)


def score_span(span: float, cfg: Optional[SleepConfig] = None) -> float:
    """Lower is better: heavy penalty past the night window, mild one away from 10 h."""
    cfg = cfg or get_sleep_config()
    over_window = max(0.0, span - cfg.window_minutes)
    return over_window * cfg.over_window_weight + abs(span - cfg.target_span_minutes)


def fix_candidates(
    start: datetime,
    end: datetime,
    cfg: Optional[SleepConfig] = None,
) -> List[Tuple[datetime, float]]:
    """Surviving (candidate_end, score) pairs in offset order."""
    cfg = cfg or get_sleep_config()
    out: List[Tuple[datetime, float]] = []
    for offset in cfg.fix_day_offsets:
        candidate = _end_on_day(start, end, offset)
        if candidate <= start:
            continue
        span = span_minutes(start, candidate)
        if span < cfg.min_fix_span_minutes:
            continue
        out.append((candidate, score_span(span, cfg)))
    return out


def propose_end_fix(start: datetime, end: datetime, cfg: Optional[SleepConfig] = None) -> datetime:
    cfg = cfg or get_sleep_config()
    candidates = fix_candidates(start, end, cfg)
    if not candidates:
        fallback = _end_on_day(start, end, 1)
        logger.debug(f"No plausible end found for night starting {start}; falling back to {fallback}")
        return fallback

    best, best_score = min(candidates, key=lambda c: c[1])
    logger.debug(f"Proposed end fix {best} (score {best_score:.1f}) for night {start} -> {end}")
    return best
