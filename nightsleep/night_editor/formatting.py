# formatting.py
"""
Display strings for the night editor (German short units, as shown in the app).
"""
from datetime import datetime


def format_clock_time(value: datetime) -> str:
    return value.strftime("%H:%M")


def minutes_to_hmm(minutes: float) -> str:
    """45 -> "45 Min", 420 -> "7h", 425 -> "7h 05m"."""
    total = int(round(max(0.0, minutes)))
    h, m = divmod(total, 60)
    if h <= 0:
        return f"{m} Min"
    if m == 0:
        return f"{h}h"
    return f"{h}h {m:02d}m"


def format_wake_duration(seconds: int) -> str:
    """30 -> "30 Sek", 310 -> "5 Min 10 Sek", 3900 -> "1h 05m"."""
    seconds = int(max(0, seconds))
    if seconds < 60:
        return f"{seconds} Sek"

    minutes, remaining_seconds = divmod(seconds, 60)
    if minutes < 60:
        if remaining_seconds > 0:
            return f"{minutes} Min {remaining_seconds} Sek"
        return f"{minutes} Min"

    h, m = divmod(minutes, 60)
    if remaining_seconds > 0:
        if m > 0:
            return f"{h}h {m:02d}m {remaining_seconds} Sek"
        return f"{h}h {remaining_seconds} Sek"
    return f"{h}h {m:02d}m" if m > 0 else f"{h}h"
