"""
Models package exports
"""
from nightsleep.models.sleep_entries import SleepEntryRecord

__all__ = ['SleepEntryRecord']
