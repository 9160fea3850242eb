"""
Night Editor

Components:
- NightSleepEditor: one editing session over one night
- group_into_nights() / build_night_group(): bucket sleep entries into nights
- derive_wake_phases(): gaps between the entries of a night
- DbSleepEntryActions: SQLAlchemy-backed host actions
"""

from nightsleep.night_editor.sleep_config import (
    SleepConfig,
    get_sleep_config,
)
from nightsleep.night_editor.entries import SleepEntry
from nightsleep.night_editor.night_window import (
    NightGroup,
    build_night_group,
    group_into_nights,
)
from nightsleep.night_editor.wake_phases import (
    WakePhase,
    derive_wake_phases,
)
from nightsleep.night_editor.sleep_actions import (
    DbSleepEntryActions,
    SleepEntryActions,
)
from nightsleep.night_editor.editor import NightSleepEditor

__all__ = [
    'SleepConfig',
    'get_sleep_config',
    'SleepEntry',
    'NightGroup',
    'build_night_group',
    'group_into_nights',
    'WakePhase',
    'derive_wake_phases',
    'SleepEntryActions',
    'DbSleepEntryActions',
    'NightSleepEditor',
]
