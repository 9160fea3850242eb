# overlay.py
"""
Optimistic overlay over the authoritative night.

The editor is always in exactly one of two states:
- Authoritative(group): what the store last reported.
- Optimistic(group, baseline): a locally edited night shown before the store
  confirms it, plus the authoritative night to roll back to.

Receiving a fresh authoritative night always discards any overlay.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Union

from nightsleep.night_editor.entries import SleepEntry
from nightsleep.night_editor.night_window import NightGroup, build_night_group
from nightsleep.night_editor.sleep_config import SleepConfig


@dataclass(frozen=True)
class Authoritative:
    group: NightGroup


@dataclass(frozen=True)
class Optimistic:
    group: NightGroup
    baseline: NightGroup


NightState = Union[Authoritative, Optimistic]


def baseline_of(state: NightState) -> NightGroup:
    if isinstance(state, Optimistic):
        return state.baseline
    return state.group


def apply_optimistic(
    state: NightState,
    entries: Iterable[SleepEntry],
    now: Optional[datetime] = None,
    cfg: Optional[SleepConfig] = None,
) -> NightState:
    """
    Overlay a new entry list. Stacked overlays keep the original baseline.
    An empty entry list leaves the state unchanged.
    """
    group = build_night_group(entries, now, cfg)
    if group is None:
        return state
    return Optimistic(group=group, baseline=baseline_of(state))


def receive_authoritative(state: NightState, group: NightGroup) -> Authoritative:
    # Any overlay is dropped; the store is the source of truth again
    return Authoritative(group)


def is_optimistic(state: NightState) -> bool:
    return isinstance(state, Optimistic)
