# errors.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from nightsleep.night_editor.entries import SleepEntry


class EditorError(Enum):
    INVALID_INPUT = "invalid_input"
    TARGET_NOT_FOUND = "target_not_found"
    WRITE_FAILED = "write_failed"
    BUSY = "busy"
    NOTHING_TO_DELETE = "nothing_to_delete"


class NightEditError(ValueError):
    """Raised by the planning helpers; the editor turns it into an EditorResult."""

    def __init__(self, code: EditorError, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class EditorResult:
    ok: bool
    error: Optional[EditorError] = None
    message: str = ""
    entries: Optional[Tuple[SleepEntry, ...]] = None

    @classmethod
    def success(cls, entries: Optional[Tuple[SleepEntry, ...]] = None, message: str = "") -> "EditorResult":
        return cls(ok=True, entries=entries, message=message)

    @classmethod
    def failure(cls, code: EditorError, message: str) -> "EditorResult":
        return cls(ok=False, error=code, message=message)

    @property
    def needs_user_input(self) -> bool:
        """Blocking message: the user has to adjust the input before retrying."""
        return self.error in (EditorError.TARGET_NOT_FOUND, EditorError.INVALID_INPUT)

    @property
    def can_retry(self) -> bool:
        return self.error in (EditorError.WRITE_FAILED, EditorError.BUSY)
