# persistence_scheduler.py
"""
Persistence Scheduler
=====================

Debounces boundary writes per key.

- A new write for a key cancels that key's pending timer and restarts the
  debounce window (250 ms by default). Only the last write survives.
- If the key's previous write is still running when the timer fires, the
  write is deferred (300 ms by default) instead of racing it.
- Writes for different keys are independent and may overlap.

Per-key state: IDLE -> PENDING(timer) -> IDLE, or PENDING -> RETRYING(timer)
while the previous write for the same key is still in flight.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from nightsleep.night_editor.sleep_config import SleepConfig, get_sleep_config
from nightsleep.utils.logging_config import EditorLoggerAdapter, get_logger

logger = get_logger(__name__)

WriteFn = Callable[[], Any]


# A timer handle only needs start() and cancel(); threading.Timer fits.
TimerHandle = Any
TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def _thread_timer(delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay_seconds, callback)
    timer.daemon = True
    return timer


class WriteState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    RETRYING = "retrying"


@dataclass
class _KeySlot:
    state: WriteState = WriteState.IDLE
    timer: Optional[TimerHandle] = None
    token: int = 0
    write: Optional[WriteFn] = None
    in_flight: bool = False


class PersistenceScheduler:
    def __init__(
        self,
        cfg: Optional[SleepConfig] = None,
        timer_factory: Optional[TimerFactory] = None,
        debounce_seconds: Optional[float] = None,
        busy_retry_seconds: Optional[float] = None,
    ):
        cfg = cfg or get_sleep_config()
        self.debounce_seconds = cfg.debounce_seconds if debounce_seconds is None else debounce_seconds
        self.busy_retry_seconds = cfg.busy_retry_seconds if busy_retry_seconds is None else busy_retry_seconds
        self._timer_factory = timer_factory or _thread_timer

        self._lock = threading.Lock()
        self._slots: Dict[str, _KeySlot] = {}
        self._write_count = 0
        self._error_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def schedule(self, key: str, write: WriteFn) -> None:
        """Replace any pending write for `key` and restart its debounce window."""
        with self._lock:
            slot = self._slots.setdefault(key, _KeySlot())
            self._cancel_timer(slot)
            slot.write = write
            slot.state = WriteState.PENDING
            self._arm(key, slot, self.debounce_seconds)

        logger.debug("Write scheduled for %s (debounce=%ss)", key, self.debounce_seconds)

    def cancel(self, key: str) -> bool:
        """Drop the pending write for `key`. A write already running is left alone."""
        with self._lock:
            slot = self._slots.get(key)
            if slot is None or slot.state is WriteState.IDLE:
                return False
            self._cancel_timer(slot)
            slot.write = None
            slot.state = WriteState.IDLE
            return True

    def cancel_all(self) -> None:
        with self._lock:
            for slot in self._slots.values():
                self._cancel_timer(slot)
                slot.write = None
                slot.state = WriteState.IDLE
        logger.debug("All pending writes cancelled")

    def flush(self) -> int:
        """
        Run every pending write now, on the calling thread, instead of
        waiting for its timer. Keys whose previous write is still running
        stay pending. Returns the number of writes run.
        """
        ready = []
        with self._lock:
            for key, slot in self._slots.items():
                if slot.state is WriteState.IDLE or slot.write is None or slot.in_flight:
                    continue
                self._cancel_timer(slot)
                ready.append((key, slot, slot.write))
                slot.write = None
                slot.state = WriteState.IDLE
                slot.in_flight = True

        for key, slot, write in ready:
            self._run(key, slot, write)
        if ready:
            logger.debug("Flushed %d pending write(s)", len(ready))
        return len(ready)

    def state(self, key: str) -> WriteState:
        with self._lock:
            slot = self._slots.get(key)
            return slot.state if slot else WriteState.IDLE

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            slot = self._slots.get(key)
            return bool(slot and slot.in_flight)

    @property
    def is_busy(self) -> bool:
        """True while any write is running."""
        with self._lock:
            return any(slot.in_flight for slot in self._slots.values())

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return any(slot.state is not WriteState.IDLE for slot in self._slots.values())

    def pending_keys(self) -> List[str]:
        with self._lock:
            return [k for k, s in self._slots.items() if s.state is not WriteState.IDLE]

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "keys": {k: s.state.value for k, s in self._slots.items()},
                "in_flight": [k for k, s in self._slots.items() if s.in_flight],
                "write_count": self._write_count,
                "error_count": self._error_count,
            }

    # ------------------------------------------------------------------
    # Internals (call with self._lock held unless noted)
    # ------------------------------------------------------------------
    def _arm(self, key: str, slot: _KeySlot, delay_seconds: float) -> None:
        slot.token += 1
        token = slot.token
        slot.timer = self._timer_factory(delay_seconds, lambda: self._fire(key, token))
        slot.timer.start()

    @staticmethod
    def _cancel_timer(slot: _KeySlot) -> None:
        if slot.timer is not None:
            slot.timer.cancel()
            slot.timer = None
        slot.token += 1

    def _fire(self, key: str, token: int) -> None:
        # Runs on the timer thread; takes the lock itself
        log = EditorLoggerAdapter(logger, {"editor_key": key})
        with self._lock:
            slot = self._slots.get(key)
            if slot is None or slot.token != token or slot.write is None:
                return  # superseded or cancelled

            if slot.in_flight:
                slot.state = WriteState.RETRYING
                self._arm(key, slot, self.busy_retry_seconds)
                log.debug("Previous write still running; deferring %ss", self.busy_retry_seconds)
                return

            write = slot.write
            slot.write = None
            slot.timer = None
            slot.state = WriteState.IDLE
            slot.in_flight = True

        self._run(key, slot, write)

    def _run(self, key: str, slot: _KeySlot, write: WriteFn) -> None:
        # Lock not held; slot.in_flight is already set
        try:
            write()
            with self._lock:
                self._write_count += 1
        except Exception:
            with self._lock:
                self._error_count += 1
            EditorLoggerAdapter(logger, {"editor_key": key}).exception("Debounced write failed")
        finally:
            with self._lock:
                slot.in_flight = False
