import pytest

from nightsleep.models.base import dispose_engines, init_db
from nightsleep.night_editor.sleep_config import SleepConfig
from nightsleep.utils import time_utils
from nightsleep.utils.logging_config import set_console_level

# Expected failures in tests log warnings; keep the console readable
set_console_level("ERROR")


class _FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    @property
    def active(self):
        return self.started and not self.cancelled and not self.fired

    def fire(self):
        if not self.active:
            return
        self.fired = True
        self.callback()


class _FakeTimers:
    """Timer factory for PersistenceScheduler; time only moves when a test fires."""

    def __init__(self):
        self.created = []

    def __call__(self, delay, callback):
        timer = _FakeTimer(delay, callback)
        self.created.append(timer)
        return timer

    @property
    def active(self):
        return [t for t in self.created if t.active]

    def fire_all(self, max_rounds=20):
        for _ in range(max_rounds):
            pending = self.active
            if not pending:
                return
            for timer in pending:
                timer.fire()
        raise AssertionError("timers kept re-arming")


@pytest.fixture(autouse=True)
def utc_local_timezone(monkeypatch):
    monkeypatch.setitem(time_utils.GLOBAL_CONFIG, "local_timezone", "UTC")


@pytest.fixture
def cfg():
    return SleepConfig(local_timezone="UTC")


@pytest.fixture
def timers():
    return _FakeTimers()


@pytest.fixture
def sqlite_db(monkeypatch, tmp_path):
    db_path = str(tmp_path / "nightsleep_test.db").replace("\\", "/")
    monkeypatch.setenv("NIGHTSLEEP_DATABASE_URI", f"sqlite:///{db_path}")
    dispose_engines()
    init_db()
    yield db_path
    dispose_engines()
