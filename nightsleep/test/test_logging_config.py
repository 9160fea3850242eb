import logging

import pytest

from nightsleep.utils.logging_config import (
    LOG_FORMATTER,
    EditorLoggerAdapter,
    _normalize_level,
)


@pytest.mark.parametrize(
    "name, expected",
    [("off", logging.CRITICAL + 1), (" warn ", logging.WARNING), ("DEBUG", logging.DEBUG), (15, 15)],
)
def test_normalize_level(name, expected):
    assert _normalize_level(name) == expected


def test_unknown_level_is_rejected():
    with pytest.raises(ValueError):
        _normalize_level("chatty")


def test_formatter_fills_missing_editor_key():
    record = logging.LogRecord("nightsleep.x", logging.INFO, __file__, 1, "hello", None, None)
    assert LOG_FORMATTER.format(record).endswith(" - INFO - N/A - hello")


def test_adapter_tags_records_with_key():
    adapter = EditorLoggerAdapter(logging.getLogger("nightsleep.test"), {"editor_key": "night-end-e"})
    msg, kwargs = adapter.process("saved", {"extra": {"attempt": 2}})
    assert msg == "saved"
    assert kwargs["extra"] == {"attempt": 2, "editor_key": "night-end-e"}
