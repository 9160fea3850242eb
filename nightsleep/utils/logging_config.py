import sys
import os
import logging
import queue
import threading
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
import atexit

log_queue = queue.Queue()
log_listener = None
log_lock = threading.Lock()

# Console handler created with the listener (kept so tests can quiet it)
_console_handler = None
_pending_console_level = None

GLOBAL_LOG_LEVEL = logging.DEBUG
DEFAULT_CONSOLE_LEVEL = os.getenv("NIGHTSLEEP_CONSOLE_LOG_LEVEL", "WARNING")

_LEVELS = {
    "OFF": logging.CRITICAL + 1,
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


class SafeFormatter(logging.Formatter):
    def format(self, record):
        # Records logged outside an EditorLoggerAdapter carry no key
        if 'editor_key' not in record.__dict__:
            record.__dict__['editor_key'] = "N/A"
        return super().format(record)


LOG_FORMATTER = SafeFormatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(editor_key)s - %(message)s'
)


def _normalize_level(level_name):
    """Level int from a name; "OFF" is above CRITICAL."""
    if isinstance(level_name, int):
        return level_name
    try:
        return _LEVELS[str(level_name).strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level_name!r}") from None


def _log_file_path(log_file):
    logs_dir = os.getenv("NIGHTSLEEP_LOG_DIR") or os.path.join(os.getcwd(), 'logs')
    os.makedirs(logs_dir, exist_ok=True)
    # Process-specific suffix avoids two processes rotating the same file
    base_name, ext = os.path.splitext(log_file)
    return os.path.join(logs_dir, f"{base_name}_{os.getpid()}{ext}")


def get_logger(name: str, level=None, log_file="nightsleep.log"):
    """
    Returns a module-specific logger feeding the shared queue listener.
    Log files are written to ./logs (or NIGHTSLEEP_LOG_DIR).
    """
    global log_listener, _console_handler

    logger = logging.getLogger(name)
    logger.setLevel(level if level is not None else GLOBAL_LOG_LEVEL)
    logger.propagate = False
    if not logger.handlers:
        logger.addHandler(QueueHandler(log_queue))

    with log_lock:
        if log_listener is None:
            file_handler = RotatingFileHandler(
                _log_file_path(log_file), maxBytes=1048576, backupCount=3, encoding='utf-8', delay=True
            )
            file_handler.setFormatter(LOG_FORMATTER)

            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(LOG_FORMATTER)
            console_handler.setLevel(
                _pending_console_level if _pending_console_level is not None
                else _normalize_level(DEFAULT_CONSOLE_LEVEL)
            )
            _console_handler = console_handler

            log_listener = QueueListener(log_queue, file_handler, console_handler)
            log_listener.start()

    return logger


def set_console_level(level_name):
    """
    Set the console handler threshold at runtime.
    If handlers aren't initialized yet, stores a pending level.
    """
    global _pending_console_level
    level = _normalize_level(level_name)

    with log_lock:
        if _console_handler is None:
            _pending_console_level = level
            return
        _console_handler.setLevel(level)


class EditorLoggerAdapter(logging.LoggerAdapter):
    """
    Attaches the boundary/debounce key being processed to every record.
    """
    def __init__(self, logger, extra=None):
        if extra is None or not isinstance(extra, dict):
            extra = {}
        extra.setdefault('editor_key', 'N/A')
        super().__init__(logger, extra)

    def process(self, msg, kwargs):
        extra = kwargs.get('extra', {})
        if not isinstance(extra, dict):
            extra = {}
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs


def stop_logging():
    """Flush and stop the queue listener (used at interpreter shutdown)."""
    global log_listener
    with log_lock:
        if log_listener is not None:
            log_listener.stop()
            log_listener = None


atexit.register(stop_logging)
