# base.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
import os
import threading

# Module-level cache for engines and sessionmakers (singleton pattern)
# Keyed by database URI to support both test and dev databases
_engines = {}
_sessionmakers = {}
_engines_lock = threading.Lock()


def get_database_uri():
    """
    Database URI. NIGHTSLEEP_DATABASE_URI wins; otherwise a SQLite file in
    the project root.
    """
    explicit = os.environ.get('NIGHTSLEEP_DATABASE_URI')
    if explicit:
        return explicit
    db_path = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), 'nightsleep.db')
    # Convert to forward slashes for SQLite URI (required on all platforms)
    db_path = db_path.replace('\\', '/')
    return f'sqlite:///{db_path}'


def _create_engine(database_uri):
    if database_uri.startswith('sqlite'):
        # Debounced writes run on timer threads
        return create_engine(
            database_uri,
            echo=False,
            connect_args={'check_same_thread': False},
        )
    return create_engine(database_uri, echo=False, pool_pre_ping=True)


def get_engine():
    """Get (or lazily create) the engine for the current database URI."""
    database_uri = get_database_uri()
    with _engines_lock:
        if database_uri not in _engines:
            _engines[database_uri] = _create_engine(database_uri)
            _sessionmakers[database_uri] = sessionmaker(bind=_engines[database_uri])
        return _engines[database_uri]


def get_session():
    """
    Single source of truth for database sessions.

    Thread Safety:
    - The engine is thread-safe and shared across all threads
    - Each call creates a NEW session - sessions are NOT thread-safe
    - Each thread must use its own session instance
    """
    database_uri = get_database_uri()
    get_engine()
    with _engines_lock:
        session_maker = _sessionmakers[database_uri]
    return session_maker()


def init_db():
    """Create all tables for the current database URI."""
    # Import models so they register on Base.metadata
    from nightsleep.models import sleep_entries  # noqa: F401
    Base.metadata.create_all(get_engine())


def dispose_engines():
    """Dispose and forget every cached engine (tests switch URIs)."""
    with _engines_lock:
        for engine in _engines.values():
            engine.dispose()
        _engines.clear()
        _sessionmakers.clear()


# Base declarative base (this is safe to create at import time)
Base = declarative_base()
