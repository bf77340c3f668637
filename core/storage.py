"""
SQLite storage module for the Deep Work focus timer.
Provides a durable key-value medium plus the preference and timer stores built on it.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .models import UserPreferences, PersistedTimerState, validate_duration

logger = logging.getLogger(__name__)

DATA_DIR_ENV = 'DEEPWORK_DATA_DIR'

# Persisted key space
PREFERENCES_KEY = 'UserPreferences'
TIMER_START_TIME_KEY = 'TimerStartTime'
TIMER_ORIGINAL_DURATION_KEY = 'TimerOriginalDuration'
TIMER_IS_ACTIVE_KEY = 'TimerIsActive'
TIMER_SESSION_GOAL_KEY = 'TimerSessionGoal'


def get_app_data_dir() -> Path:
    """
    Get the appropriate application data directory based on OS.
    Creates the directory if it doesn't exist.
    """
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        base = Path(override)
        base.mkdir(parents=True, exist_ok=True)
        return base

    if os.name == 'nt':  # Windows
        base = Path(os.environ.get('APPDATA', Path.home()))
    elif os.name == 'posix':
        # macOS uses ~/Library/Application Support, Linux uses ~/.local/share
        if os.uname().sysname == 'Darwin':
            base = Path.home() / 'Library' / 'Application Support'
        else:
            base = Path(os.environ.get('XDG_DATA_HOME', Path.home() / '.local' / 'share'))
    else:
        base = Path.home()

    app_dir = base / 'DeepWork'
    app_dir.mkdir(parents=True, exist_ok=True)
    return app_dir


class Storage:
    """
    Durable key-value store backed by a single SQLite table.

    Every operation is best-effort: database errors are logged and
    reported through the return value, never raised to the caller.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize storage with database path.

        Args:
            db_path: Optional custom path for database file.
                    If None, uses default app data directory.
        """
        if db_path is None:
            db_path = str(get_app_data_dir() / 'deepwork.db')

        self.db_path = db_path
        try:
            self._init_database()
        except (sqlite3.Error, OSError) as e:
            logger.warning("Could not initialize database at %s: %s", self.db_path, e)

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise e
        finally:
            conn.close()

    def _init_database(self):
        """Initialize database schema if the table doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            ''')

    def get(self, key: str) -> Optional[str]:
        """Return the stored value for a key, or None if absent or unreadable."""
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute('SELECT value FROM settings WHERE key = ?', (key,))
                row = cursor.fetchone()
                return row['value'] if row else None
        except (sqlite3.Error, OSError) as e:
            logger.warning("Could not read key %s: %s", key, e)
            return None

    def set(self, key: str, value: str) -> bool:
        """Store a value. Returns False if the write failed."""
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute('''
                    INSERT OR REPLACE INTO settings (key, value)
                    VALUES (?, ?)
                ''', (key, value))
            return True
        except (sqlite3.Error, OSError) as e:
            logger.warning("Could not write key %s: %s", key, e)
            return False

    def set_many(self, items: dict) -> bool:
        """Store several values in one transaction."""
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.executemany('''
                    INSERT OR REPLACE INTO settings (key, value)
                    VALUES (?, ?)
                ''', list(items.items()))
            return True
        except (sqlite3.Error, OSError) as e:
            logger.warning("Could not write keys %s: %s", ", ".join(items), e)
            return False

    def delete(self, *keys: str) -> bool:
        """Remove keys. Deleting a missing key is not an error."""
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.executemany(
                    'DELETE FROM settings WHERE key = ?',
                    [(key,) for key in keys]
                )
            return True
        except (sqlite3.Error, OSError) as e:
            logger.warning("Could not delete keys %s: %s", ", ".join(keys), e)
            return False


class PreferencesStore:
    """
    Load/save of UserPreferences as a JSON blob.
    Writes through on every mutation.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def load(self) -> UserPreferences:
        """Load preferences, falling back to defaults if missing or corrupt."""
        raw = self.storage.get(PREFERENCES_KEY)
        if raw is None:
            return UserPreferences()
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("preferences payload is not an object")
            return UserPreferences.from_dict(data)
        except (ValueError, TypeError) as e:
            logger.warning("Discarding unreadable preferences: %s", e)
            return UserPreferences()

    def save(self, preferences: UserPreferences) -> bool:
        return self.storage.set(PREFERENCES_KEY, json.dumps(preferences.to_dict()))

    def update(self, **changes) -> UserPreferences:
        """Apply changes to the stored preferences and save them immediately."""
        preferences = self.load()
        for key, value in changes.items():
            if not hasattr(preferences, key):
                raise AttributeError(f"Unknown preference: {key}")
            setattr(preferences, key, value)
        self.save(preferences)
        return preferences

    def save_goal(self, goal: str):
        self.update(last_goal=goal)

    def load_last_goal(self) -> str:
        return self.load().last_goal

    def update_session_duration(self, seconds: float) -> bool:
        """
        Update the default session duration.

        Returns:
            False (and saves nothing) if the duration is outside 5-180 minutes.
        """
        if not validate_duration(seconds):
            return False
        self.update(default_duration=float(seconds))
        return True


class TimerPersistenceStore:
    """
    Persists the in-flight countdown so a running session survives restarts.

    The state is spread over four keys; a partially written state reads
    back as None, which callers treat as "no running session".
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def save(
        self,
        start_instant: datetime,
        original_duration: float,
        is_active: bool,
        goal: str = ""
    ) -> bool:
        return self.storage.set_many({
            TIMER_START_TIME_KEY: start_instant.isoformat(),
            TIMER_ORIGINAL_DURATION_KEY: repr(float(original_duration)),
            TIMER_IS_ACTIVE_KEY: 'true' if is_active else 'false',
            TIMER_SESSION_GOAL_KEY: goal,
        })

    def load(self) -> Optional[PersistedTimerState]:
        start_raw = self.storage.get(TIMER_START_TIME_KEY)
        duration_raw = self.storage.get(TIMER_ORIGINAL_DURATION_KEY)
        active_raw = self.storage.get(TIMER_IS_ACTIVE_KEY)
        if start_raw is None or duration_raw is None or active_raw is None:
            return None

        try:
            start_instant = datetime.fromisoformat(start_raw)
            original_duration = float(duration_raw)
        except ValueError as e:
            logger.warning("Discarding unreadable timer state: %s", e)
            return None

        if start_instant.tzinfo is None:
            start_instant = start_instant.replace(tzinfo=timezone.utc)
        if active_raw.lower() not in ('true', 'false'):
            logger.warning("Discarding timer state with active flag %r", active_raw)
            return None

        return PersistedTimerState(
            start_instant=start_instant,
            original_duration=original_duration,
            is_active=active_raw.lower() == 'true',
            goal=self.storage.get(TIMER_SESSION_GOAL_KEY) or "",
        )

    def clear(self) -> bool:
        return self.storage.delete(
            TIMER_START_TIME_KEY,
            TIMER_ORIGINAL_DURATION_KEY,
            TIMER_IS_ACTIVE_KEY,
            TIMER_SESSION_GOAL_KEY,
        )
