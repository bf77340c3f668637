"""
Shared helpers for the test suite: a controllable clock, a Qt
application instance and temporary storage.
"""

import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6.QtCore import QCoreApplication

from core.notifications import RecordingScheduler
from core.storage import Storage, PreferencesStore, TimerPersistenceStore
from core.timer_engine import TimerEngine


def ensure_app() -> QCoreApplication:
    """QTimer needs an application (event dispatcher) on the main thread."""
    return QCoreApplication.instance() or QCoreApplication([])


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2025, 7, 18, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class TempStorageMixin:
    """Gives each test a fresh SQLite database in a temp directory."""

    def setUp(self):
        super().setUp()
        self._tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmpdir.name, "test.db")
        self.storage = Storage(self.db_path)
        self.preferences_store = PreferencesStore(self.storage)
        self.timer_store = TimerPersistenceStore(self.storage)

    def tearDown(self):
        self._tmpdir.cleanup()
        super().tearDown()


class EngineTestMixin(TempStorageMixin):
    """Engine wired to a fake clock, a recording scheduler and temp storage."""

    def setUp(self):
        super().setUp()
        ensure_app()
        self.clock = FakeClock()
        self.scheduler = RecordingScheduler()
        self.engine = self.make_engine()

        self.snapshots = []
        self.transitions = []
        self.completed = []
        self.ended = []
        self.warnings = []
        self.feedback = []
        self.engine.state_changed.connect(lambda snapshot: self.snapshots.append(snapshot))
        self.engine.phase_changed.connect(lambda old, new: self.transitions.append((old, new)))
        self.engine.session_completed.connect(lambda session: self.completed.append(session))
        self.engine.session_ended.connect(lambda session: self.ended.append(session))
        self.engine.countdown_warning.connect(lambda seconds: self.warnings.append(seconds))
        self.engine.completion_feedback.connect(lambda: self.feedback.append(True))

    def tearDown(self):
        self.engine.cleanup()
        super().tearDown()

    def make_engine(self) -> TimerEngine:
        """A new engine over the same storage, as after an app relaunch."""
        return TimerEngine(
            self.timer_store,
            self.preferences_store,
            self.scheduler,
            clock=self.clock,
        )
