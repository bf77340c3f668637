"""
System lifecycle events for the Deep Work focus timer.

Turns host signals into the engine's inbound event channel:
    - foreground/background from QGuiApplication.applicationStateChanged
    - sleep/wake from a heartbeat that notices wall-clock gaps
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Callable

from PySide6.QtCore import QObject, QTimer, Signal, Slot, Qt
from PySide6.QtGui import QGuiApplication

from .models import utc_now

logger = logging.getLogger(__name__)


class SystemEventMonitor(QObject):
    """
    Produces sleep, wake, foreground and background events.

    Signals are delivered on the thread that owns the receiver, so every
    event reaches the engine serialized with its control operations.
    """

    sleep = Signal(object)  # last instant the machine was seen awake
    wake = Signal()
    foreground = Signal()
    background = Signal()

    HEARTBEAT_INTERVAL_MS = 5000

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        sleep_gap: timedelta = timedelta(seconds=30),
        parent: Optional[QObject] = None
    ):
        super().__init__(parent)
        self._clock = clock or utc_now
        self.sleep_gap = sleep_gap
        self._last_beat: Optional[datetime] = None
        self._in_foreground = True

        self._heartbeat = QTimer(self)
        self._heartbeat.setInterval(self.HEARTBEAT_INTERVAL_MS)
        self._heartbeat.timeout.connect(self.heartbeat)

    def attach(self, engine):
        """Route every event into the engine's handlers."""
        self.sleep.connect(engine.on_system_sleep)
        self.wake.connect(engine.on_system_wake)
        self.foreground.connect(engine.on_foreground)
        self.background.connect(engine.on_background)

    def start(self):
        """Begin watching. Application state is only available with a GUI app."""
        app = QGuiApplication.instance()
        if isinstance(app, QGuiApplication):
            app.applicationStateChanged.connect(self.handle_application_state)
        self._last_beat = self._clock()
        self._heartbeat.start()

    def stop(self):
        self._heartbeat.stop()
        self._last_beat = None

    @Slot()
    def heartbeat(self):
        """
        Compare the wall clock against the previous beat.
        A gap much longer than the interval means the process was suspended.
        """
        now = self._clock()
        last = self._last_beat
        self._last_beat = now
        if last is None:
            return

        expected = timedelta(milliseconds=self.HEARTBEAT_INTERVAL_MS)
        gap = now - last
        if gap > expected + self.sleep_gap:
            logger.info("Wall clock jumped %s between heartbeats; treating as sleep", gap)
            self.sleep.emit(last)
            self.wake.emit()

    @Slot(Qt.ApplicationState)
    def handle_application_state(self, state: Qt.ApplicationState):
        active = state == Qt.ApplicationState.ApplicationActive
        if active == self._in_foreground:
            return

        self._in_foreground = active
        if active:
            logger.debug("Application moved to the foreground")
            self.foreground.emit()
        else:
            logger.debug("Application moved to the background")
            self.background.emit()
