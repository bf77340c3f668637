"""
System tray controller for the Deep Work focus timer.
Observes the timer engine and exposes its controls from the tray menu.
"""

import logging
from typing import Optional

from PySide6.QtWidgets import QSystemTrayIcon, QMenu, QApplication
from PySide6.QtCore import QObject, Qt, Slot, QTimer
from PySide6.QtGui import QIcon, QAction, QPixmap, QPainter, QColor

from core.models import TimerState, TimerSnapshot, Session, format_duration
from core.notifications import QtNotificationScheduler
from core.storage import PreferencesStore
from core.timer_engine import TimerEngine

logger = logging.getLogger(__name__)


def create_app_icon() -> QIcon:
    """Create a simple app icon programmatically."""
    sizes = [16, 32, 48, 64]
    icon = QIcon()

    for size in sizes:
        pixmap = QPixmap(size, size)
        pixmap.fill(Qt.GlobalColor.transparent)

        painter = QPainter(pixmap)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)

        # Outer ring
        painter.setPen(Qt.PenStyle.NoPen)
        painter.setBrush(QColor("#2E3A59"))
        margin = size // 8
        painter.drawEllipse(margin, margin, size - 2*margin, size - 2*margin)

        # Inner dot
        inner_margin = size // 3
        painter.setBrush(QColor("white"))
        painter.drawEllipse(
            inner_margin, inner_margin,
            size - 2*inner_margin, size - 2*inner_margin
        )

        painter.end()
        icon.addPixmap(pixmap)

    return icon


class TrayController(QObject):
    """
    Tray icon with Start / Pause / Stop actions and a live tooltip.
    After a session completes the engine is reset after a short delay.
    """

    APP_TITLE = "Deep Work"
    AUTO_RESET_DELAY_MS = 5000

    def __init__(
        self,
        engine: TimerEngine,
        preferences_store: PreferencesStore,
        scheduler: Optional[QtNotificationScheduler] = None,
        parent: Optional[QObject] = None
    ):
        super().__init__(parent)

        self.engine = engine
        self.preferences_store = preferences_store
        self.scheduler = scheduler

        self._reset_timer = QTimer(self)
        self._reset_timer.setSingleShot(True)
        self._reset_timer.setInterval(self.AUTO_RESET_DELAY_MS)
        self._reset_timer.timeout.connect(self.engine.reset)

        self.tray_icon = QSystemTrayIcon(create_app_icon(), self)
        self.tray_icon.setToolTip(self.APP_TITLE)
        self._setup_menu()
        self._connect_signals()

        if self.scheduler is not None:
            self.scheduler.set_tray_icon(self.tray_icon)

    def _setup_menu(self):
        self.menu = QMenu()

        self.start_action = QAction("Start Session", self)
        self.start_action.triggered.connect(self._start_session)
        self.menu.addAction(self.start_action)

        self.pause_action = QAction("Pause", self)
        self.pause_action.triggered.connect(self._toggle_pause)
        self.pause_action.setEnabled(False)
        self.menu.addAction(self.pause_action)

        self.stop_action = QAction("Stop", self)
        self.stop_action.triggered.connect(self.engine.stop)
        self.stop_action.setEnabled(False)
        self.menu.addAction(self.stop_action)

        self.menu.addSeparator()

        quit_action = QAction("Quit", self)
        quit_action.triggered.connect(self._quit_app)
        self.menu.addAction(quit_action)

        self.tray_icon.setContextMenu(self.menu)

    def _connect_signals(self):
        self.engine.state_changed.connect(self._on_state_changed)
        self.engine.phase_changed.connect(self._on_phase_changed)
        self.engine.session_completed.connect(self._on_session_completed)
        self.engine.countdown_warning.connect(self._on_countdown_warning)
        self.engine.completion_feedback.connect(QApplication.beep)

    def show(self):
        if QSystemTrayIcon.isSystemTrayAvailable():
            self.tray_icon.show()
        else:
            logger.warning("System tray not available; running without a tray icon")
        self._on_phase_changed(self.engine.state, self.engine.state)
        self._on_state_changed(self.engine.snapshot)

    @Slot(TimerSnapshot)
    def _on_state_changed(self, snapshot: TimerSnapshot):
        if snapshot.state == TimerState.IDLE:
            self.tray_icon.setToolTip(self.APP_TITLE)
            return

        label = {
            TimerState.RUNNING: "Focusing",
            TimerState.PAUSED: "Paused",
            TimerState.COMPLETED: "Complete",
        }[snapshot.state]
        self.tray_icon.setToolTip(
            f"{self.APP_TITLE} - {label}\n{format_duration(snapshot.time_remaining)}"
        )

    @Slot(TimerState, TimerState)
    def _on_phase_changed(self, old_state: TimerState, new_state: TimerState):
        is_running = new_state == TimerState.RUNNING
        is_paused = new_state == TimerState.PAUSED

        self.start_action.setEnabled(new_state in (TimerState.IDLE, TimerState.COMPLETED))
        self.pause_action.setEnabled(is_running or is_paused)
        self.pause_action.setText("Resume" if is_paused else "Pause")
        self.stop_action.setEnabled(new_state != TimerState.IDLE)

        if new_state != TimerState.COMPLETED:
            self._reset_timer.stop()

    @Slot(Session)
    def _on_session_completed(self, session: Session):
        logger.info("Completed session %r (%.0f s)", session.goal, session.duration)
        self._reset_timer.start()

    @Slot(int)
    def _on_countdown_warning(self, seconds: int):
        if self.tray_icon.isVisible():
            self.tray_icon.showMessage(
                self.APP_TITLE,
                f"{seconds} seconds left",
                QSystemTrayIcon.MessageIcon.Information,
                2000
            )

    @Slot()
    def _start_session(self):
        """Start a session with the saved default duration and last goal."""
        preferences = self.preferences_store.load()
        self.engine.start(preferences.last_goal, preferences.default_duration)

    @Slot()
    def _toggle_pause(self):
        if self.engine.is_paused:
            self.engine.resume()
        else:
            self.engine.pause()

    @Slot()
    def _quit_app(self):
        self.cleanup()
        QApplication.quit()

    def cleanup(self):
        self._reset_timer.stop()
        self.tray_icon.hide()
