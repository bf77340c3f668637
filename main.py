#!/usr/bin/env python3
"""
Deep Work - a focus-session timer that survives sleep and restarts.

The countdown is anchored to the wall clock and persisted on every
tick, so a running session is picked up again after the app is
relaunched. Lives in the system tray; use --no-tray to run headless.

Usage:
    pip install -e .
    deepwork
    deepwork --minutes 50 --goal "write the report"
"""

import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from PySide6.QtCore import QCoreApplication, QTimer
from PySide6.QtWidgets import QApplication

from core.models import MIN_DURATION_SECONDS, MAX_DURATION_SECONDS
from core.notifications import QtNotificationScheduler
from core.storage import Storage, PreferencesStore, TimerPersistenceStore
from core.system_events import SystemEventMonitor
from core.timer_engine import TimerEngine

logger = logging.getLogger("deepwork")

HEADLESS_EXIT_DELAY_MS = 1000

cli = typer.Typer(help="Deep Work focus-session timer.", add_completion=False)


def setup_exception_handling():
    """Log unhandled exceptions instead of letting Qt swallow them."""
    def exception_hook(exctype, value, traceback):
        logger.error("Unhandled exception", exc_info=(exctype, value, traceback))
        sys.__excepthook__(exctype, value, traceback)

    sys.excepthook = exception_hook


def setup_signal_handlers(app: QCoreApplication):
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        app.quit()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def run_app(
    db_path: Optional[Path],
    goal: Optional[str],
    minutes: Optional[float],
    no_tray: bool
) -> int:
    """Wire storage, engine, notifications and host, then run the event loop."""
    if no_tray:
        app = QCoreApplication(sys.argv[:1])
    else:
        app = QApplication(sys.argv[:1])
        app.setQuitOnLastWindowClosed(False)
    app.setApplicationName("Deep Work")
    app.setOrganizationName("DeepWork")
    setup_signal_handlers(app)

    storage = Storage(str(db_path) if db_path else None)
    preferences_store = PreferencesStore(storage)
    timer_store = TimerPersistenceStore(storage)
    preferences = preferences_store.load()

    scheduler = QtNotificationScheduler()
    scheduler.notification_enabled = preferences.notifications_enabled
    scheduler.sound_enabled = preferences.sound_enabled

    engine = TimerEngine(timer_store, preferences_store, scheduler)
    monitor = SystemEventMonitor()
    monitor.attach(engine)

    tray = None
    if not no_tray:
        from ui.tray import TrayController
        tray = TrayController(engine, preferences_store, scheduler)
    else:
        engine.phase_changed.connect(
            lambda old, new: logger.info("Timer %s -> %s", old.name, new.name)
        )

        def finish_if_complete():
            # A new session may have replaced the completed one meanwhile
            if engine.is_complete:
                engine.reset()
                app.quit()

        # Give the completion notification a moment to go out before exiting
        engine.session_completed.connect(
            lambda session: QTimer.singleShot(HEADLESS_EXIT_DELAY_MS, finish_if_complete)
        )

    engine.restore()
    if minutes is not None:
        if not engine.is_idle:
            logger.info("Replacing the restored session with a new one")
        engine.start(goal if goal is not None else preferences.last_goal, minutes * 60)

    if tray is not None:
        tray.show()
    elif engine.is_idle:
        logger.info("No session running; nothing to do")
        return 0

    def cleanup():
        monitor.stop()
        engine.cleanup()
        scheduler.cleanup()
        if tray is not None:
            tray.cleanup()

    app.aboutToQuit.connect(cleanup)
    monitor.start()
    return app.exec()


@cli.command()
def run(
    goal: Optional[str] = typer.Option(
        None,
        "--goal",
        help="Goal text for a session started from the command line.",
    ),
    minutes: Optional[float] = typer.Option(
        None,
        "--minutes",
        min=MIN_DURATION_SECONDS / 60,
        max=MAX_DURATION_SECONDS / 60,
        help="Start a session of this many minutes.",
    ),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the SQLite database. Defaults to the app data dir.",
    ),
    no_tray: bool = typer.Option(
        False,
        "--no-tray",
        help="Run without a tray icon and exit when the session ends.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
) -> None:
    """Restore any running session and keep the countdown going."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    setup_exception_handling()
    raise typer.Exit(code=run_app(db_path, goal, minutes, no_tray))


def main():
    """Main entry point for the Deep Work application."""
    cli()


if __name__ == "__main__":
    main()
