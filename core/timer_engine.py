"""
Timer engine for the Deep Work focus timer.
Implements the session countdown as a state machine.
Remaining time is always derived from the wall clock, so missed ticks
(sleep, throttling, a killed process) correct themselves on the next tick.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional, Callable

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from .models import (
    TimerState, TimerContext, TimerSnapshot, Session,
    WARNING_THRESHOLDS, finalize_session, utc_now
)
from .notifications import NotificationScheduler, NotificationHandle
from .storage import PreferencesStore, TimerPersistenceStore

logger = logging.getLogger(__name__)


class TimerEngine(QObject):
    """
    Core timer engine implementing a state machine.

    States:
        IDLE: No session
        RUNNING: Countdown advancing
        PAUSED: Countdown frozen (can resume)
        COMPLETED: Countdown reached zero; terminal until stop()/reset()

    Signals:
        state_changed: Emitted on every tick and transition with a TimerSnapshot
        phase_changed: Emitted when state changes (provides old_state, new_state)
        session_completed: Emitted once when the countdown finishes (finalized Session)
        session_ended: Emitted when a session is ended early via end_session()
        countdown_warning: Emitted once per threshold with the seconds left
        completion_feedback: User-visible completion cue, once per session
    """

    # Signals
    state_changed = Signal(TimerSnapshot)
    phase_changed = Signal(TimerState, TimerState)  # old_state, new_state
    session_completed = Signal(Session)
    session_ended = Signal(Session)
    countdown_warning = Signal(int)
    completion_feedback = Signal()

    TICK_INTERVAL_MS = 1000
    # Ticks further apart than this mean the process was suspended
    SLEEP_GAP = timedelta(seconds=30)

    NOTIFICATION_TITLE = "Session Complete"
    NOTIFICATION_BODY = "Great job! Your session is complete."

    def __init__(
        self,
        timer_store: TimerPersistenceStore,
        preferences_store: PreferencesStore,
        scheduler: NotificationScheduler,
        clock: Optional[Callable[[], datetime]] = None,
        parent: Optional[QObject] = None
    ):
        """
        Initialize the timer engine.

        Args:
            timer_store: Where the in-flight countdown is persisted.
            preferences_store: Source of blocked lists and notification toggles.
            scheduler: Receives the expected completion instant.
            clock: Returns the current aware datetime. Defaults to UTC now.
            parent: Optional Qt parent object.
        """
        super().__init__(parent)

        self.timer_store = timer_store
        self.preferences_store = preferences_store
        self.scheduler = scheduler
        self._clock = clock or utc_now

        self._context = TimerContext()
        self._session: Optional[Session] = None
        self._notification: Optional[NotificationHandle] = None
        self._warnings_fired: set = set()
        self._last_tick_at: Optional[datetime] = None

        self._qt_timer = QTimer(self)
        self._qt_timer.setInterval(self.TICK_INTERVAL_MS)
        self._qt_timer.timeout.connect(self.tick)

    @property
    def context(self) -> TimerContext:
        """Get current timer context."""
        return self._context

    @property
    def snapshot(self) -> TimerSnapshot:
        return self._context.snapshot()

    @property
    def state(self) -> TimerState:
        return self._context.state

    @property
    def current_session(self) -> Optional[Session]:
        """The running session, or its finalized form once completed."""
        return self._session

    @property
    def time_remaining(self) -> float:
        return self._context.time_remaining

    @property
    def progress(self) -> float:
        return self._context.progress

    @property
    def is_active(self) -> bool:
        return self._context.is_active

    @property
    def is_complete(self) -> bool:
        return self._context.is_complete

    @property
    def is_idle(self) -> bool:
        return self._context.state == TimerState.IDLE

    @property
    def is_running(self) -> bool:
        return self._context.state == TimerState.RUNNING

    @property
    def is_paused(self) -> bool:
        return self._context.state == TimerState.PAUSED

    @property
    def is_ticking(self) -> bool:
        """Whether the periodic recomputation is scheduled."""
        return self._qt_timer.isActive()

    # ==================== Control operations ====================

    def create_session(self, goal: str, duration: float) -> Session:
        """
        Build a new session, snapshotting the default blocked lists.
        The goal is remembered as the last goal in preferences.
        """
        preferences = self.preferences_store.update(last_goal=goal)
        return Session(
            goal=goal,
            duration=float(duration),
            start_time=self._clock(),
            blocked_apps=preferences.default_blocked_apps,
            blocked_websites=preferences.default_blocked_websites,
        )

    def start(self, goal: str, duration: float) -> Session:
        """
        Start a new session, discarding whatever the engine was doing.

        Args:
            goal: Free text goal for the session.
            duration: Planned length in seconds (validated by the caller).

        Returns:
            The session that was started.
        """
        session = self.create_session(goal, duration)
        self.start_session(session)
        return session

    def start_session(self, session: Session):
        """Start the countdown for an already created session."""
        self._halt()

        old_state = self._context.state
        now = self._clock()
        duration = float(session.duration)

        self._session = session
        self._context = TimerContext(
            state=TimerState.RUNNING,
            start_instant=now,
            original_duration=duration,
            time_remaining=duration,
            progress=1.0,
            is_active=True,
            is_complete=False,
            goal=session.goal,
        )
        self._warnings_fired = {t for t in WARNING_THRESHOLDS if t >= duration}

        self._persist()
        self._schedule_completion(now + timedelta(seconds=duration))
        self._last_tick_at = now
        self._qt_timer.start()

        logger.info("Session %s started for %.0f seconds", session.id, duration)
        self._emit_transition(old_state)

    def pause(self, at: Optional[datetime] = None):
        """
        Pause the running countdown. Remaining time is frozen.

        Args:
            at: Instant the pause takes effect. Defaults to now; the sleep
                handler passes the moment the machine was last seen awake.
        """
        if not self.is_running:
            logger.debug("pause() ignored in state %s", self.state.name)
            return

        self._update_remaining(at or self._clock())
        if self._context.time_remaining <= 0:
            self.complete()
            return

        self._qt_timer.stop()
        self._cancel_notification()

        old_state = self._context.state
        self._context.state = TimerState.PAUSED
        self._context.is_active = False
        self._persist()

        logger.info("Session paused with %.0f seconds left", self._context.time_remaining)
        self._emit_transition(old_state)

    def resume(self):
        """
        Resume a paused countdown.
        The anchor is moved forward so the paused interval does not count.
        """
        if not self.is_paused:
            logger.debug("resume() ignored in state %s", self.state.name)
            return

        now = self._clock()
        remaining = self._context.time_remaining
        elapsed = self._context.original_duration - remaining
        self._context.start_instant = now - timedelta(seconds=elapsed)

        old_state = self._context.state
        self._context.state = TimerState.RUNNING
        self._context.is_active = True
        self._persist()
        self._schedule_completion(now + timedelta(seconds=remaining))
        self._last_tick_at = now
        self._qt_timer.start()

        logger.info("Session resumed with %.0f seconds left", remaining)
        self._emit_transition(old_state)

    def stop(self):
        """Stop the timer from any state and return to idle."""
        self._halt()
        self.timer_store.clear()

        old_state = self._context.state
        original_duration = self._context.original_duration
        self._session = None
        self._warnings_fired = set()
        self._context = TimerContext(
            state=TimerState.IDLE,
            original_duration=original_duration,
            time_remaining=original_duration,
            progress=1.0,
        )

        if old_state != TimerState.IDLE:
            logger.info("Timer stopped from %s", old_state.name)
        self._emit_transition(old_state)

    def reset(self):
        """Alias of stop(), used after a completed session has been shown."""
        self.stop()

    def end_session(self) -> Optional[Session]:
        """
        End the current session early and return its finalized record.

        A session that already completed keeps its completed record.
        """
        if self._session is None:
            return None

        if self._context.is_complete:
            record = self._session
        else:
            record = finalize_session(self._session, self._clock(), completed=False)

        self.session_ended.emit(record)
        self.stop()
        return record

    @Slot()
    def tick(self):
        """Recompute remaining time from the wall clock."""
        if not self.is_running:
            return

        now = self._clock()
        last = self._last_tick_at
        self._last_tick_at = now
        if last is not None and self._slept_since(last, now):
            # The machine slept; pause at the last instant it was seen awake
            logger.info("Wall clock jumped %s since the last tick; pausing", now - last)
            self.pause(at=last)
            return

        self._update_remaining(now)

        if self._context.time_remaining <= 0:
            self.complete()
            return

        self._persist()
        self._check_warnings()
        self.state_changed.emit(self._context.snapshot())

    def complete(self) -> Optional[Session]:
        """
        Finish the countdown. Runs its side effects once per session;
        later calls return the same finalized session.
        """
        if self._context.is_complete:
            return self._session
        if self._context.state not in (TimerState.RUNNING, TimerState.PAUSED):
            logger.debug("complete() ignored in state %s", self.state.name)
            return None

        now = self._clock()
        self._qt_timer.stop()

        old_state = self._context.state
        self._context.state = TimerState.COMPLETED
        self._context.time_remaining = 0.0
        self._context.progress = 0.0
        self._context.is_active = False
        self._context.is_complete = True

        if self._session is None:
            self._session = Session(
                goal=self._context.goal,
                duration=self._context.original_duration,
                start_time=self._context.start_instant or now,
            )
        self._session = finalize_session(self._session, now, completed=True)

        self._notify_completion(now)
        logger.info("Session %s completed", self._session.id)

        self.completion_feedback.emit()
        self._emit_transition(old_state)
        self.session_completed.emit(self._session)
        return self._session

    def restore(self) -> TimerState:
        """
        Rebuild the countdown from persisted state. Call once at startup.

        Returns:
            The state the engine ended up in.
        """
        persisted = self.timer_store.load()
        if persisted is None or not persisted.is_active:
            self.timer_store.clear()
            logger.debug("No running session to restore")
            return self.state

        duration = persisted.original_duration
        if not math.isfinite(duration) or duration <= 0:
            logger.warning("Discarding persisted timer with duration %r", duration)
            self.timer_store.clear()
            return self.state

        preferences = self.preferences_store.load()
        self._session = Session(
            goal=persisted.goal,
            duration=duration,
            start_time=persisted.start_instant,
            blocked_apps=preferences.default_blocked_apps,
            blocked_websites=preferences.default_blocked_websites,
        )

        old_state = self._context.state
        self._context = TimerContext(
            state=TimerState.RUNNING,
            start_instant=persisted.start_instant,
            original_duration=duration,
            time_remaining=duration,
            progress=1.0,
            is_active=True,
            is_complete=False,
            goal=persisted.goal,
        )

        now = self._clock()
        elapsed = (now - persisted.start_instant).total_seconds()
        if elapsed >= duration:
            logger.info("Persisted session finished while the app was not running")
            self.complete()
            return self.state

        self._update_remaining(now)
        remaining = self._context.time_remaining
        self._warnings_fired = {t for t in WARNING_THRESHOLDS if t >= remaining}
        self._schedule_completion(persisted.start_instant + timedelta(seconds=duration))
        self._last_tick_at = now
        self._qt_timer.start()

        logger.info("Restored running session with %.0f seconds left", remaining)
        self._emit_transition(old_state)
        return self.state

    # ==================== System events ====================

    @Slot()
    def on_system_resync(self):
        """Recompute immediately instead of waiting for the next tick."""
        self.tick()

    def on_system_sleep(self, at: Optional[datetime] = None):
        """
        Handle the machine going to sleep.
        Pauses when the pause_on_sleep preference is set, otherwise keeps running.
        """
        if not self.is_running:
            return
        if self.preferences_store.load().pause_on_sleep:
            self.pause(at)
        else:
            self._persist()

    @Slot()
    def on_system_wake(self):
        self.on_system_resync()

    @Slot()
    def on_foreground(self):
        self.on_system_resync()

    @Slot()
    def on_background(self):
        if self.is_running:
            self._update_remaining(self._clock())
            self._persist()

    def cleanup(self):
        """
        Stop ticking before application exit.
        Persisted state is kept so a running session is restored next launch.
        """
        if self.is_running:
            self._update_remaining(self._clock())
            self._persist()
        self._qt_timer.stop()

    # ==================== Internals ====================

    def _update_remaining(self, now: datetime):
        """Derive remaining time and progress from the anchor."""
        context = self._context
        if context.start_instant is None or context.original_duration <= 0:
            return

        # A clock moved backwards counts as no time elapsed
        elapsed = max(0.0, (now - context.start_instant).total_seconds())
        context.time_remaining = max(0.0, context.original_duration - elapsed)
        context.progress = min(1.0, max(0.0, context.time_remaining / context.original_duration))

    def _slept_since(self, last: datetime, now: datetime) -> bool:
        """Whether a gap between ticks is sleep the user wants paused."""
        expected = timedelta(milliseconds=self.TICK_INTERVAL_MS)
        if now - last <= expected + self.SLEEP_GAP:
            return False
        return self.preferences_store.load().pause_on_sleep

    def _check_warnings(self):
        remaining = self._context.time_remaining
        for threshold in WARNING_THRESHOLDS:
            if remaining <= threshold and threshold not in self._warnings_fired:
                self._warnings_fired.add(threshold)
                self.countdown_warning.emit(threshold)

    def _persist(self):
        context = self._context
        if context.start_instant is None:
            return
        self.timer_store.save(
            context.start_instant,
            context.original_duration,
            context.is_active,
            context.goal,
        )

    def _halt(self):
        """Cancel the periodic tick and any pending notification."""
        self._qt_timer.stop()
        self._cancel_notification()

    def _schedule_completion(self, at: datetime):
        self._cancel_notification()
        if not self.preferences_store.load().notifications_enabled:
            return
        try:
            self._notification = self.scheduler.schedule_one_shot(
                at, self.NOTIFICATION_TITLE, self.NOTIFICATION_BODY
            )
        except Exception as e:
            logger.warning("Could not schedule completion notification: %s", e)

    def _notify_completion(self, now: datetime):
        """Deliver the completion notification unless the scheduled one already fired."""
        if self._notification is not None and self._notification.fired:
            return
        self._schedule_completion(now)

    def _cancel_notification(self):
        self._notification = None
        try:
            self.scheduler.cancel_all()
        except Exception as e:
            logger.warning("Could not cancel notifications: %s", e)

    def _emit_transition(self, old_state: TimerState):
        new_state = self._context.state
        if old_state != new_state:
            logger.debug("Timer state %s -> %s", old_state.name, new_state.name)
            self.phase_changed.emit(old_state, new_state)
        self.state_changed.emit(self._context.snapshot())
