"""
Notification scheduling for the Deep Work focus timer.

The engine only talks to the NotificationScheduler interface:
schedule a one-shot notification for a future instant, or cancel it.

Implementations:
    - QtNotificationScheduler: single-shot QTimers, delivered through the
      system tray or a native command, with a generated chime
    - RecordingScheduler: in-memory, fired manually (tests, headless runs)
"""

import io
import itertools
import logging
import math
import os
import struct
import subprocess
import sys
import tempfile
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Dict, List, Optional

from PySide6.QtCore import QTimer
from PySide6.QtWidgets import QSystemTrayIcon

from .models import utc_now

logger = logging.getLogger(__name__)

_handle_ids = itertools.count(1)


@dataclass
class NotificationHandle:
    """A scheduled one-shot notification."""
    at: datetime
    title: str
    body: str
    id: int = 0
    fired: bool = False
    cancelled: bool = False

    def __post_init__(self):
        if not self.id:
            self.id = next(_handle_ids)

    @property
    def pending(self) -> bool:
        return not self.fired and not self.cancelled


class NotificationScheduler(ABC):
    """Accepts a future fire time and content; fires exactly once or is cancelled."""

    @abstractmethod
    def schedule_one_shot(self, at: datetime, title: str, body: str) -> NotificationHandle:
        """Schedule a notification. An instant in the past fires as soon as possible."""
        pass

    @abstractmethod
    def cancel(self, handle: NotificationHandle):
        """Cancel one notification. Cancelling twice is a no-op."""
        pass

    @abstractmethod
    def cancel_all(self):
        """Cancel every pending notification. Safe to call at any time."""
        pass


class RecordingScheduler(NotificationScheduler):
    """
    Scheduler that keeps notifications in memory.
    Nothing fires until fire_due() is called.
    """

    def __init__(self):
        self.scheduled: List[NotificationHandle] = []
        self.delivered: List[NotificationHandle] = []

    @property
    def pending(self) -> List[NotificationHandle]:
        return [handle for handle in self.scheduled if handle.pending]

    def schedule_one_shot(self, at: datetime, title: str, body: str) -> NotificationHandle:
        handle = NotificationHandle(at=at, title=title, body=body)
        self.scheduled.append(handle)
        return handle

    def cancel(self, handle: NotificationHandle):
        if handle.pending:
            handle.cancelled = True

    def cancel_all(self):
        for handle in self.pending:
            handle.cancelled = True

    def fire_due(self, now: datetime) -> List[NotificationHandle]:
        """Deliver every pending notification whose instant has passed."""
        due = [handle for handle in self.pending if handle.at <= now]
        for handle in due:
            handle.fired = True
            self.delivered.append(handle)
        return due


def generate_notification_sound() -> bytes:
    """Generate a pleasant completion sound (two-tone chime) as WAV data."""
    sample_rate = 44100
    max_amplitude = 32767 * 0.4

    def tone(frequency: int, seconds: float, fade_seconds: float) -> List[int]:
        count = int(sample_rate * seconds)
        fade_samples = int(sample_rate * fade_seconds)
        values = []
        for i in range(count):
            t = i / sample_rate
            value = int(max_amplitude * math.sin(2 * math.pi * frequency * t))
            # Fade in/out to avoid clicks
            if i < fade_samples:
                value = int(value * (i / fade_samples))
            elif i > count - fade_samples:
                value = int(value * ((count - i) / fade_samples))
            values.append(value)
        return values

    samples = tone(880, 0.1, 0.01)
    samples.extend([0] * int(sample_rate * 0.05))
    samples.extend(tone(1046, 0.15, 0.015))

    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(struct.pack(f'<{len(samples)}h', *samples))

    return buffer.getvalue()


class SoundPlayer:
    """
    Cross-platform sound player.
    Writes the chime to a temp file once and hands it to the platform player.
    """

    def __init__(self):
        self.enabled = True
        self._temp_file: Optional[str] = None

    def _ensure_temp_file(self) -> Optional[str]:
        if self._temp_file is None:
            try:
                fd, self._temp_file = tempfile.mkstemp(suffix='.wav')
                with os.fdopen(fd, 'wb') as f:
                    f.write(generate_notification_sound())
            except OSError as e:
                logger.warning("Could not prepare notification sound: %s", e)
                self._temp_file = None
        return self._temp_file

    def play(self):
        """Play the completion sound."""
        if not self.enabled:
            return

        path = self._ensure_temp_file()
        if path is None:
            return

        try:
            self._play_sound(path)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Could not play sound: %s", e)

    def _play_sound(self, path: str):
        """Platform-specific sound playback."""
        system = sys.platform.lower()

        if system == 'darwin':
            subprocess.Popen(
                ['afplay', path],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL
            )
        elif system.startswith('linux'):
            # Try paplay (PulseAudio), then aplay (ALSA)
            for cmd in ['paplay', 'aplay']:
                try:
                    subprocess.Popen(
                        [cmd, path],
                        stdout=subprocess.DEVNULL,
                        stderr=subprocess.DEVNULL
                    )
                    return
                except FileNotFoundError:
                    continue
            logger.warning("No audio player found (tried paplay, aplay)")
        elif system == 'win32':
            import winsound
            winsound.PlaySound(path, winsound.SND_FILENAME | winsound.SND_ASYNC)

    def cleanup(self):
        """Clean up temporary files."""
        if self._temp_file and os.path.exists(self._temp_file):
            try:
                os.remove(self._temp_file)
            except OSError as e:
                logger.debug("Could not remove %s: %s", self._temp_file, e)
        self._temp_file = None


class QtNotificationScheduler(NotificationScheduler):
    """
    Schedules notifications on the Qt event loop.

    Each notification gets its own single-shot QTimer. Delivery goes
    through the tray icon when one is available, otherwise through the
    platform's notification command.
    """

    def __init__(self, clock=utc_now):
        self._clock = clock
        self._timers: Dict[int, QTimer] = {}
        self._handles: Dict[int, NotificationHandle] = {}
        self._tray_icon: Optional[QSystemTrayIcon] = None
        self._sound_player = SoundPlayer()
        self.notification_enabled = True

    def set_tray_icon(self, tray_icon: QSystemTrayIcon):
        """Set the system tray icon for showing notifications."""
        self._tray_icon = tray_icon

    @property
    def sound_enabled(self) -> bool:
        return self._sound_player.enabled

    @sound_enabled.setter
    def sound_enabled(self, value: bool):
        self._sound_player.enabled = value

    def schedule_one_shot(self, at: datetime, title: str, body: str) -> NotificationHandle:
        handle = NotificationHandle(at=at, title=title, body=body)
        delay_ms = max(0, int((at - self._clock()).total_seconds() * 1000))

        timer = QTimer()
        timer.setSingleShot(True)
        timer.setInterval(delay_ms)
        timer.timeout.connect(partial(self._fire, handle.id))
        self._timers[handle.id] = timer
        self._handles[handle.id] = handle
        timer.start()

        logger.debug("Scheduled notification %d in %d ms", handle.id, delay_ms)
        return handle

    def cancel(self, handle: NotificationHandle):
        timer = self._timers.pop(handle.id, None)
        if timer is not None:
            timer.stop()
            timer.deleteLater()
        self._handles.pop(handle.id, None)
        if handle.pending:
            handle.cancelled = True

    def cancel_all(self):
        for handle in list(self._handles.values()):
            self.cancel(handle)

    def _fire(self, handle_id: int):
        handle = self._handles.pop(handle_id, None)
        timer = self._timers.pop(handle_id, None)
        if timer is not None:
            timer.deleteLater()
        if handle is None or not handle.pending:
            return

        handle.fired = True
        self._sound_player.play()
        self._show_notification(handle.title, handle.body)

    def _show_notification(self, title: str, message: str):
        """Show a desktop notification."""
        if not self.notification_enabled:
            return

        if self._tray_icon is not None and QSystemTrayIcon.isSystemTrayAvailable():
            self._tray_icon.showMessage(
                title, message, QSystemTrayIcon.MessageIcon.Information, 5000
            )
        else:
            self._show_native_notification(title, message)

    def _show_native_notification(self, title: str, message: str):
        """Show notification using native OS commands."""
        system = sys.platform.lower()

        try:
            if system == 'darwin':
                script = f'display notification "{message}" with title "{title}"'
                subprocess.run(
                    ['osascript', '-e', script],
                    capture_output=True,
                    timeout=5
                )
            elif system.startswith('linux'):
                subprocess.run(
                    ['notify-send', title, message],
                    capture_output=True,
                    timeout=5
                )
            # Windows notifications handled by tray icon
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Could not show notification: %s", e)

    def cleanup(self):
        """Cancel pending timers and clean up resources."""
        self.cancel_all()
        self._sound_player.cleanup()
