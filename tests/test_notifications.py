"""
Tests for core/notifications.py - scheduler contract and the Qt scheduler.
"""

import unittest
from datetime import timedelta
from unittest.mock import patch

from support import FakeClock, ensure_app

from core.notifications import (
    RecordingScheduler, QtNotificationScheduler, SoundPlayer,
    generate_notification_sound,
)


class TestRecordingScheduler(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.scheduler = RecordingScheduler()

    def test_fires_once_when_due(self):
        handle = self.scheduler.schedule_one_shot(
            self.clock.now + timedelta(seconds=60), "t", "b"
        )
        self.assertEqual(self.scheduler.fire_due(self.clock.now), [])

        self.clock.advance(60)
        self.assertEqual(self.scheduler.fire_due(self.clock.now), [handle])
        self.assertEqual(self.scheduler.fire_due(self.clock.now), [])
        self.assertTrue(handle.fired)
        self.assertFalse(handle.pending)

    def test_cancel_is_idempotent(self):
        handle = self.scheduler.schedule_one_shot(self.clock.now, "t", "b")
        self.scheduler.cancel(handle)
        self.scheduler.cancel(handle)
        self.scheduler.cancel_all()
        self.assertTrue(handle.cancelled)
        self.assertEqual(self.scheduler.fire_due(self.clock.now), [])

    def test_cancel_all(self):
        for offset in (1, 2, 3):
            self.scheduler.schedule_one_shot(self.clock.now + timedelta(seconds=offset), "t", "b")
        self.scheduler.cancel_all()
        self.assertEqual(self.scheduler.pending, [])

    def test_handles_have_distinct_ids(self):
        first = self.scheduler.schedule_one_shot(self.clock.now, "t", "b")
        second = self.scheduler.schedule_one_shot(self.clock.now, "t", "b")
        self.assertNotEqual(first.id, second.id)


class TestQtNotificationScheduler(unittest.TestCase):

    def setUp(self):
        ensure_app()
        self.clock = FakeClock()
        self.scheduler = QtNotificationScheduler(clock=self.clock)
        self.scheduler.sound_enabled = False

    def tearDown(self):
        self.scheduler.cleanup()

    def test_schedule_creates_pending_handle(self):
        handle = self.scheduler.schedule_one_shot(
            self.clock.now + timedelta(minutes=25), "Session Complete", "done"
        )
        self.assertTrue(handle.pending)
        self.assertEqual(self.scheduler._timers[handle.id].interval(), 25 * 60 * 1000)

    def test_past_instant_fires_immediately(self):
        handle = self.scheduler.schedule_one_shot(
            self.clock.now - timedelta(seconds=5), "t", "b"
        )
        self.assertEqual(self.scheduler._timers[handle.id].interval(), 0)

    def test_fire_delivers_once(self):
        handle = self.scheduler.schedule_one_shot(self.clock.now, "Title", "Body")
        with patch.object(self.scheduler, "_show_notification") as show:
            self.scheduler._fire(handle.id)
            self.scheduler._fire(handle.id)
        show.assert_called_once_with("Title", "Body")
        self.assertTrue(handle.fired)

    def test_cancelled_notification_never_delivers(self):
        handle = self.scheduler.schedule_one_shot(self.clock.now, "t", "b")
        self.scheduler.cancel(handle)
        self.scheduler.cancel(handle)
        with patch.object(self.scheduler, "_show_notification") as show:
            self.scheduler._fire(handle.id)
        show.assert_not_called()
        self.assertTrue(handle.cancelled)

    def test_cancel_all_stops_timers(self):
        for offset in (10, 20):
            self.scheduler.schedule_one_shot(self.clock.now + timedelta(seconds=offset), "t", "b")
        self.scheduler.cancel_all()
        self.assertEqual(self.scheduler._timers, {})
        self.scheduler.cancel_all()

    def test_disabled_notifications_are_not_shown(self):
        self.scheduler.notification_enabled = False
        with patch.object(self.scheduler, "_show_native_notification") as native:
            self.scheduler._show_notification("t", "b")
        native.assert_not_called()

    def test_native_notification_failure_is_logged(self):
        with patch("core.notifications.subprocess.run", side_effect=FileNotFoundError("notify-send")), \
                patch("core.notifications.sys.platform", "linux"):
            with self.assertLogs("core.notifications", level="WARNING"):
                self.scheduler._show_native_notification("t", "b")


class TestSound(unittest.TestCase):

    def test_generated_sound_is_wav(self):
        data = generate_notification_sound()
        self.assertEqual(data[:4], b"RIFF")
        self.assertEqual(data[8:12], b"WAVE")

    def test_disabled_player_does_nothing(self):
        player = SoundPlayer()
        player.enabled = False
        with patch.object(player, "_play_sound") as play:
            player.play()
        play.assert_not_called()
        player.cleanup()

    def test_playback_failure_is_logged(self):
        player = SoundPlayer()
        with patch.object(player, "_play_sound", side_effect=OSError("no device")):
            with self.assertLogs("core.notifications", level="WARNING"):
                player.play()
        player.cleanup()


if __name__ == "__main__":
    unittest.main()
