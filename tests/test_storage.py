"""
Tests for core/storage.py - key-value medium, preferences and timer stores.
"""

import json
import os
import tempfile
import unittest
from datetime import datetime, timezone

from support import TempStorageMixin

from core.models import UserPreferences
from core.storage import Storage, PREFERENCES_KEY, TIMER_IS_ACTIVE_KEY, TIMER_START_TIME_KEY


class TestStorage(TempStorageMixin, unittest.TestCase):

    def test_missing_key_returns_none(self):
        self.assertIsNone(self.storage.get("nope"))

    def test_set_get_and_overwrite(self):
        self.assertTrue(self.storage.set("k", "one"))
        self.assertTrue(self.storage.set("k", "two"))
        self.assertEqual(self.storage.get("k"), "two")

    def test_delete_including_missing_keys(self):
        self.storage.set_many({"a": "1", "b": "2"})
        self.assertTrue(self.storage.delete("a", "missing"))
        self.assertIsNone(self.storage.get("a"))
        self.assertEqual(self.storage.get("b"), "2")

    def test_values_survive_new_instance(self):
        self.storage.set("k", "v")
        self.assertEqual(Storage(self.db_path).get("k"), "v")

    def test_failures_are_swallowed(self):
        with tempfile.TemporaryDirectory() as directory:
            # A directory cannot be opened as a database file
            with self.assertLogs("core.storage", level="WARNING"):
                broken = Storage(directory)
            with self.assertLogs("core.storage", level="WARNING"):
                self.assertIsNone(broken.get("k"))
            with self.assertLogs("core.storage", level="WARNING"):
                self.assertFalse(broken.set("k", "v"))
            with self.assertLogs("core.storage", level="WARNING"):
                self.assertFalse(broken.delete("k"))

    def test_data_dir_override(self):
        from core.storage import get_app_data_dir, DATA_DIR_ENV
        with tempfile.TemporaryDirectory() as directory:
            target = os.path.join(directory, "data")
            previous = os.environ.get(DATA_DIR_ENV)
            os.environ[DATA_DIR_ENV] = target
            try:
                self.assertEqual(str(get_app_data_dir()), target)
                self.assertTrue(os.path.isdir(target))
            finally:
                if previous is None:
                    del os.environ[DATA_DIR_ENV]
                else:
                    os.environ[DATA_DIR_ENV] = previous


class TestPreferencesStore(TempStorageMixin, unittest.TestCase):

    def test_defaults_when_absent(self):
        prefs = self.preferences_store.load()
        self.assertEqual(prefs, UserPreferences())
        self.assertEqual(prefs.default_duration, 1500)
        self.assertTrue(prefs.notifications_enabled)

    def test_save_and_load(self):
        prefs = UserPreferences(
            default_duration=3000,
            default_blocked_apps=["Slack"],
            default_blocked_websites=["reddit.com"],
            sound_enabled=False,
            last_goal="ship it",
        )
        self.preferences_store.save(prefs)
        self.assertEqual(self.preferences_store.load(), prefs)

    def test_undecodable_value_loads_defaults(self):
        for raw in ("{not json", "[1, 2]", '{"default_duration": "soon"}'):
            with self.subTest(raw=raw):
                self.storage.set(PREFERENCES_KEY, raw)
                with self.assertLogs("core.storage", level="WARNING"):
                    self.assertEqual(self.preferences_store.load(), UserPreferences())

    def test_unknown_keys_ignored(self):
        self.storage.set(PREFERENCES_KEY, json.dumps({"last_goal": "x", "theme": "dark"}))
        prefs = self.preferences_store.load()
        self.assertEqual(prefs.last_goal, "x")
        self.assertFalse(hasattr(prefs, "theme"))

    def test_update_writes_through(self):
        self.preferences_store.update(sound_enabled=False)
        self.assertFalse(self.preferences_store.load().sound_enabled)

    def test_update_unknown_preference_raises(self):
        with self.assertRaises(AttributeError):
            self.preferences_store.update(colour="red")

    def test_goal_round_trip(self):
        self.preferences_store.save_goal("read chapter 3")
        self.assertEqual(self.preferences_store.load_last_goal(), "read chapter 3")

    def test_update_session_duration_validates_range(self):
        self.assertFalse(self.preferences_store.update_session_duration(299))
        self.assertFalse(self.preferences_store.update_session_duration(10801))
        self.assertEqual(self.preferences_store.load().default_duration, 1500)

        self.assertTrue(self.preferences_store.update_session_duration(300))
        self.assertTrue(self.preferences_store.update_session_duration(10800))
        self.assertEqual(self.preferences_store.load().default_duration, 10800)


class TestTimerPersistenceStore(TempStorageMixin, unittest.TestCase):

    start = datetime(2025, 7, 18, 9, 30, 15, 250000, tzinfo=timezone.utc)

    def test_empty_store_loads_none(self):
        self.assertIsNone(self.timer_store.load())

    def test_save_and_load(self):
        self.timer_store.save(self.start, 1500, True, "focus")
        state = self.timer_store.load()
        self.assertEqual(state.start_instant, self.start)
        self.assertEqual(state.original_duration, 1500.0)
        self.assertTrue(state.is_active)
        self.assertEqual(state.goal, "focus")

    def test_partial_state_loads_none(self):
        self.timer_store.save(self.start, 1500, True, "focus")
        self.storage.delete(TIMER_IS_ACTIVE_KEY)
        self.assertIsNone(self.timer_store.load())

    def test_bad_values_load_none(self):
        self.timer_store.save(self.start, 1500, True)
        self.storage.set(TIMER_IS_ACTIVE_KEY, "maybe")
        with self.assertLogs("core.storage", level="WARNING"):
            self.assertIsNone(self.timer_store.load())

        self.timer_store.save(self.start, 1500, True)
        self.storage.set(TIMER_START_TIME_KEY, "not a time")
        with self.assertLogs("core.storage", level="WARNING"):
            self.assertIsNone(self.timer_store.load())

    def test_naive_timestamp_read_as_utc(self):
        self.timer_store.save(self.start, 60, True)
        self.storage.set(TIMER_START_TIME_KEY, "2025-07-18T09:30:15")
        state = self.timer_store.load()
        self.assertEqual(state.start_instant.tzinfo, timezone.utc)

    def test_missing_goal_defaults_to_empty(self):
        self.timer_store.save(self.start, 60, False, "g")
        self.storage.delete("TimerSessionGoal")
        self.assertEqual(self.timer_store.load().goal, "")

    def test_clear(self):
        self.timer_store.save(self.start, 60, True, "g")
        self.assertTrue(self.timer_store.clear())
        self.assertIsNone(self.timer_store.load())
        self.assertTrue(self.timer_store.clear())


if __name__ == "__main__":
    unittest.main()
