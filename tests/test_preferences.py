import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from studywell.core.lifecycle import ServiceLifecycle
from studywell.reminders.exceptions import PreferenceDocumentError
from studywell.reminders.preferences import (
    FirestorePreferenceFeed,
    PreferenceChangeType,
    change_from_snapshot,
    parse_preference_document,
    ui_weekday_to_iso,
)
from studywell.reminders.schemas import RecurrenceFrequency


def _doc(**overrides):
    doc = {
        "userId": "user-1",
        "fcmToken": "token-abc",
        "studyReminderHour": 18,
        "studyReminderMinute": 30,
        "customMessage": "Revise chapter 4",
        "studyReminderFrequency": "daily",
        "studyReminderDays": [1, 2, 3, 4, 5, 6, 7],
        "studyRemindersEnabled": True,
        "timezoneOffsetMinutes": 480,
    }
    doc.update(overrides)
    return doc


def _raw_change(kind, doc_id, body):
    raw = MagicMock()
    raw.type.name = kind
    raw.document.id = doc_id
    raw.document.to_dict.return_value = body
    return raw


class TestWeekdayBoundary:
    @pytest.mark.parametrize("ui_day,iso_day", [(0, 7), (1, 1), (3, 3), (6, 6), (7, 7)])
    def test_sunday_first_to_monday_first(self, ui_day, iso_day):
        assert ui_weekday_to_iso(ui_day) == iso_day

    @pytest.mark.parametrize("bad", [-1, 8, True, "1"])
    def test_rejects_values_outside_both_conventions(self, bad):
        with pytest.raises(ValueError):
            ui_weekday_to_iso(bad)


class TestParsePreferenceDocument:
    def test_full_document(self):
        config = parse_preference_document("user-1", _doc())

        assert config.owner_id == "user-1"
        assert (config.hour, config.minute) == (18, 30)
        assert config.frequency == RecurrenceFrequency.DAILY
        assert config.days == [1, 2, 3, 4, 5, 6, 7]
        assert config.message == "Revise chapter 4"
        assert config.push_address == "token-abc"
        assert config.enabled is True
        assert config.timezone_offset_minutes == 480

    def test_custom_days_are_translated_from_app_convention(self):
        config = parse_preference_document(
            "user-1", _doc(studyReminderFrequency="custom", studyReminderDays=[0, 6])
        )
        assert config.days == [6, 7]

    def test_weekly_label_means_weekdays(self):
        config = parse_preference_document("user-1", _doc(studyReminderFrequency="weekly"))
        assert config.frequency == RecurrenceFrequency.WEEKDAY
        assert config.days == [1, 2, 3, 4, 5]

    def test_unknown_frequency_falls_back_to_daily(self):
        config = parse_preference_document("user-1", _doc(studyReminderFrequency="fortnightly"))
        assert config.frequency == RecurrenceFrequency.DAILY

    def test_defaults_for_sparse_document(self):
        config = parse_preference_document("user-1", {"fcmToken": "t"})

        assert (config.hour, config.minute) == (9, 0)
        assert config.message == "Time to focus on your studies."
        assert config.enabled is False
        assert config.timezone_offset_minutes == 0

    def test_legacy_hour_offset(self):
        doc = _doc()
        del doc["timezoneOffsetMinutes"]
        doc["timezoneOffset"] = -5
        assert parse_preference_document("user-1", doc).timezone_offset_minutes == -300

    def test_empty_token_is_not_an_address(self):
        config = parse_preference_document("user-1", _doc(fcmToken=""))
        assert config.push_address is None
        assert not config.is_schedulable

    @pytest.mark.parametrize(
        "overrides",
        [
            {"studyReminderHour": 25},
            {"studyReminderMinute": "soon"},
            {"studyReminderFrequency": "custom", "studyReminderDays": [9]},
        ],
    )
    def test_malformed_documents_raise(self, overrides):
        with pytest.raises(PreferenceDocumentError):
            parse_preference_document("user-1", _doc(**overrides))


class TestChangeFromSnapshot:
    def test_modified_change_carries_body(self):
        change = change_from_snapshot(_raw_change("MODIFIED", "user-9", {"fcmToken": "t"}))

        assert change.change_type == PreferenceChangeType.MODIFIED
        assert change.owner_id == "user-9"
        assert change.document == {"fcmToken": "t"}

    def test_removed_change_has_no_body(self):
        change = change_from_snapshot(_raw_change("REMOVED", "user-9", {"fcmToken": "t"}))
        assert change.change_type == PreferenceChangeType.REMOVED
        assert change.document is None


class TestFirestorePreferenceFeed:
    def _feed(self, ready=True):
        lifecycle = ServiceLifecycle()
        if ready:
            lifecycle.mark_ready()
        feed = FirestorePreferenceFeed(app=None, lifecycle=lifecycle, collection="notification_preferences")
        feed._client = MagicMock()
        return feed

    def test_snapshot_changes_reach_the_sink_on_the_loop(self):
        feed = self._feed()
        received = []

        async def scenario():
            feed.start(received.append)
            callback = feed._client.collection.return_value.on_snapshot.call_args[0][0]
            changes = [
                _raw_change("ADDED", "a", {"fcmToken": "1"}),
                _raw_change("REMOVED", "b", None),
            ]
            # Firestore calls back from its own thread
            worker = threading.Thread(target=callback, args=([], changes, None))
            worker.start()
            worker.join()
            await asyncio.sleep(0.01)

        asyncio.run(scenario())

        feed._client.collection.assert_called_with("notification_preferences")
        assert [(c.owner_id, c.change_type) for c in received] == [
            ("a", PreferenceChangeType.ADDED),
            ("b", PreferenceChangeType.REMOVED),
        ]

    def test_does_not_start_when_not_ready(self):
        feed = self._feed(ready=False)

        async def scenario():
            feed.start(lambda change: None)

        asyncio.run(scenario())
        feed._client.collection.assert_not_called()

    def test_stop_unsubscribes(self):
        feed = self._feed()

        async def scenario():
            feed.start(lambda change: None)

        asyncio.run(scenario())
        feed.stop()
        feed._client.collection.return_value.on_snapshot.return_value.unsubscribe.assert_called_once()

    def test_fetch(self):
        feed = self._feed()
        snapshot = feed._client.collection.return_value.document.return_value.get.return_value
        snapshot.exists = True
        snapshot.to_dict.return_value = {"fcmToken": "t"}

        assert feed.fetch("user-1") == {"fcmToken": "t"}
        feed._client.collection.return_value.document.assert_called_with("user-1")

        snapshot.exists = False
        assert feed.fetch("user-1") is None
