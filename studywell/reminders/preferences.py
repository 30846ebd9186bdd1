"""
Preference documents: the boundary between the mobile client's Firestore
documents and RecurrenceConfig, plus the change feed over that collection.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from studywell.core.lifecycle import ServiceLifecycle
from studywell.utils.timezone import utc_now
from .config import settings
from .exceptions import PreferenceDocumentError
from .schemas import RecurrenceConfig, RecurrenceFrequency

logger = logging.getLogger(__name__)

_FREQUENCY_ALIASES = {
    "daily": RecurrenceFrequency.DAILY,
    "weekday": RecurrenceFrequency.WEEKDAY,
    "weekdays": RecurrenceFrequency.WEEKDAY,
    # The app labels Monday-Friday as "weekly"
    "weekly": RecurrenceFrequency.WEEKDAY,
    "custom": RecurrenceFrequency.CUSTOM,
}


class PreferenceChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class PreferenceChange:
    change_type: PreferenceChangeType
    owner_id: str
    document: Optional[Dict[str, Any]] = None
    received_at: datetime = field(default_factory=utc_now)


def ui_weekday_to_iso(day: int) -> int:
    """Translate the app's weekday (0=Sunday, 1=Monday .. 6=Saturday) to 1=Monday .. 7=Sunday.

    7 is passed through as Sunday since some clients already send ISO numbers.
    """
    if isinstance(day, bool) or not isinstance(day, int):
        raise ValueError(f"weekday must be an integer, got {day!r}")
    if day == 0:
        return 7
    if 1 <= day <= 7:
        return day
    raise ValueError(f"weekday out of range: {day}")


def _offset_minutes(owner_id: str, document: Dict[str, Any]) -> int:
    if document.get("timezoneOffsetMinutes") is not None:
        return int(document["timezoneOffsetMinutes"])
    if document.get("timezoneOffset") is not None:
        # Older clients stored whole hours
        return int(round(float(document["timezoneOffset"]) * 60))
    logger.warning(f"⚠️ [Preferences] No timezone offset for user {owner_id}; treating times as UTC")
    return 0


def parse_preference_document(owner_id: str, document: Dict[str, Any]) -> RecurrenceConfig:
    """Build a RecurrenceConfig from a ``notification_preferences`` document."""
    try:
        raw_frequency = str(document.get("studyReminderFrequency") or "daily").strip().lower()
        frequency = _FREQUENCY_ALIASES.get(raw_frequency)
        if frequency is None:
            logger.warning(f"⚠️ [Preferences] Unknown frequency {raw_frequency!r} for user {owner_id}; using daily")
            frequency = RecurrenceFrequency.DAILY

        days: List[int] = []
        if frequency == RecurrenceFrequency.CUSTOM:
            days = [ui_weekday_to_iso(int(d)) for d in document.get("studyReminderDays") or []]

        hour = document.get("studyReminderHour")
        minute = document.get("studyReminderMinute")
        return RecurrenceConfig(
            owner_id=owner_id,
            hour=9 if hour is None else int(hour),
            minute=0 if minute is None else int(minute),
            frequency=frequency,
            days=days,
            message=document.get("customMessage") or settings.DEFAULT_MESSAGE,
            push_address=document.get("fcmToken") or None,
            enabled=bool(document.get("studyRemindersEnabled", False)),
            timezone_offset_minutes=_offset_minutes(owner_id, document),
        )
    except (TypeError, ValueError, ValidationError) as e:
        raise PreferenceDocumentError(owner_id, str(e)) from e


def change_from_snapshot(change: Any) -> PreferenceChange:
    """Convert a Firestore DocumentChange into a PreferenceChange."""
    change_type = PreferenceChangeType(change.type.name.lower())
    document = change.document
    body = None if change_type == PreferenceChangeType.REMOVED else (document.to_dict() or {})
    return PreferenceChange(change_type=change_type, owner_id=document.id, document=body)


class FirestorePreferenceFeed:
    """Change feed over the preferences collection.

    Firestore invokes the snapshot callback on its own thread; every change
    is handed to ``sink`` on the event loop via ``call_soon_threadsafe``.
    """

    def __init__(self, app, lifecycle: ServiceLifecycle, collection: Optional[str] = None):
        self._app = app
        self._lifecycle = lifecycle
        self._collection = collection or settings.PREFERENCES_COLLECTION
        self._client = None
        self._watch = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._sink: Optional[Callable[[PreferenceChange], Any]] = None

    def _get_client(self):
        if self._client is None:
            from firebase_admin import firestore

            self._client = firestore.client(app=self._app)
        return self._client

    def start(self, sink: Callable[[PreferenceChange], Any], loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if not self._lifecycle.ready():
            logger.error("❌ [Watch] Cannot watch Firestore: backend not initialised")
            return
        self._loop = loop or asyncio.get_running_loop()
        self._sink = sink
        logger.info(f"👂 [Watch] Setting up Firestore listener for {self._collection} collection...")
        self._watch = self._get_client().collection(self._collection).on_snapshot(self._on_snapshot)
        logger.info("✅ [Watch] Firestore listener set up successfully")

    def _on_snapshot(self, docs: Iterable[Any], changes: Iterable[Any], read_time: Any) -> None:
        changes = list(changes)
        logger.info(f"📊 [Watch] Firestore snapshot received: {len(changes)} changes")
        for raw in changes:
            try:
                change = change_from_snapshot(raw)
            except (AttributeError, ValueError) as e:
                logger.error(f"❌ [Watch] Ignoring unreadable document change: {e!r}")
                continue
            self._loop.call_soon_threadsafe(self._sink, change)

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.unsubscribe()
            self._watch = None
            logger.info("🛑 [Watch] Firestore listener stopped")

    def fetch(self, owner_id: str) -> Optional[Dict[str, Any]]:
        """Read one preference document; None when it does not exist. Blocking."""
        snapshot = self._get_client().collection(self._collection).document(owner_id).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}
