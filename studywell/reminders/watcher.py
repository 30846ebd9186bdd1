"""
Preference watch loop: regenerates an owner's occurrences whenever their
recurrence settings change, one owner at a time in arrival order.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional, Tuple

from studywell.db.session import SessionLocal
from studywell.utils.timezone import to_utc_naive, utc_now
from . import repository
from .config import ReminderSettings, settings as default_settings
from .exceptions import PreferenceDocumentError
from .metrics import occurrences_generated_total, occurrences_skipped_total, preference_changes_total
from .models import DeliveryState, ScheduledNotification, occurrence_key
from .preferences import PreferenceChange, PreferenceChangeType, parse_preference_document
from .recurrence import Resolution, resolve
from .schemas import RecurrenceConfig

logger = logging.getLogger(__name__)


@dataclass
class SchedulingOutcome:
    owner_id: str
    action: str  # "scheduled" | "cleared" | "failed"
    scheduled: int = 0
    skipped: int = 0
    cleared: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.action != "failed"


def build_occurrences(
    config: RecurrenceConfig,
    resolution: Resolution,
    title: str,
    created_at: datetime,
) -> List[ScheduledNotification]:
    """Materialize resolved instants as rows, snapshotting address and message."""
    return [
        ScheduledNotification(
            id=occurrence_key(config.owner_id, item.weekday, item.week_index),
            owner_id=config.owner_id,
            weekday=item.weekday,
            week_index=item.week_index,
            scheduled_for=to_utc_naive(item.scheduled_for),
            push_address=config.push_address,
            title=title,
            message=config.message,
            notification_type="study_reminder",
            hour=config.hour,
            minute=config.minute,
            delivery_state=DeliveryState.PENDING.value,
            created_at=to_utc_naive(created_at),
        )
        for item in resolution.occurrences
    ]


class PreferenceWatchLoop:
    """Single writer per owner.

    Each owner has a FIFO of pending changes drained by one task, so a
    later configuration can never be overwritten by an earlier one.
    Replaying the same change converges to the same stored state.
    """

    def __init__(
        self,
        session_factory=SessionLocal,
        settings: ReminderSettings = default_settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock
        self._queues: Dict[str, Deque[Tuple[PreferenceChange, asyncio.Future]]] = {}
        self._workers: Dict[str, asyncio.Task] = {}

    def submit(self, change: PreferenceChange) -> asyncio.Future:
        """Queue a change for its owner; the future resolves to a SchedulingOutcome."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        queue = self._queues.setdefault(change.owner_id, deque())
        queue.append((change, future))
        if change.owner_id not in self._workers:
            self._workers[change.owner_id] = loop.create_task(
                self._drain(change.owner_id), name=f"preference-watch:{change.owner_id}"
            )
        return future

    async def _drain(self, owner_id: str) -> None:
        queue = self._queues[owner_id]
        try:
            while queue:
                change, future = queue.popleft()
                try:
                    outcome = await self.apply(change)
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                if not future.done():
                    future.set_result(outcome)
        finally:
            # No await between the empty check and removal, so submit() cannot interleave
            self._workers.pop(owner_id, None)
            if not queue:
                self._queues.pop(owner_id, None)

    async def apply(self, change: PreferenceChange) -> SchedulingOutcome:
        """Process one change. Store failures are logged and reported, never raised."""
        owner_id = change.owner_id
        preference_changes_total.labels(change_type=change.change_type.value).inc()
        logger.info(f"📝 [Watch] Change detected: type={change.change_type.value}, userId={owner_id}")

        try:
            if change.change_type == PreferenceChangeType.REMOVED:
                logger.info(f"🗑️ [Watch] Notification preferences removed for user {owner_id}")
                return await self._clear(owner_id)

            try:
                config = parse_preference_document(owner_id, change.document or {})
            except PreferenceDocumentError as e:
                logger.warning(f"⚠️ [Watch] {e}; clearing occurrences")
                return await self._clear(owner_id)

            if not config.is_schedulable:
                logger.info(
                    f"⚠️ [Watch] Not scheduling user {owner_id}: "
                    f"enabled={config.enabled}, hasToken={bool(config.push_address)}"
                )
                return await self._clear(owner_id)

            return await self.schedule(config)
        except Exception as e:
            logger.exception(f"❌ [Watch] Error handling change for user {owner_id}: {e!r}")
            return SchedulingOutcome(owner_id=owner_id, action="failed", error=str(e))

    async def schedule(self, config: RecurrenceConfig) -> SchedulingOutcome:
        now = self._clock()
        resolution = resolve(now, config, self._settings.HORIZON_WEEKS)
        rows = build_occurrences(config, resolution, self._settings.DEFAULT_TITLE, now)

        logger.info(
            f"📅 [Watch] Scheduling for user {config.owner_id}: {config.hour:02d}:{config.minute:02d} "
            f"offset={config.timezone_offset_minutes}min frequency={config.frequency.value} days={config.days}"
        )
        await asyncio.to_thread(self._replace, config.owner_id, rows)

        occurrences_generated_total.inc(len(rows))
        occurrences_skipped_total.inc(resolution.skipped)
        logger.info(
            f"✅ [Watch] Scheduling complete for user {config.owner_id}: "
            f"created={len(rows)} skipped={resolution.skipped}"
        )
        return SchedulingOutcome(
            owner_id=config.owner_id, action="scheduled", scheduled=len(rows), skipped=resolution.skipped
        )

    async def _clear(self, owner_id: str) -> SchedulingOutcome:
        cleared = await asyncio.to_thread(self._delete, owner_id)
        logger.info(f"✅ [Watch] Cancelled {cleared} notifications for user {owner_id}")
        return SchedulingOutcome(owner_id=owner_id, action="cleared", cleared=cleared)

    def _replace(self, owner_id: str, rows: List[ScheduledNotification]) -> int:
        db = self._session_factory()
        try:
            return repository.replace_occurrences(db, owner_id, rows)
        finally:
            db.close()

    def _delete(self, owner_id: str) -> int:
        db = self._session_factory()
        try:
            return repository.delete_for_owner(db, owner_id)
        finally:
            db.close()

    async def join(self) -> None:
        """Wait until every queued change has been applied."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def stop(self) -> None:
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        for queue in self._queues.values():
            for _, future in queue:
                future.cancel()
        self._queues.clear()
        self._workers.clear()
