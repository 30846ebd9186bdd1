import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from studywell.core.lifecycle import ServiceLifecycle
from studywell.db.session import SessionLocal
from studywell.utils.timezone import to_utc_aware, utc_now
from . import repository
from .config import ReminderSettings, settings as default_settings
from .exceptions import DeliveryError, InvalidAddressError, TransientDeliveryError
from .metrics import (
    dispatch_sweeps_total,
    reminders_dispatch_failed_total,
    reminders_dispatch_retried_total,
    reminders_dispatch_success_total,
)
from .models import ScheduledNotification

logger = logging.getLogger(__name__)

# FCM errors meaning the token will never work again
_PERMANENT_FCM_ERRORS = (
    messaging.UnregisteredError,
    messaging.SenderIdMismatchError,
    firebase_exceptions.InvalidArgumentError,
)


def _token_preview(token: Optional[str]) -> str:
    return f"{token[:20]}..." if token else "None"


class DeliveryGateway(ABC):
    """Sends one push message for one occurrence.

    ``send`` returns the provider's message reference, or raises
    InvalidAddressError / TransientDeliveryError.
    """

    @abstractmethod
    async def send(self, occurrence: ScheduledNotification) -> str:
        ...


class FcmDeliveryGateway(DeliveryGateway):
    """Delivery through Firebase Cloud Messaging (Android + APNs via FCM)."""

    def __init__(self, app=None, settings: ReminderSettings = default_settings):
        self._app = app
        self._settings = settings

    def build_message(self, occurrence: ScheduledNotification) -> messaging.Message:
        scheduled_for = to_utc_aware(occurrence.scheduled_for)
        return messaging.Message(
            token=occurrence.push_address,
            notification=messaging.Notification(title=occurrence.title, body=occurrence.message),
            data={
                "type": occurrence.notification_type or "study_reminder",
                "userId": str(occurrence.owner_id),
                "occurrenceId": str(occurrence.id),
                "weekday": str(occurrence.weekday),
                "weekIndex": str(occurrence.week_index),
                "scheduledForUtc": scheduled_for.isoformat() if scheduled_for else "",
            },
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    channel_id=self._settings.ANDROID_CHANNEL_ID,
                    sound="default",
                    priority="max",
                ),
            ),
            apns=messaging.APNSConfig(
                headers={
                    "apns-push-type": "alert",
                    "apns-priority": "10",
                    "apns-collapse-id": str(occurrence.id),
                }
            ),
        )

    async def send(self, occurrence: ScheduledNotification) -> str:
        try:
            message = self.build_message(occurrence)
        except ValueError as e:
            # The SDK rejects malformed tokens while building the message
            raise InvalidAddressError(f"Unusable push address: {e}", code="invalid-address") from e

        logger.info(f"🚀 [FCM] Sending {occurrence.id} to token: {_token_preview(occurrence.push_address)}")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(messaging.send, message, False, self._app),
                timeout=self._settings.DELIVERY_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            raise TransientDeliveryError(
                f"FCM send timed out after {self._settings.DELIVERY_TIMEOUT_SECONDS}s", code="timeout"
            ) from e
        except _PERMANENT_FCM_ERRORS as e:
            raise InvalidAddressError(str(e), code=getattr(e, "code", None)) from e
        except firebase_exceptions.FirebaseError as e:
            raise TransientDeliveryError(str(e), code=getattr(e, "code", None)) from e


@dataclass
class DispatchSummary:
    due: int = 0
    delivered: int = 0
    failed: int = 0
    retried: int = 0
    errors: int = 0
    skipped: bool = False


class DispatchPoller:
    """Periodic sweep: deliver Pending occurrences whose time has come.

    A Delivered row is never sent again because the Pending -> Delivered
    transition is conditional. Two overlapping sweeps may both send the
    same occurrence; only one transition wins.
    """

    def __init__(
        self,
        gateway: DeliveryGateway,
        lifecycle: ServiceLifecycle,
        session_factory=SessionLocal,
        settings: ReminderSettings = default_settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._gateway = gateway
        self._lifecycle = lifecycle
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock

    async def run_once(self) -> DispatchSummary:
        if not self._lifecycle.ready():
            logger.info("⏰ [Dispatch] Sweep skipped: backend not initialised")
            return DispatchSummary(skipped=True)

        now = self._clock()
        window_start = now - timedelta(seconds=self._settings.DISPATCH_LOOKBACK_SECONDS)
        window_end = now + timedelta(seconds=self._settings.DISPATCH_WINDOW_SECONDS)
        dispatch_sweeps_total.inc()

        due = await asyncio.to_thread(self._find_due, window_start, window_end)
        summary = DispatchSummary(due=len(due))
        if not due:
            logger.debug(f"ℹ️ [Dispatch] No notifications due between {window_start.isoformat()} and {window_end.isoformat()}")
            return summary

        logger.info(f"📤 [Dispatch] Found {len(due)} notifications to send")
        limiter = asyncio.Semaphore(max(1, self._settings.DISPATCH_CONCURRENCY))

        async def _bounded(occurrence: ScheduledNotification) -> str:
            async with limiter:
                return await self.deliver(occurrence)

        for result in await asyncio.gather(*(_bounded(o) for o in due)):
            setattr(summary, result, getattr(summary, result) + 1)

        logger.info(
            f"✅ [Dispatch] Sweep done: delivered={summary.delivered} failed={summary.failed} "
            f"retried={summary.retried} errors={summary.errors}"
        )
        return summary

    async def deliver(self, occurrence: ScheduledNotification) -> str:
        """Attempt one occurrence; returns the DispatchSummary field to count it under."""
        try:
            message_ref = await self._gateway.send(occurrence)
        except DeliveryError as e:
            if not e.retryable:
                logger.warning(
                    f"❌ [Dispatch] Unusable address for {occurrence.id} "
                    f"({_token_preview(occurrence.push_address)}): {e}"
                )
                reminders_dispatch_failed_total.inc()
                detail = f"{e.code or 'invalid-address'}: {e}"
                return await self._record(self._mark_failed, occurrence.id, detail, "failed")
            logger.warning(f"⚠️ [Dispatch] Transient failure for {occurrence.id}, will retry: {e}")
            reminders_dispatch_retried_total.inc()
            return "retried"
        except Exception as e:
            logger.exception(f"⚠️ [Dispatch] Unexpected error sending {occurrence.id}, will retry: {e!r}")
            reminders_dispatch_retried_total.inc()
            return "retried"

        logger.info(f"✅ [Dispatch] Sent notification {occurrence.id}: {message_ref}")
        reminders_dispatch_success_total.inc()
        return await self._record(self._mark_delivered, occurrence.id, message_ref, "delivered")

    async def _record(self, mark: Callable[[str, str], bool], occurrence_id: str, detail: str, outcome: str) -> str:
        try:
            changed = await asyncio.to_thread(mark, occurrence_id, detail)
        except Exception as e:
            logger.error(f"❌ [Dispatch] Could not record {outcome} for {occurrence_id}: {e!r}")
            return "errors"
        if not changed:
            logger.info(f"ℹ️ [Dispatch] {occurrence_id} already terminal or removed; state left as is")
        return outcome

    def _find_due(self, window_start: datetime, window_end: datetime) -> List[ScheduledNotification]:
        db = self._session_factory()
        try:
            return repository.find_due_undelivered(db, window_start, window_end, limit=self._settings.DISPATCH_BATCH_SIZE)
        finally:
            db.close()

    def _mark_delivered(self, occurrence_id: str, message_ref: str) -> bool:
        db = self._session_factory()
        try:
            return repository.mark_delivered(db, occurrence_id, message_ref, self._clock())
        finally:
            db.close()

    def _mark_failed(self, occurrence_id: str, error_detail: str) -> bool:
        db = self._session_factory()
        try:
            return repository.mark_failed(db, occurrence_id, error_detail)
        finally:
            db.close()
