import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict

from studywell.core.lifecycle import ServiceLifecycle
from studywell.db.session import SessionLocal
from studywell.utils.timezone import utc_now
from . import repository
from .config import ReminderSettings, settings as default_settings
from .metrics import occurrences_purged_total
from .models import DeliveryState

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Daily purge of Delivered/Failed occurrences older than the retention window."""

    def __init__(
        self,
        lifecycle: ServiceLifecycle,
        session_factory=SessionLocal,
        settings: ReminderSettings = default_settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._lifecycle = lifecycle
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock

    async def run_once(self) -> Dict[str, int]:
        if not self._lifecycle.ready():
            return {}

        cutoff = self._clock() - timedelta(days=self._settings.RETENTION_DAYS)
        purged: Dict[str, int] = {}
        for state in (DeliveryState.DELIVERED, DeliveryState.FAILED):
            try:
                count = await asyncio.to_thread(self._purge, cutoff, state)
            except Exception as e:
                logger.error(f"❌ [Retention] Error cleaning up {state.value} notifications: {e!r}")
                continue
            purged[state.value] = count
            occurrences_purged_total.labels(state=state.value).inc(count)

        logger.info(f"🧹 [Retention] Cleaned up old notifications before {cutoff.isoformat()}: {purged}")
        return purged

    def _purge(self, cutoff: datetime, state: DeliveryState) -> int:
        db = self._session_factory()
        try:
            return repository.purge_older_than(db, cutoff, state)
        finally:
            db.close()
