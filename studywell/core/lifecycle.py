"""
Process lifecycle shared by every reminder component
"""
import logging
import threading
from datetime import datetime
from typing import Optional

from studywell.utils.timezone import utc_now

logger = logging.getLogger(__name__)


class ServiceLifecycle:
    """Tracks whether the backend finished initialising.

    Built once at process start and handed to the feed, poller, sweeper and
    API. Readiness may be read from Firestore's watch thread, hence the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ready = False
        self._firebase_initialized = False
        self._failure_reason: Optional[str] = None
        self.started_at: datetime = utc_now()

    def ready(self) -> bool:
        with self._lock:
            return self._ready

    @property
    def firebase_initialized(self) -> bool:
        with self._lock:
            return self._firebase_initialized

    @property
    def failure_reason(self) -> Optional[str]:
        with self._lock:
            return self._failure_reason

    def mark_firebase_initialized(self) -> None:
        with self._lock:
            self._firebase_initialized = True

    def mark_ready(self) -> None:
        with self._lock:
            self._ready = True
            self._failure_reason = None
        logger.info("✅ [Startup] Reminder backend ready")

    def mark_failed(self, reason: str) -> None:
        with self._lock:
            self._ready = False
            self._failure_reason = reason
        logger.error(f"❌ [Startup] Scheduling disabled: {reason}")
