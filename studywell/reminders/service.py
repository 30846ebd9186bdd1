import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from studywell.core.firebase import initialize_firebase
from studywell.core.lifecycle import ServiceLifecycle
from studywell.db.base import Base
from studywell.db.session import SessionLocal, engine as default_engine
from studywell.utils.timezone import utc_now
from .api import router as reminders_router
from .config import ReminderSettings, get_settings
from .dispatcher import DeliveryGateway, DispatchPoller, FcmDeliveryGateway
from .exceptions import FirebaseInitError
from .preferences import FirestorePreferenceFeed
from .retention import RetentionSweeper
from .scheduler import ReminderScheduler
from .watcher import PreferenceWatchLoop

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


class ReminderRuntime:
    """Everything the reminder backend runs, wired around one lifecycle.

    ``gateway`` and ``feed`` may be injected; otherwise they are built from
    the Firebase app initialised in ``start()``.
    """

    def __init__(
        self,
        settings: Optional[ReminderSettings] = None,
        engine=default_engine,
        session_factory=SessionLocal,
        gateway: Optional[DeliveryGateway] = None,
        feed=None,
        lifecycle: Optional[ServiceLifecycle] = None,
    ):
        self.settings = settings or get_settings()
        self.engine = engine
        self.session_factory = session_factory
        self.gateway = gateway
        self.feed = feed
        self.lifecycle = lifecycle or ServiceLifecycle()
        self.watch_loop = PreferenceWatchLoop(session_factory=session_factory, settings=self.settings)
        self.poller: Optional[DispatchPoller] = None
        self.sweeper = RetentionSweeper(self.lifecycle, session_factory=session_factory, settings=self.settings)
        self.scheduler: Optional[ReminderScheduler] = None
        self._feed_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        logger.info(f"🔧 [Startup] Starting {self.settings.SERVICE_NAME}")
        try:
            await asyncio.to_thread(Base.metadata.create_all, bind=self.engine)
        except Exception as e:
            self.lifecycle.mark_failed(f"Occurrence store unavailable: {e!r}")
        else:
            self._init_delivery()

        if self.gateway is not None:
            self.poller = DispatchPoller(
                self.gateway,
                self.lifecycle,
                session_factory=self.session_factory,
                settings=self.settings,
            )

        self.scheduler = ReminderScheduler(self.lifecycle)
        if self.poller is not None:
            self.scheduler.add_job(
                "dispatch",
                self.poller.run_once,
                "interval",
                seconds=self.settings.DISPATCH_INTERVAL_SECONDS,
                next_run_time=utc_now(),
            )
        self.scheduler.add_job(
            "retention",
            self.sweeper.run_once,
            "cron",
            hour=self.settings.RETENTION_CRON_HOUR,
            minute=self.settings.RETENTION_CRON_MINUTE,
        )
        self.scheduler.add_job(
            "heartbeat",
            self.heartbeat,
            "interval",
            requires_ready=False,
            seconds=self.settings.HEARTBEAT_INTERVAL_SECONDS,
        )
        self.scheduler.start()

        if self.lifecycle.ready():
            self._feed_task = asyncio.create_task(self._start_feed_later(), name="preference-feed-start")

    def _init_delivery(self) -> None:
        if self.gateway is not None and self.feed is not None:
            self.lifecycle.mark_ready()
            return
        try:
            app = initialize_firebase(self.settings.FIREBASE_SERVICE_ACCOUNT, self.settings.FCM_PROJECT_ID)
        except FirebaseInitError as e:
            self.lifecycle.mark_failed(str(e))
            return
        self.lifecycle.mark_firebase_initialized()
        self.gateway = self.gateway or FcmDeliveryGateway(app, settings=self.settings)
        self.feed = self.feed or FirestorePreferenceFeed(app, self.lifecycle, self.settings.PREFERENCES_COLLECTION)
        self.lifecycle.mark_ready()

    async def _start_feed_later(self) -> None:
        await asyncio.sleep(self.settings.WATCH_START_DELAY_SECONDS)
        logger.info("⏰ [Startup] Checking initialization status before starting watcher...")
        if not self.lifecycle.ready():
            logger.error("❌ [Startup] Backend not initialised, cannot start Firestore watcher")
            return
        try:
            self.feed.start(self.watch_loop.submit)
        except Exception as e:
            logger.exception(f"❌ [Startup] Error setting up preference listener: {e!r}")

    async def heartbeat(self) -> None:
        logger.info(f"💓 [Heartbeat] Server alive | ready={'✅' if self.lifecycle.ready() else '❌'}")

    async def stop(self) -> None:
        if self._feed_task is not None:
            self._feed_task.cancel()
            await asyncio.gather(self._feed_task, return_exceptions=True)
        if self.feed is not None:
            self.feed.stop()
        if self.scheduler is not None:
            self.scheduler.stop()
        await self.watch_loop.stop()
        logger.info("🛑 [Shutdown] Reminder backend stopped")


def create_app(runtime: Optional[ReminderRuntime] = None) -> FastAPI:
    runtime = runtime or ReminderRuntime()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(runtime.settings.LOG_LEVEL)
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title=runtime.settings.SERVICE_NAME, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(reminders_router)

    if runtime.settings.METRICS_ENABLED:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": True, "message": exc.detail, "status_code": exc.status_code},
        )

    return app
