"""
In-process periodic jobs (dispatch sweep, retention, heartbeat) on APScheduler
"""
import logging
from dataclasses import dataclass
from datetime import timezone
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from studywell.core.lifecycle import ServiceLifecycle

logger = logging.getLogger(__name__)


@dataclass
class _JobSpec:
    func: Callable[[], Awaitable[object]]
    requires_ready: bool


class ReminderScheduler:
    """Thin wrapper over AsyncIOScheduler.

    Every job goes through ``run_job``, which skips jobs that need a ready
    backend and logs failures so the trigger simply fires again next time.
    """

    def __init__(self, lifecycle: ServiceLifecycle):
        self._lifecycle = lifecycle
        self._jobs: Dict[str, _JobSpec] = {}
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def add_job(
        self,
        name: str,
        func: Callable[[], Awaitable[object]],
        trigger: str,
        requires_ready: bool = True,
        **trigger_args,
    ) -> None:
        self._jobs[name] = _JobSpec(func, requires_ready)
        self._scheduler.add_job(
            self.run_job,
            trigger,
            args=[name],
            id=name,
            name=name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **trigger_args,
        )
        logger.info(f"⏰ [Scheduler] Registered job {name} ({trigger} {trigger_args})")

    def get_job(self, name: str):
        return self._scheduler.get_job(name)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info(f"⏰ [Scheduler] Started with jobs: {', '.join(self._jobs)}")

    async def run_job(self, name: str) -> Optional[object]:
        """Run one job now. Returns None when skipped or failed."""
        job = self._jobs[name]
        if job.requires_ready and not self._lifecycle.ready():
            logger.info(f"⏰ [Scheduler] {name} skipped: backend not initialised")
            return None
        try:
            return await job.func()
        except Exception as e:
            logger.exception(f"❌ [Scheduler] Job {name} failed, retrying next period: {e!r}")
            return None

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("🛑 [Scheduler] All jobs stopped")
