import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from studywell.utils.timezone import to_utc_aware, utc_now
from . import repository
from .preferences import PreferenceChange, PreferenceChangeType
from .schemas import HealthStatus, OccurrenceRead, TriggerResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _runtime(request: Request):
    return request.app.state.runtime


def get_db(request: Request):
    """Session from the runtime's factory, closed after the request."""
    db = _runtime(request).session_factory()
    try:
        yield db
    finally:
        db.close()


@router.get("/", response_model=HealthStatus)
@router.get("/health", response_model=HealthStatus)
def health_check(request: Request):
    runtime = _runtime(request)
    lifecycle = runtime.lifecycle
    return HealthStatus(
        status="ok",
        service=runtime.settings.SERVICE_NAME,
        firebaseInitialized=lifecycle.firebase_initialized,
        ready=lifecycle.ready(),
        failureReason=lifecycle.failure_reason,
        timestamp=utc_now(),
    )


@router.post("/trigger-schedule/{owner_id}", response_model=TriggerResult)
async def trigger_schedule(owner_id: str, request: Request):
    """Diagnostic: re-run the preference handling for one owner right now."""
    runtime = _runtime(request)
    if not runtime.lifecycle.ready():
        raise HTTPException(status_code=503, detail="Firebase not initialized")

    document = await asyncio.to_thread(runtime.feed.fetch, owner_id)
    if document is None:
        raise HTTPException(status_code=404, detail="User preferences not found")

    logger.info(f"🔧 [Trigger] Manual trigger: Scheduling for user {owner_id}")
    change = PreferenceChange(change_type=PreferenceChangeType.MODIFIED, owner_id=owner_id, document=document)
    outcome = await runtime.watch_loop.submit(change)

    if not outcome.ok:
        raise HTTPException(status_code=500, detail=outcome.error or "Scheduling failed")
    if outcome.action == "scheduled":
        return TriggerResult(
            success=True,
            message=f"Scheduled notifications for user {owner_id}",
            scheduled=outcome.scheduled,
        )
    return TriggerResult(success=False, message="Notifications disabled or no FCM token")


@router.get("/occurrences/{owner_id}", response_model=List[OccurrenceRead])
def list_occurrences(owner_id: str, limit: int = 200, db: Session = Depends(get_db)):
    items = repository.list_for_owner(db, owner_id, limit=limit)
    return [
        OccurrenceRead(
            id=i.id,
            owner_id=i.owner_id,
            weekday=i.weekday,
            week_index=i.week_index,
            scheduled_for=to_utc_aware(i.scheduled_for),
            title=i.title,
            message=i.message,
            delivery_state=i.delivery_state,
            created_at=to_utc_aware(i.created_at),
            delivered_at=to_utc_aware(i.delivered_at),
            message_ref=i.message_ref,
            error_detail=i.error_detail,
        )
        for i in items
    ]
