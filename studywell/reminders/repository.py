from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from studywell.utils.timezone import to_utc_naive
from .models import DeliveryState, ScheduledNotification


def _already_settled(current: Optional[ScheduledNotification], occurrence: ScheduledNotification) -> bool:
    """True when a stored terminal row already covers this exact slot and instant.

    Delivered rows are kept so a replayed change cannot send them again. Failed
    rows are kept only while the push address is unchanged.
    """
    if current is None or current.delivery_state == DeliveryState.PENDING.value:
        return False
    if current.scheduled_for != to_utc_naive(occurrence.scheduled_for):
        return False
    if current.delivery_state == DeliveryState.FAILED.value:
        return current.push_address == occurrence.push_address
    return True


def replace_occurrences(db: Session, owner_id: str, occurrences: Sequence[ScheduledNotification]) -> int:
    """Make ``occurrences`` the complete stored set for ``owner_id``.

    Runs in one transaction. Terminal rows whose key and instant match the
    new resolution are left untouched; every other row of the owner is
    dropped and the rest inserted. Keys are deterministic, so a replay with
    the same resolution converges to the same state.
    """
    try:
        existing = {
            row.id: row
            for row in db.execute(
                select(ScheduledNotification).where(ScheduledNotification.owner_id == owner_id)
            ).scalars()
        }
        keep = set()
        for occurrence in occurrences:
            if occurrence.owner_id != owner_id:
                raise ValueError(f"occurrence {occurrence.id} does not belong to {owner_id}")
            if _already_settled(existing.get(occurrence.id), occurrence):
                keep.add(occurrence.id)

        db.execute(
            delete(ScheduledNotification)
            .where(ScheduledNotification.owner_id == owner_id)
            .where(ScheduledNotification.id.not_in(sorted(keep))),
            execution_options={"synchronize_session": "fetch"},
        )
        for occurrence in occurrences:
            if occurrence.id not in keep:
                db.merge(occurrence)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return len(occurrences)


def delete_for_owner(db: Session, owner_id: str) -> int:
    result = db.execute(delete(ScheduledNotification).where(ScheduledNotification.owner_id == owner_id))
    db.commit()
    return result.rowcount or 0


def get_occurrence(db: Session, occurrence_id: str) -> Optional[ScheduledNotification]:
    return db.get(ScheduledNotification, occurrence_id)


def list_for_owner(db: Session, owner_id: str, limit: int = 200) -> List[ScheduledNotification]:
    stmt = (
        select(ScheduledNotification)
        .where(ScheduledNotification.owner_id == owner_id)
        .order_by(ScheduledNotification.scheduled_for.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def find_due_undelivered(
    db: Session,
    window_start: datetime,
    window_end: datetime,
    limit: int = 500,
) -> List[ScheduledNotification]:
    """Pending occurrences scheduled within [window_start, window_end], oldest first."""
    stmt = (
        select(ScheduledNotification)
        .where(ScheduledNotification.delivery_state == DeliveryState.PENDING.value)
        .where(ScheduledNotification.scheduled_for >= to_utc_naive(window_start))
        .where(ScheduledNotification.scheduled_for <= to_utc_naive(window_end))
        .order_by(ScheduledNotification.scheduled_for.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def mark_delivered(db: Session, occurrence_id: str, message_ref: Optional[str], delivered_at: datetime) -> bool:
    """Pending -> Delivered. Returns False (no-op) when the row is already terminal or gone."""
    result = db.execute(
        update(ScheduledNotification)
        .where(ScheduledNotification.id == occurrence_id)
        .where(ScheduledNotification.delivery_state == DeliveryState.PENDING.value)
        .values(
            delivery_state=DeliveryState.DELIVERED.value,
            delivered_at=to_utc_naive(delivered_at),
            message_ref=message_ref,
        )
    )
    db.commit()
    return result.rowcount == 1


def mark_failed(db: Session, occurrence_id: str, error_detail: str) -> bool:
    """Pending -> Failed. Returns False (no-op) when the row is already terminal or gone."""
    result = db.execute(
        update(ScheduledNotification)
        .where(ScheduledNotification.id == occurrence_id)
        .where(ScheduledNotification.delivery_state == DeliveryState.PENDING.value)
        .values(delivery_state=DeliveryState.FAILED.value, error_detail=error_detail)
    )
    db.commit()
    return result.rowcount == 1


def purge_older_than(db: Session, cutoff: datetime, state: DeliveryState) -> int:
    """Bulk delete terminal occurrences older than ``cutoff``.

    Delivered rows age from ``delivered_at``; Failed rows from ``created_at``.
    """
    if state == DeliveryState.PENDING:
        raise ValueError("pending occurrences are only removed by regeneration")
    age_column = (
        ScheduledNotification.delivered_at
        if state == DeliveryState.DELIVERED
        else ScheduledNotification.created_at
    )
    result = db.execute(
        delete(ScheduledNotification)
        .where(ScheduledNotification.delivery_state == state.value)
        .where(age_column < to_utc_naive(cutoff))
    )
    db.commit()
    return result.rowcount or 0
