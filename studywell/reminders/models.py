"""
Occurrence model - one row per concrete future firing instant
"""
from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from studywell.db.base import Base
from studywell.utils.timezone import utc_now_naive


class DeliveryState(str, Enum):
    PENDING = "Pending"
    DELIVERED = "Delivered"
    FAILED = "Failed"


def occurrence_key(owner_id: str, weekday: int, week_index: int) -> str:
    """Deterministic identity; regeneration overwrites instead of appending."""
    return f"study_{owner_id}_{weekday}_{week_index}"


class ScheduledNotification(Base):
    """A materialized occurrence awaiting (or done with) push delivery.

    Timestamps are stored as UTC-naive values.
    """
    __tablename__ = "scheduled_notifications"

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    week_index = Column(Integer, nullable=False)
    scheduled_for = Column(DateTime, nullable=False)

    # Snapshots taken at generation time
    push_address = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    notification_type = Column(String, nullable=False, default="study_reminder")
    hour = Column(Integer, nullable=True)
    minute = Column(Integer, nullable=True)

    delivery_state = Column(String, nullable=False, default=DeliveryState.PENDING.value)
    message_ref = Column(String, nullable=True)
    error_detail = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now_naive, nullable=False)
    delivered_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("owner_id", "weekday", "week_index", name="uq_scheduled_notifications_slot"),
        Index("ix_scheduled_notifications_state_time", "delivery_state", "scheduled_for"),
    )

    def __repr__(self) -> str:
        return f"<ScheduledNotification {self.id} {self.delivery_state} @ {self.scheduled_for}>"
