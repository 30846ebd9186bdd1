"""
Schemas for recurrence configuration and the operational API
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


ALL_DAYS = [1, 2, 3, 4, 5, 6, 7]
WEEKDAYS = [1, 2, 3, 4, 5]


class RecurrenceFrequency(str, Enum):
    """How often the reminder repeats"""
    DAILY = "daily"
    WEEKDAY = "weekday"
    CUSTOM = "custom"


class RecurrenceConfig(BaseModel):
    """Per-owner reminder settings.

    ``days`` uses 1=Monday .. 7=Sunday and is always resolved to a concrete,
    non-empty, sorted set once the model is built.
    """
    owner_id: str
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(..., ge=0, le=59)
    frequency: RecurrenceFrequency = RecurrenceFrequency.DAILY
    days: List[int] = Field(default_factory=list)
    message: str
    push_address: Optional[str] = None
    enabled: bool = True
    timezone_offset_minutes: int = Field(default=0, ge=-14 * 60, le=14 * 60)

    @field_validator("days")
    @classmethod
    def _check_day_range(cls, v: List[int]) -> List[int]:
        bad = [d for d in v if d < 1 or d > 7]
        if bad:
            raise ValueError(f"weekdays must be within 1..7, got {bad}")
        return v

    @model_validator(mode="after")
    def _resolve_days(self) -> "RecurrenceConfig":
        if self.frequency == RecurrenceFrequency.DAILY:
            resolved = ALL_DAYS
        elif self.frequency == RecurrenceFrequency.WEEKDAY:
            resolved = WEEKDAYS
        else:
            resolved = sorted(set(self.days)) or WEEKDAYS
        self.days = list(resolved)
        return self

    @property
    def is_schedulable(self) -> bool:
        return bool(self.enabled and self.push_address)


class OccurrenceRead(BaseModel):
    id: str
    owner_id: str
    weekday: int
    week_index: int
    scheduled_for: datetime
    title: str
    message: str
    delivery_state: str
    created_at: datetime
    delivered_at: Optional[datetime] = None
    message_ref: Optional[str] = None
    error_detail: Optional[str] = None


class HealthStatus(BaseModel):
    status: str
    service: str
    firebaseInitialized: bool
    ready: bool
    failureReason: Optional[str] = None
    timestamp: datetime


class TriggerResult(BaseModel):
    success: bool
    message: str
    scheduled: int = 0
