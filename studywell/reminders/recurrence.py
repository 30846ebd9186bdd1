"""
Recurrence resolution: turns a RecurrenceConfig into concrete future instants
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Tuple

from studywell.utils.timezone import format_offset, to_utc_aware
from .schemas import RecurrenceConfig

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_WEEKS = 8


@dataclass(frozen=True)
class ResolvedOccurrence:
    """One future firing instant, identified by (weekday, week_index)"""
    weekday: int  # 1=Monday .. 7=Sunday
    week_index: int
    scheduled_for: datetime  # UTC-aware


@dataclass
class Resolution:
    occurrences: List[ResolvedOccurrence] = field(default_factory=list)
    skipped: int = 0


def utc_time_of_day(hour: int, minute: int, timezone_offset_minutes: int) -> Tuple[int, int]:
    """Shift a local hour:minute to UTC using the owner's offset.

    Only whole hours of the offset are applied; the minute is left unchanged.
    Zones with 30/45 minute offsets therefore fire up to 45 minutes off.
    """
    offset_hours = int(timezone_offset_minutes / 60)
    if timezone_offset_minutes % 60:
        logger.warning(
            f"⚠️ [Resolver] Offset {format_offset(timezone_offset_minutes)} is not a whole hour; "
            f"using {offset_hours:+d}h"
        )
    return (hour - offset_hours) % 24, minute


def resolve(now: datetime, config: RecurrenceConfig, horizon_weeks: int = DEFAULT_HORIZON_WEEKS) -> Resolution:
    """Compute the future occurrences of ``config`` for ``horizon_weeks`` weeks after ``now``.

    Pure and deterministic: the same ``now`` and config always give the same
    result, and a later ``now`` simply drops the instants that have passed.
    Instants not strictly after ``now`` are counted in ``skipped``.
    """
    now = to_utc_aware(now)
    utc_hour, minute = utc_time_of_day(config.hour, config.minute, config.timezone_offset_minutes)
    current_weekday = now.isoweekday()
    target_today = now.replace(hour=utc_hour, minute=minute, second=0, microsecond=0)

    resolution = Resolution()
    for week_index in range(horizon_weeks):
        for weekday in config.days:
            if weekday == current_weekday:
                if target_today > now:
                    days_ahead = week_index * 7
                else:
                    days_ahead = 7 + week_index * 7
            else:
                days_ahead = (weekday - current_weekday) % 7 + week_index * 7

            candidate = target_today + timedelta(days=days_ahead)
            if candidate <= now:
                resolution.skipped += 1
                continue
            resolution.occurrences.append(ResolvedOccurrence(weekday, week_index, candidate))

    resolution.occurrences.sort(key=lambda o: (o.scheduled_for, o.weekday, o.week_index))
    return resolution
