"""Available-slot search around blocked time."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workblock.config import get_settings
from workblock.core.intervals import overlaps
from workblock.errors import ValidationError
from workblock.models.calendar import BlockedTimeSlot

WEEKEND = frozenset({5, 6})  # date.weekday(): Saturday, Sunday


@dataclass(frozen=True)
class Slot:
    start_time: datetime
    end_time: datetime


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError):
        raise ValidationError(f"Unknown timezone: {name}")


def compute_available_slots(
    busy: Iterable[tuple[datetime, datetime]],
    start_date: date,
    end_date: date,
    duration_minutes: int = 60,
    start_hour: int = 8,
    end_hour: int = 17,
    exclude_weekdays: Iterable[int] = WEEKEND,
    step_minutes: int = 60,
    tz: tzinfo = timezone.utc,
    max_days: int = 62,
) -> dict[str, list[Slot]]:
    """Candidate windows on a fixed grid that avoid every busy interval.

    Each day in ``[start_date, end_date]`` not in ``exclude_weekdays`` is
    walked from ``start_hour`` in ``step_minutes`` increments; a candidate is
    kept when it ends by ``end_hour`` and overlaps no busy interval. Hours are
    wall-clock in ``tz``; returned datetimes are UTC. Days without any free
    slot are left out. Same inputs always give the same output.
    """
    if duration_minutes <= 0:
        raise ValidationError("duration must be a positive number of minutes")
    if step_minutes <= 0:
        raise ValidationError("step must be a positive number of minutes")
    if not (0 <= start_hour < end_hour <= 24):
        raise ValidationError("start_hour and end_hour must satisfy 0 <= start_hour < end_hour <= 24")
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    if (end_date - start_date).days + 1 > max_days:
        raise ValidationError(f"Date range cannot exceed {max_days} days")

    excluded = set(exclude_weekdays)
    windows = sorted(busy)
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)

    slots: dict[str, list[Slot]] = {}
    day = start_date
    while day <= end_date:
        if day.weekday() not in excluded:
            day_start = datetime.combine(day, time(start_hour), tzinfo=tz)
            if end_hour == 24:
                day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
            else:
                day_end = datetime.combine(day, time(end_hour), tzinfo=tz)

            cursor = day_start
            while cursor + duration <= day_end:
                slot_start = cursor.astimezone(timezone.utc)
                slot_end = (cursor + duration).astimezone(timezone.utc)
                if not any(overlaps(slot_start, slot_end, b_start, b_end) for b_start, b_end in windows):
                    slots.setdefault(day.isoformat(), []).append(Slot(slot_start, slot_end))
                cursor += step
        day += timedelta(days=1)
    return slots


class SlotFinder:
    """Looks up an organization's active blocks and runs the grid search."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def find_available_slots(
        self,
        organization_id: UUID,
        start_date: date,
        end_date: date,
        duration_minutes: int = 60,
        start_hour: int = 8,
        end_hour: int = 17,
        exclude_weekdays: Iterable[int] = WEEKEND,
        step_minutes: int = 60,
    ) -> dict[str, list[Slot]]:
        tz = resolve_timezone(self.settings.scheduling_timezone)
        range_start = datetime.combine(start_date, time.min, tzinfo=tz)
        range_end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=tz)

        result = await self.db.execute(
            select(BlockedTimeSlot.start_time, BlockedTimeSlot.end_time).where(
                BlockedTimeSlot.organization_id == organization_id,
                BlockedTimeSlot.is_active.is_(True),
                BlockedTimeSlot.start_time < range_end,
                BlockedTimeSlot.end_time > range_start,
            )
        )
        busy = [(start, end) for start, end in result.all()]

        return compute_available_slots(
            busy,
            start_date,
            end_date,
            duration_minutes=duration_minutes,
            start_hour=start_hour,
            end_hour=end_hour,
            exclude_weekdays=exclude_weekdays,
            step_minutes=step_minutes,
            tz=tz,
            max_days=self.settings.max_slot_search_days,
        )
