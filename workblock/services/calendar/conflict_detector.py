"""
Conflict Detector.

Handles:
- Flagging work events whose blocks overlap upcoming lessons
- Validating a proposed lesson window against blocks and other lessons
- Listing flagged conflicts with type, severity and suggested resolutions
- Dashboard statistics

Every comparison uses half-open windows, so touching intervals never clash.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from workblock.core.intervals import overlap_minutes, overlap_percentage, overlaps
from workblock.errors import ValidationError
from workblock.models.calendar import (
    BlockedTimeSlot,
    BlockSource,
    ConflictResolution,
    ResolutionType,
    SyncedWorkEvent,
)
from workblock.models.lesson import Lesson, LessonStatus
from workblock.models.types import utcnow

logger = logging.getLogger(__name__)

FULL_BLOCK_PERCENTAGE = 90
CRITICAL_CONFLICT_COUNT = 3
CRITICAL_MEETING_SHARE = 0.8
MINOR_OVERLAP_MINUTES = 30


def window_severity(max_percentage: int) -> str:
    """Severity of a proposed window given its worst overlap with a block."""
    if max_percentage <= 0:
        return "none"
    if max_percentage >= FULL_BLOCK_PERCENTAGE:
        return "full"
    return "partial"


def conflict_type(event: SyncedWorkEvent, lesson: Lesson) -> str:
    if event.start_time <= lesson.scheduled_start and event.end_time >= lesson.scheduled_end:
        return "full_overlap"
    if event.start_time >= lesson.scheduled_start and event.end_time <= lesson.scheduled_end:
        return "work_within_lesson"
    return "partial_overlap"


def suggest_resolutions(kind: str, minutes: float, is_meeting: bool) -> list[str]:
    if kind == "full_overlap":
        if is_meeting:
            return [ResolutionType.RESCHEDULE_LESSON.value, ResolutionType.CANCEL_LESSON.value]
        return [ResolutionType.RESCHEDULE_LESSON.value, ResolutionType.KEEP_BOTH.value]
    if kind == "work_within_lesson":
        if is_meeting:
            return [ResolutionType.RESCHEDULE_LESSON.value, ResolutionType.KEEP_BOTH.value]
        return [ResolutionType.KEEP_BOTH.value, ResolutionType.IGNORE.value]
    if minutes < MINOR_OVERLAP_MINUTES:
        return [
            ResolutionType.IGNORE.value,
            ResolutionType.KEEP_BOTH.value,
            ResolutionType.RESCHEDULE_LESSON.value,
        ]
    return [ResolutionType.RESCHEDULE_LESSON.value, ResolutionType.KEEP_BOTH.value]


def event_severity(event: SyncedWorkEvent, lessons: list[Lesson]) -> str:
    """``critical`` or ``warning`` for an event clashing with ``lessons``."""
    if not lessons:
        return "none"
    if len(lessons) >= CRITICAL_CONFLICT_COUNT:
        return "critical"
    for lesson in lessons:
        if conflict_type(event, lesson) == "full_overlap":
            return "critical"
        lesson_minutes = (lesson.scheduled_end - lesson.scheduled_start).total_seconds() / 60
        shared = overlap_minutes(
            event.start_time, event.end_time, lesson.scheduled_start, lesson.scheduled_end
        )
        if event.is_meeting and shared >= lesson_minutes * CRITICAL_MEETING_SHARE:
            return "critical"
    return "warning"


class ConflictDetector:
    """Organization-scoped conflict queries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolved_event_ids(self, organization_id: UUID) -> set[UUID]:
        result = await self.db.execute(
            select(distinct(ConflictResolution.synced_work_event_id)).where(
                ConflictResolution.organization_id == organization_id,
                ConflictResolution.synced_work_event_id.is_not(None),
            )
        )
        return set(result.scalars().all())

    async def scan_lessons_for_conflicts(
        self, organization_id: UUID, now: datetime | None = None
    ) -> dict:
        """Flag ``has_conflict`` on work events whose block overlaps a future lesson.

        Lessons are read only. Events already resolved or ignored stay as they are.
        """
        now = now or utcnow()
        errors: list[str] = []

        lessons = (
            await self.db.execute(
                select(Lesson)
                .where(
                    Lesson.organization_id == organization_id,
                    Lesson.status == LessonStatus.SCHEDULED.value,
                    Lesson.scheduled_start >= now,
                )
                .order_by(Lesson.scheduled_start)
            )
        ).scalars().all()

        blocks = (
            await self.db.execute(
                select(BlockedTimeSlot).where(
                    BlockedTimeSlot.organization_id == organization_id,
                    BlockedTimeSlot.source_type == BlockSource.WORK_EVENT.value,
                    BlockedTimeSlot.is_active.is_(True),
                    BlockedTimeSlot.end_time > now,
                )
            )
        ).scalars().all()

        conflicts_found = 0
        source_ids: set[UUID] = set()
        for lesson in lessons:
            for block in blocks:
                if overlaps(
                    lesson.scheduled_start, lesson.scheduled_end, block.start_time, block.end_time
                ):
                    conflicts_found += 1
                    if block.source_event_id is None:
                        errors.append(f"Block {block.id} has no source event")
                    else:
                        source_ids.add(block.source_event_id)

        flagged = 0
        if source_ids:
            resolved = await self.resolved_event_ids(organization_id)
            events = (
                await self.db.execute(
                    select(SyncedWorkEvent).where(
                        SyncedWorkEvent.organization_id == organization_id,
                        SyncedWorkEvent.id.in_(source_ids),
                    )
                )
            ).scalars().all()
            found = {e.id for e in events}
            for missing in sorted(source_ids - found, key=str):
                errors.append(f"Source event {missing} no longer exists")
            for event in events:
                if event.id in resolved and not event.has_conflict:
                    continue
                if not event.has_conflict:
                    event.has_conflict = True
                    flagged += 1
            await self.db.commit()

        logger.info(
            "Conflict scan for org %s: %d lessons, %d conflicts, %d newly flagged",
            organization_id,
            len(lessons),
            conflicts_found,
            flagged,
        )
        return {
            "lessons_scanned": len(lessons),
            "conflicts_found": conflicts_found,
            "events_flagged": flagged,
            "errors": errors,
        }

    async def check_window(
        self,
        organization_id: UUID,
        start: datetime,
        end: datetime,
        exclude_lesson_id: UUID | None = None,
    ) -> dict:
        """Validate a proposed lesson window against blocks and other lessons."""
        if end <= start:
            raise ValidationError("end_time must be after start_time")

        blocks = (
            await self.db.execute(
                select(BlockedTimeSlot)
                .where(
                    BlockedTimeSlot.organization_id == organization_id,
                    BlockedTimeSlot.is_active.is_(True),
                    BlockedTimeSlot.start_time < end,
                    BlockedTimeSlot.end_time > start,
                )
                .order_by(BlockedTimeSlot.start_time)
            )
        ).scalars().all()

        blocking = [
            {
                "id": block.id,
                "title": block.title,
                "source_type": block.source_type,
                "start_time": block.start_time,
                "end_time": block.end_time,
                "overlap_minutes": round(overlap_minutes(start, end, block.start_time, block.end_time)),
                "overlap_percentage": overlap_percentage(start, end, block.start_time, block.end_time),
            }
            for block in blocks
        ]
        severity = window_severity(max((b["overlap_percentage"] for b in blocking), default=0))

        stmt = select(Lesson).where(
            Lesson.organization_id == organization_id,
            Lesson.status == LessonStatus.SCHEDULED.value,
            Lesson.scheduled_start < end,
            Lesson.scheduled_end > start,
        )
        if exclude_lesson_id is not None:
            stmt = stmt.where(Lesson.id != exclude_lesson_id)
        lessons = (await self.db.execute(stmt.order_by(Lesson.scheduled_start))).scalars().all()

        return {
            "has_conflict": bool(blocking) or bool(lessons),
            "can_schedule": severity != "full",
            "severity": severity,
            "message": self._window_message(blocking, severity),
            "blocking_slots": blocking,
            "conflicting_lessons": [
                {
                    "id": lesson.id,
                    "title": lesson.title,
                    "scheduled_start": lesson.scheduled_start,
                    "scheduled_end": lesson.scheduled_end,
                }
                for lesson in lessons
            ],
        }

    @staticmethod
    def _window_message(blocking: list[dict], severity: str) -> str | None:
        if not blocking:
            return None
        if len(blocking) == 1:
            first = blocking[0]
            if severity == "full":
                return f"This time is completely blocked by: {first['title']}"
            return (
                f"This time partially conflicts with: {first['title']} "
                f"({first['overlap_percentage']}% overlap)"
            )
        if severity == "full":
            return f"This time is completely blocked by {len(blocking)} events"
        return f"This time conflicts with {len(blocking)} blocked time slots"

    async def _flagged_with_lessons(
        self,
        organization_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[tuple[SyncedWorkEvent, list[Lesson]]]:
        stmt = select(SyncedWorkEvent).where(
            SyncedWorkEvent.organization_id == organization_id,
            SyncedWorkEvent.has_conflict.is_(True),
            SyncedWorkEvent.is_deleted.is_(False),
        )
        if start is not None:
            stmt = stmt.where(SyncedWorkEvent.end_time > start)
        if end is not None:
            stmt = stmt.where(SyncedWorkEvent.start_time < end)
        events = (await self.db.execute(stmt.order_by(SyncedWorkEvent.start_time))).scalars().all()
        if not events:
            return []

        span_start = min(e.start_time for e in events)
        span_end = max(e.end_time for e in events)
        lessons = (
            await self.db.execute(
                select(Lesson)
                .where(
                    Lesson.organization_id == organization_id,
                    Lesson.status == LessonStatus.SCHEDULED.value,
                    Lesson.scheduled_start < span_end,
                    Lesson.scheduled_end > span_start,
                )
                .order_by(Lesson.scheduled_start)
            )
        ).scalars().all()

        return [
            (
                event,
                [
                    lesson
                    for lesson in lessons
                    if overlaps(
                        event.start_time, event.end_time, lesson.scheduled_start, lesson.scheduled_end
                    )
                ],
            )
            for event in events
        ]

    async def list_conflicts(
        self,
        organization_id: UUID,
        severity: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[dict]:
        """One entry per (flagged event, overlapping lesson)."""
        if severity is not None and severity not in ("critical", "warning"):
            raise ValidationError("severity must be 'critical' or 'warning'")

        entries = []
        for event, lessons in await self._flagged_with_lessons(organization_id, start, end):
            level = event_severity(event, lessons)
            if severity is not None and level != severity:
                continue
            for lesson in lessons:
                kind = conflict_type(event, lesson)
                minutes = overlap_minutes(
                    event.start_time, event.end_time, lesson.scheduled_start, lesson.scheduled_end
                )
                entries.append(
                    {
                        "id": f"{event.id}-{lesson.id}",
                        "work_event": event,
                        "lesson": lesson,
                        "conflict_type": kind,
                        "overlap_minutes": round(minutes),
                        "severity": level,
                        "suggested_resolutions": suggest_resolutions(kind, minutes, event.is_meeting),
                    }
                )
        return entries

    async def conflict_statistics(self, organization_id: UUID, now: datetime | None = None) -> dict:
        now = now or utcnow()
        flagged = await self._flagged_with_lessons(organization_id)

        critical = warning = upcoming = 0
        for event, lessons in flagged:
            level = event_severity(event, lessons)
            if level == "critical":
                critical += 1
            elif level == "warning":
                warning += 1
            if now <= event.start_time <= now + timedelta(days=7):
                upcoming += 1

        resolved = await self.db.scalar(
            select(func.count(distinct(ConflictResolution.synced_work_event_id)))
            .select_from(ConflictResolution)
            .join(SyncedWorkEvent, ConflictResolution.synced_work_event_id == SyncedWorkEvent.id)
            .where(
                ConflictResolution.organization_id == organization_id,
                SyncedWorkEvent.has_conflict.is_(False),
            )
        ) or 0

        return {
            "total": len(flagged) + resolved,
            "critical": critical,
            "warning": warning,
            "resolved": resolved,
            "unresolved": len(flagged),
            "upcoming_week": upcoming,
        }
