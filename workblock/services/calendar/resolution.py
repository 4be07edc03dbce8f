"""
Conflict Resolution Workflow.

A flagged work event moves from ``unresolved`` to ``resolved`` or ``ignored``.
The audit row is committed before the lesson side effect runs; if the side
effect fails the row stays, ``has_conflict`` stays set and the caller may
retry, which records a new attempt.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workblock.errors import (
    AccessDenied,
    ConflictAlreadyResolved,
    NotFoundError,
    ValidationError,
)
from workblock.models.calendar import (
    CalendarConnection,
    ConflictResolution,
    ResolutionType,
    SyncedWorkEvent,
)
from workblock.models.lesson import Lesson, LessonStatus

logger = logging.getLogger(__name__)


class ConflictState(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class ResolutionWorkflow:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def state(self, event: SyncedWorkEvent) -> ConflictState:
        latest = (
            await self.db.execute(
                select(ConflictResolution)
                .where(ConflictResolution.synced_work_event_id == event.id)
                .order_by(ConflictResolution.resolved_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if latest is None or event.has_conflict:
            return ConflictState.UNRESOLVED
        if latest.resolution_type == ResolutionType.IGNORE.value:
            return ConflictState.IGNORED
        return ConflictState.RESOLVED

    async def resolve(
        self,
        work_event_id: UUID,
        resolution_type: str,
        resolver_id: UUID,
        organization_id: UUID,
        notes: str | None = None,
        affected_lesson_id: UUID | None = None,
        new_lesson_time: datetime | None = None,
    ) -> ConflictResolution:
        """Record a decision about a conflict and apply it to the lesson.

        Raises:
            NotFoundError: unknown event, or the affected lesson is missing.
            AccessDenied: other organization, or the resolver does not own the
                event's calendar connection. Nothing is written.
            ValidationError: missing lesson or time for the chosen resolution,
                or the event was never flagged.
            ConflictAlreadyResolved: the event is already resolved or ignored.
        """
        try:
            kind = ResolutionType(resolution_type)
        except ValueError:
            raise ValidationError(f"Unknown resolution type: {resolution_type}")

        event = await self.db.get(SyncedWorkEvent, work_event_id)
        if event is None:
            raise NotFoundError("Work event not found")
        if event.organization_id != organization_id:
            raise AccessDenied("This conflict belongs to another household")
        connection = await self.db.get(CalendarConnection, event.calendar_connection_id)
        if connection is None or connection.user_id != resolver_id:
            raise AccessDenied("Only the owner of this calendar can resolve its conflicts")

        if kind is ResolutionType.RESCHEDULE_LESSON and (
            affected_lesson_id is None or new_lesson_time is None
        ):
            raise ValidationError("Rescheduling needs the lesson and its new start time")
        if kind is ResolutionType.CANCEL_LESSON and affected_lesson_id is None:
            raise ValidationError("Cancelling needs the lesson to cancel")
        if new_lesson_time is not None and new_lesson_time.tzinfo is None:
            new_lesson_time = new_lesson_time.replace(tzinfo=timezone.utc)

        if await self.state(event) is not ConflictState.UNRESOLVED:
            raise ConflictAlreadyResolved("This conflict has already been resolved")
        if not event.has_conflict:
            raise ValidationError("This event has no open conflict")

        resolution = ConflictResolution(
            synced_work_event_id=event.id,
            organization_id=organization_id,
            resolved_by=resolver_id,
            resolution_type=kind.value,
            resolution_notes=notes,
            affected_lesson_id=affected_lesson_id,
            new_lesson_time=new_lesson_time if kind is ResolutionType.RESCHEDULE_LESSON else None,
        )
        self.db.add(resolution)
        await self.db.commit()
        resolution_id = resolution.id

        try:
            await self._apply(kind, organization_id, affected_lesson_id, new_lesson_time)
            event.has_conflict = False
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.warning(
                "Resolution %s recorded but %s side effect failed for event %s",
                resolution_id,
                kind.value,
                work_event_id,
            )
            raise

        logger.info("Conflict on event %s resolved with %s", work_event_id, kind.value)
        return resolution

    async def _apply(
        self,
        kind: ResolutionType,
        organization_id: UUID,
        lesson_id: UUID | None,
        new_start: datetime | None,
    ) -> None:
        if kind not in (ResolutionType.RESCHEDULE_LESSON, ResolutionType.CANCEL_LESSON):
            return

        lesson = await self.db.get(Lesson, lesson_id)
        if lesson is None or lesson.organization_id != organization_id:
            raise NotFoundError("Lesson not found")

        if kind is ResolutionType.RESCHEDULE_LESSON:
            duration = lesson.scheduled_end - lesson.scheduled_start
            lesson.scheduled_start = new_start
            lesson.scheduled_end = new_start + duration
        else:
            lesson.status = LessonStatus.CANCELLED.value

    async def list_resolutions(self, organization_id: UUID, limit: int = 100) -> list[ConflictResolution]:
        result = await self.db.execute(
            select(ConflictResolution)
            .where(ConflictResolution.organization_id == organization_id)
            .order_by(ConflictResolution.resolved_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
