"""
Conflict endpoints.

Provides REST API for:
- Listing flagged work-calendar conflicts and their statistics
- Scanning upcoming lessons against blocked time
- Validating a proposed lesson window
- Finding free lesson slots
- Resolving conflicts and browsing past resolutions
"""

import logging
from datetime import date, datetime
from typing import Literal

from fastapi import APIRouter, Query

from workblock.deps import CurrentUser, DbSession, OrganizationId
from workblock.schemas.calendar import (
    AvailableSlotsResponse,
    ConflictRead,
    ConflictResolutionRead,
    ConflictResolveRequest,
    ConflictScanResult,
    ConflictStatistics,
    LessonBrief,
    SlotRead,
    SyncedWorkEventBrief,
    WindowCheckRequest,
    WindowCheckResult,
)
from workblock.services.calendar.conflict_detector import ConflictDetector
from workblock.services.calendar.resolution import ResolutionWorkflow
from workblock.services.calendar.slot_finder import WEEKEND, SlotFinder

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/conflicts", response_model=list[ConflictRead])
async def list_conflicts(
    organization_id: OrganizationId,
    db: DbSession,
    severity: Literal["critical", "warning"] | None = Query(None),
    start: datetime | None = Query(None, description="Only events ending after this instant"),
    end: datetime | None = Query(None, description="Only events starting before this instant"),
):
    entries = await ConflictDetector(db).list_conflicts(organization_id, severity, start, end)
    return [
        ConflictRead(
            id=entry["id"],
            work_event=SyncedWorkEventBrief.model_validate(entry["work_event"]),
            lesson=LessonBrief.model_validate(entry["lesson"]),
            conflict_type=entry["conflict_type"],
            overlap_minutes=entry["overlap_minutes"],
            severity=entry["severity"],
            suggested_resolutions=entry["suggested_resolutions"],
        )
        for entry in entries
    ]


@router.get("/conflicts/statistics", response_model=ConflictStatistics)
async def conflict_statistics(organization_id: OrganizationId, db: DbSession):
    return await ConflictDetector(db).conflict_statistics(organization_id)


@router.post("/conflicts/scan-lessons", response_model=ConflictScanResult)
async def scan_lessons(organization_id: OrganizationId, db: DbSession):
    """Flag work events whose blocks overlap upcoming lessons."""
    return await ConflictDetector(db).scan_lessons_for_conflicts(organization_id)


@router.post("/conflicts/validate", response_model=WindowCheckResult)
async def validate_window(body: WindowCheckRequest, organization_id: OrganizationId, db: DbSession):
    """Check a proposed lesson time against blocked time and other lessons."""
    return await ConflictDetector(db).check_window(
        organization_id, body.start_time, body.end_time, body.exclude_lesson_id
    )


@router.get("/conflicts/available-slots", response_model=AvailableSlotsResponse)
async def available_slots(
    organization_id: OrganizationId,
    db: DbSession,
    start_date: date = Query(...),
    end_date: date = Query(...),
    duration: int = Query(60, description="Slot length in minutes"),
    start_hour: int = Query(8),
    end_hour: int = Query(17),
    exclude_weekends: bool = Query(True),
    step: int = Query(60, description="Grid step in minutes"),
):
    slots = await SlotFinder(db).find_available_slots(
        organization_id,
        start_date,
        end_date,
        duration_minutes=duration,
        start_hour=start_hour,
        end_hour=end_hour,
        exclude_weekdays=WEEKEND if exclude_weekends else (),
        step_minutes=step,
    )
    return AvailableSlotsResponse(
        total_slots=sum(len(day) for day in slots.values()),
        slots_by_date={
            day: [SlotRead.model_validate(slot) for slot in day_slots]
            for day, day_slots in slots.items()
        },
    )


@router.post("/conflicts/resolve", response_model=ConflictResolutionRead)
async def resolve_conflict(
    body: ConflictResolveRequest,
    user: CurrentUser,
    organization_id: OrganizationId,
    db: DbSession,
):
    """Record a decision about a conflict and apply it to the lesson."""
    return await ResolutionWorkflow(db).resolve(
        work_event_id=body.work_event_id,
        resolution_type=body.resolution_type,
        resolver_id=user.id,
        organization_id=organization_id,
        notes=body.resolution_notes,
        affected_lesson_id=body.affected_lesson_id,
        new_lesson_time=body.new_lesson_time,
    )


@router.get("/conflicts/resolutions", response_model=list[ConflictResolutionRead])
async def list_resolutions(
    organization_id: OrganizationId,
    db: DbSession,
    limit: int = Query(100, ge=1, le=500),
):
    return await ResolutionWorkflow(db).list_resolutions(organization_id, limit)
