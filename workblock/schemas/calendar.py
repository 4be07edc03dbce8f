"""Pydantic schemas for the calendar integration."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ── Connections ──


class CalendarConnectionRead(BaseModel):
    """Connection as exposed to the UI. OAuth tokens are never included."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    user_id: UUID
    provider: str
    provider_account_email: str | None = None
    calendar_id: str
    calendar_name: str | None = None
    sync_enabled: bool
    auto_block_enabled: bool
    conflict_notification_enabled: bool
    push_lessons_enabled: bool
    last_sync_status: str
    last_sync_at: datetime | None = None
    last_sync_error: str | None = None
    created_at: datetime
    updated_at: datetime


class CalendarSettingsUpdate(BaseModel):
    """Partial update of the connection toggles."""

    model_config = ConfigDict(extra="forbid")

    sync_enabled: bool | None = None
    auto_block_enabled: bool | None = None
    conflict_notification_enabled: bool | None = None
    push_lessons_enabled: bool | None = None


class OAuthInitiateResponse(BaseModel):
    authorization_url: str
    state: str
    provider: str


class DisconnectResponse(BaseModel):
    events_deleted: int
    blocks_deleted: int


# ── Sync ──


class SyncResult(BaseModel):
    events_added: int
    events_updated: int
    events_deleted: int


class SyncEnqueueResponse(BaseModel):
    enqueued: int
    connection_ids: list[UUID]


class CalendarSyncLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    calendar_connection_id: UUID
    sync_started_at: datetime
    sync_completed_at: datetime | None = None
    sync_status: str
    events_fetched: int
    events_added: int
    events_updated: int
    events_deleted: int
    error_message: str | None = None


# ── Auto-block ──


class AutoBlockProcessResult(BaseModel):
    blocks_created: int
    blocks_removed: int
    blocks_updated: int
    errors: list[str] = []


class AutoBlockStatus(BaseModel):
    total_blocks: int
    active_blocks: int
    work_event_blocks: int
    pending_events: int


# ── Conflicts ──


class SyncedWorkEventBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    calendar_connection_id: UUID
    title: str
    start_time: datetime
    end_time: datetime
    is_meeting: bool
    status: str
    has_conflict: bool


class LessonBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    scheduled_start: datetime
    scheduled_end: datetime
    status: str


class ConflictRead(BaseModel):
    id: str
    work_event: SyncedWorkEventBrief
    lesson: LessonBrief
    conflict_type: Literal["full_overlap", "work_within_lesson", "partial_overlap"]
    overlap_minutes: int
    severity: Literal["critical", "warning"]
    suggested_resolutions: list[str]


class ConflictStatistics(BaseModel):
    total: int
    critical: int
    warning: int
    resolved: int
    unresolved: int
    upcoming_week: int


class ConflictScanResult(BaseModel):
    lessons_scanned: int
    conflicts_found: int
    events_flagged: int
    errors: list[str] = []


class ConflictResolveRequest(BaseModel):
    work_event_id: UUID
    resolution_type: Literal["reschedule_lesson", "cancel_lesson", "keep_both", "ignore"]
    resolution_notes: str | None = Field(default=None, max_length=2000)
    affected_lesson_id: UUID | None = None
    new_lesson_time: datetime | None = None


class ConflictResolutionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    synced_work_event_id: UUID | None = None
    organization_id: UUID
    resolved_by: UUID
    resolution_type: str
    resolution_notes: str | None = None
    affected_lesson_id: UUID | None = None
    new_lesson_time: datetime | None = None
    resolved_at: datetime


class WindowCheckRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    exclude_lesson_id: UUID | None = None

    @model_validator(mode="after")
    def check_order(self) -> WindowCheckRequest:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BlockingSlotRead(BaseModel):
    id: UUID
    title: str
    source_type: str
    start_time: datetime
    end_time: datetime
    overlap_minutes: int
    overlap_percentage: int


class LessonWindow(BaseModel):
    id: UUID
    title: str
    scheduled_start: datetime
    scheduled_end: datetime


class WindowCheckResult(BaseModel):
    has_conflict: bool
    can_schedule: bool
    severity: Literal["none", "partial", "full"]
    message: str | None = None
    blocking_slots: list[BlockingSlotRead]
    conflicting_lessons: list[LessonWindow]


class SlotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start_time: datetime
    end_time: datetime


class AvailableSlotsResponse(BaseModel):
    total_slots: int
    slots_by_date: dict[str, list[SlotRead]]
