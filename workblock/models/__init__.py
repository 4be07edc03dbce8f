"""SQLAlchemy models package."""

from workblock.models.organization import Organization
from workblock.models.user import User
from workblock.models.lesson import Lesson, LessonStatus
from workblock.models.calendar import (
    BlockedTimeSlot,
    BlockSource,
    CalendarConnection,
    CalendarProviderName,
    CalendarSyncLog,
    ConflictResolution,
    EventLifecycle,
    EventStatus,
    ResolutionType,
    SyncedWorkEvent,
    SyncStatus,
)

__all__ = [
    "Organization",
    "User",
    "Lesson",
    "LessonStatus",
    "BlockedTimeSlot",
    "BlockSource",
    "CalendarConnection",
    "CalendarProviderName",
    "CalendarSyncLog",
    "ConflictResolution",
    "EventLifecycle",
    "EventStatus",
    "ResolutionType",
    "SyncedWorkEvent",
    "SyncStatus",
]
