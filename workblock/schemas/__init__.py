"""Pydantic schemas for API request/response validation."""

from workblock.schemas.calendar import (
    AutoBlockProcessResult,
    AutoBlockStatus,
    AvailableSlotsResponse,
    CalendarConnectionRead,
    CalendarSettingsUpdate,
    CalendarSyncLogRead,
    ConflictRead,
    ConflictResolutionRead,
    ConflictResolveRequest,
    ConflictScanResult,
    ConflictStatistics,
    DisconnectResponse,
    OAuthInitiateResponse,
    SyncEnqueueResponse,
    SyncResult,
    WindowCheckRequest,
    WindowCheckResult,
)

__all__ = [
    "AutoBlockProcessResult",
    "AutoBlockStatus",
    "AvailableSlotsResponse",
    "CalendarConnectionRead",
    "CalendarSettingsUpdate",
    "CalendarSyncLogRead",
    "ConflictRead",
    "ConflictResolutionRead",
    "ConflictResolveRequest",
    "ConflictScanResult",
    "ConflictStatistics",
    "DisconnectResponse",
    "OAuthInitiateResponse",
    "SyncEnqueueResponse",
    "SyncResult",
    "WindowCheckRequest",
    "WindowCheckResult",
]
