"""SQLAlchemy models for the work-calendar integration.

Tables:
- calendar_connections: OAuth-linked external calendar accounts
- synced_work_events: local mirror of external events
- calendar_sync_logs: one row per sync attempt
- blocked_time_slots: reserved windows lessons must avoid
- calendar_conflict_resolutions: append-only audit of human decisions
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workblock.database import Base
from workblock.models.types import UTCDateTime, utcnow


class CalendarProviderName(str, Enum):
    GOOGLE = "google"
    OUTLOOK = "outlook"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class EventStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class EventLifecycle(str, Enum):
    """Tagged lifecycle of a mirrored event; deleted dominates cancelled."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    DELETED = "deleted"


class BlockSource(str, Enum):
    WORK_EVENT = "work_event"
    MANUAL = "manual"


class ResolutionType(str, Enum):
    RESCHEDULE_LESSON = "reschedule_lesson"
    CANCEL_LESSON = "cancel_lesson"
    KEEP_BOTH = "keep_both"
    IGNORE = "ignore"


SETTINGS_FIELDS = (
    "sync_enabled",
    "auto_block_enabled",
    "conflict_notification_enabled",
    "push_lessons_enabled",
)


class CalendarConnection(Base):
    """One external calendar account linked to one organization."""

    __tablename__ = "calendar_connections"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "provider",
            "provider_account_id",
            name="uq_calendar_connection_account",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="google | outlook"
    )
    provider_account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_account_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    calendar_id: Mapped[str] = mapped_column(String(500), nullable=False, default="primary")
    calendar_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # OAuth tokens (never serialized to API responses)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Settings toggles
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_block_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    conflict_notification_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    push_lessons_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Sync status
    last_sync_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SyncStatus.PENDING.value,
        comment="pending | syncing | completed | failed",
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Lease timestamp while syncing"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    events: Mapped[list["SyncedWorkEvent"]] = relationship(
        "SyncedWorkEvent",
        back_populates="connection",
        passive_deletes=True,
    )

    def token_expired(self, now: datetime, margin_seconds: int = 0) -> bool:
        if not self.access_token or self.token_expires_at is None:
            return True
        return (self.token_expires_at - now).total_seconds() <= margin_seconds


class SyncedWorkEvent(Base):
    """Local mirror of one external calendar event."""

    __tablename__ = "synced_work_events"
    __table_args__ = (
        UniqueConstraint(
            "calendar_connection_id",
            "external_event_id",
            name="uq_synced_event_connection_external",
        ),
        Index("ix_synced_work_events_org_start", "organization_id", "start_time"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    calendar_connection_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("calendar_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    external_event_id: Mapped[str] = mapped_column(String(500), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False, default="(No title)")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_all_day: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    attendees_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_meeting: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EventStatus.CONFIRMED.value,
        comment="confirmed | tentative | cancelled",
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Owned by the auto-block reconciler
    auto_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Owned by the conflict detector / resolution workflow
    has_conflict: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    last_synced_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    connection: Mapped["CalendarConnection"] = relationship(
        "CalendarConnection", back_populates="events"
    )

    @property
    def lifecycle(self) -> EventLifecycle:
        if self.is_deleted:
            return EventLifecycle.DELETED
        if self.status == EventStatus.CANCELLED.value:
            return EventLifecycle.CANCELLED
        return EventLifecycle.ACTIVE

    def qualifies_for_block(self, auto_block_enabled: bool) -> bool:
        """Whether this event should own an active work-event block."""
        return (
            auto_block_enabled
            and self.is_meeting
            and self.lifecycle is EventLifecycle.ACTIVE
            and self.status == EventStatus.CONFIRMED.value
        )

    def mark_deleted(self) -> None:
        self.is_deleted = True

    def restore(self) -> None:
        self.is_deleted = False


class CalendarSyncLog(Base):
    """Audit row for one sync attempt."""

    __tablename__ = "calendar_sync_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    calendar_connection_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("calendar_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sync_started_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    sync_completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    sync_status: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="completed | failed | rejected"
    )
    events_fetched: Mapped[int] = mapped_column(Integer, default=0)
    events_added: Mapped[int] = mapped_column(Integer, default=0)
    events_updated: Mapped[int] = mapped_column(Integer, default=0)
    events_deleted: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


class BlockedTimeSlot(Base):
    """A reserved window that lessons must avoid."""

    __tablename__ = "blocked_time_slots"
    __table_args__ = (
        # NULL source_event_id (manual blocks) never collides
        UniqueConstraint("source_type", "source_event_id", name="uq_blocked_slot_source"),
        Index("ix_blocked_time_slots_org_window", "organization_id", "start_time", "end_time"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    source_type: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="work_event | manual"
    )
    # Weak back-reference, deliberately without a foreign key
    source_event_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )


class ConflictResolution(Base):
    """Append-only record of a human decision about a flagged conflict."""

    __tablename__ = "calendar_conflict_resolutions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    synced_work_event_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("synced_work_events.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    organization_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resolved_by: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    resolution_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="reschedule_lesson | cancel_lesson | keep_both | ignore",
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    affected_lesson_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    new_lesson_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
