"""
Auto-Block Reconciler.

Keeps work-event BlockedTimeSlots in step with the event mirror:
- process_pending: create blocks for qualifying events that have none
- cleanup_stale: drop blocks whose source stopped qualifying, refresh moved ones
- update_on_change: single-event fast path right after a sync diff

After both full passes, active work-event blocks map one-to-one onto
qualifying events and ``auto_blocked`` is set exactly on events owning a block.
"""

import logging
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from workblock.models.calendar import (
    BlockedTimeSlot,
    BlockSource,
    CalendarConnection,
    SyncedWorkEvent,
)

logger = logging.getLogger(__name__)

BLOCK_TITLE_PREFIX = "Work: "


def block_title(event: SyncedWorkEvent) -> str:
    return f"{BLOCK_TITLE_PREFIX}{event.title}"[:500]


class AutoBlockReconciler:
    """Organization-scoped block reconciliation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def process_pending(self, organization_id: UUID) -> dict:
        """Create a block for every qualifying event that does not own one yet."""
        created = 0
        errors: list[str] = []

        stmt = (
            select(SyncedWorkEvent, CalendarConnection.auto_block_enabled, BlockedTimeSlot)
            .join(CalendarConnection, SyncedWorkEvent.calendar_connection_id == CalendarConnection.id)
            .outerjoin(
                BlockedTimeSlot,
                and_(
                    BlockedTimeSlot.source_event_id == SyncedWorkEvent.id,
                    BlockedTimeSlot.source_type == BlockSource.WORK_EVENT.value,
                ),
            )
            .where(
                SyncedWorkEvent.organization_id == organization_id,
                CalendarConnection.auto_block_enabled.is_(True),
                SyncedWorkEvent.is_meeting.is_(True),
                SyncedWorkEvent.is_deleted.is_(False),
            )
        )
        result = await self.db.execute(stmt)

        for event, auto_block_enabled, block in result.all():
            if not event.qualifies_for_block(auto_block_enabled):
                continue
            if block is not None:
                # Block already present: only the flag may have drifted
                event.auto_blocked = True
                continue
            if event.end_time <= event.start_time:
                errors.append(f"Event {event.id}: empty time window")
                continue
            self.db.add(self._new_block(event))
            event.auto_blocked = True
            created += 1

        await self.db.commit()
        if created:
            logger.info("Auto-block: created %d blocks for org %s", created, organization_id)
        return {"blocks_created": created, "errors": errors}

    async def cleanup_stale(self, organization_id: UUID) -> dict:
        """Remove blocks whose source no longer qualifies; refresh moved windows."""
        removed = 0
        updated = 0
        errors: list[str] = []

        result = await self.db.execute(
            select(BlockedTimeSlot).where(
                BlockedTimeSlot.organization_id == organization_id,
                BlockedTimeSlot.source_type == BlockSource.WORK_EVENT.value,
            )
        )
        blocks = list(result.scalars().all())

        source_ids = [b.source_event_id for b in blocks if b.source_event_id is not None]
        sources: dict[UUID, tuple[SyncedWorkEvent, bool]] = {}
        if source_ids:
            rows = await self.db.execute(
                select(SyncedWorkEvent, CalendarConnection.auto_block_enabled)
                .join(CalendarConnection, SyncedWorkEvent.calendar_connection_id == CalendarConnection.id)
                .where(SyncedWorkEvent.id.in_(source_ids))
            )
            sources = {event.id: (event, enabled) for event, enabled in rows.all()}

        for block in blocks:
            event, enabled = sources.get(block.source_event_id, (None, False))
            if event is None or not event.qualifies_for_block(enabled):
                await self.db.delete(block)
                if event is not None:
                    event.auto_blocked = False
                removed += 1
                continue
            if self._refresh_block(block, event):
                updated += 1
            event.auto_blocked = True

        # Events flagged as blocked whose block is gone
        owned = {b.source_event_id for b in blocks}
        orphans = await self.db.execute(
            select(SyncedWorkEvent).where(
                SyncedWorkEvent.organization_id == organization_id,
                SyncedWorkEvent.auto_blocked.is_(True),
            )
        )
        for event in orphans.scalars().all():
            if event.id not in owned:
                event.auto_blocked = False

        await self.db.commit()
        if removed or updated:
            logger.info(
                "Auto-block cleanup for org %s: %d removed, %d updated",
                organization_id,
                removed,
                updated,
            )
        return {"blocks_removed": removed, "blocks_updated": updated, "errors": errors}

    async def update_on_change(self, event: SyncedWorkEvent) -> str:
        """Create, refresh or remove the block of one event.

        Returns one of ``created``, ``updated``, ``removed``, ``unchanged``.
        """
        enabled = (
            await self.db.execute(
                select(CalendarConnection.auto_block_enabled).where(
                    CalendarConnection.id == event.calendar_connection_id
                )
            )
        ).scalar_one_or_none()
        block = (
            await self.db.execute(
                select(BlockedTimeSlot).where(
                    BlockedTimeSlot.source_type == BlockSource.WORK_EVENT.value,
                    BlockedTimeSlot.source_event_id == event.id,
                )
            )
        ).scalar_one_or_none()

        if event.qualifies_for_block(bool(enabled)):
            if block is None:
                self.db.add(self._new_block(event))
                action = "created"
            else:
                action = "updated" if self._refresh_block(block, event) else "unchanged"
            event.auto_blocked = True
        else:
            if block is not None:
                await self.db.delete(block)
                action = "removed"
            else:
                action = "unchanged"
            event.auto_blocked = False

        try:
            await self.db.commit()
        except IntegrityError:
            # A full pass created the block concurrently
            await self.db.rollback()
            logger.info("Block for event %s already created by another pass", event.id)
            return "unchanged"
        return action

    async def process(self, organization_id: UUID) -> dict:
        """Run both passes and merge their summaries."""
        pending = await self.process_pending(organization_id)
        cleanup = await self.cleanup_stale(organization_id)
        return {
            "blocks_created": pending["blocks_created"],
            "blocks_removed": cleanup["blocks_removed"],
            "blocks_updated": cleanup["blocks_updated"],
            "errors": pending["errors"] + cleanup["errors"],
        }

    async def status(self, organization_id: UUID) -> dict:
        total = await self.db.scalar(
            select(func.count()).select_from(BlockedTimeSlot).where(
                BlockedTimeSlot.organization_id == organization_id
            )
        )
        active = await self.db.scalar(
            select(func.count()).select_from(BlockedTimeSlot).where(
                BlockedTimeSlot.organization_id == organization_id,
                BlockedTimeSlot.is_active.is_(True),
            )
        )
        work_event = await self.db.scalar(
            select(func.count()).select_from(BlockedTimeSlot).where(
                BlockedTimeSlot.organization_id == organization_id,
                BlockedTimeSlot.source_type == BlockSource.WORK_EVENT.value,
            )
        )
        pending = await self.db.scalar(
            select(func.count())
            .select_from(SyncedWorkEvent)
            .join(CalendarConnection, SyncedWorkEvent.calendar_connection_id == CalendarConnection.id)
            .where(
                SyncedWorkEvent.organization_id == organization_id,
                CalendarConnection.auto_block_enabled.is_(True),
                SyncedWorkEvent.is_meeting.is_(True),
                SyncedWorkEvent.is_deleted.is_(False),
                SyncedWorkEvent.status == "confirmed",
                SyncedWorkEvent.auto_blocked.is_(False),
            )
        )
        return {
            "total_blocks": total or 0,
            "active_blocks": active or 0,
            "work_event_blocks": work_event or 0,
            "pending_events": pending or 0,
        }

    # ── Helpers ──

    @staticmethod
    def _new_block(event: SyncedWorkEvent) -> BlockedTimeSlot:
        return BlockedTimeSlot(
            organization_id=event.organization_id,
            user_id=event.user_id,
            start_time=event.start_time,
            end_time=event.end_time,
            source_type=BlockSource.WORK_EVENT.value,
            source_event_id=event.id,
            title=block_title(event),
            description=event.description,
            is_active=True,
        )

    @staticmethod
    def _refresh_block(block: BlockedTimeSlot, event: SyncedWorkEvent) -> bool:
        """Copy the event's window onto its block. Returns True if anything changed."""
        changed = False
        title = block_title(event)
        if block.start_time != event.start_time or block.end_time != event.end_time:
            block.start_time = event.start_time
            block.end_time = event.end_time
            changed = True
        if block.title != title:
            block.title = title
            changed = True
        if not block.is_active:
            block.is_active = True
            changed = True
        return changed
