"""
Calendar Sync Engine.

Mirrors a connection's external events into ``synced_work_events``:
- single-flight per connection via a lease on ``last_sync_status``
- token refresh through TokenManager before fetching
- diff by external_event_id, one transaction for all mirror writes
- auto-block fast path for every changed row once the mirror is committed
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from workblock.config import get_settings
from workblock.errors import (
    CalendarError,
    NotFoundError,
    ProviderError,
    SyncInProgress,
    ValidationError,
)
from workblock.models.calendar import (
    CalendarConnection,
    CalendarSyncLog,
    SyncedWorkEvent,
    SyncStatus,
)
from workblock.models.types import utcnow
from workblock.services.calendar.auto_block import AutoBlockReconciler
from workblock.services.calendar.providers import (
    CalendarProvider,
    ProviderEvent,
    classify_meeting,
    get_calendar_provider,
)
from workblock.services.calendar.token_manager import TokenManager

logger = logging.getLogger(__name__)

SYNC_FAILED_MESSAGE = "Calendar sync failed. Please try again later."
SYNC_TIMEOUT_MESSAGE = "Calendar sync took too long and was stopped. Please try again later."


class SyncEngine:
    """Pulls external events for one connection (or a whole organization)."""

    def __init__(
        self,
        db: AsyncSession,
        provider_factory: Callable[[str], CalendarProvider] = get_calendar_provider,
    ):
        self.db = db
        self.settings = get_settings()
        self.provider_factory = provider_factory
        self.token_manager = TokenManager(db, provider_factory=provider_factory)
        self.auto_blocker = AutoBlockReconciler(db)

    async def sync_connection(self, connection_id: UUID, now: datetime | None = None) -> dict:
        """Sync one connection and return ``{events_added, events_updated, events_deleted}``.

        Raises:
            NotFoundError: unknown connection.
            ValidationError: sync is disabled for the connection.
            SyncInProgress: another sync holds the lease.
            AuthError / ProviderError: the attempt failed; the mirror is untouched
                and the connection is marked failed.
        """
        now = now or utcnow()
        connection = await self.db.get(CalendarConnection, connection_id)
        if connection is None:
            raise NotFoundError("Calendar connection not found")
        if not connection.sync_enabled:
            raise ValidationError("Sync is disabled for this calendar connection")

        await self._acquire_lease(connection_id, now)
        await self.db.refresh(connection)

        try:
            access_token = await self.token_manager.ensure_valid_token(connection)
            provider = self.provider_factory(connection.provider)
            time_min = now - timedelta(days=self.settings.sync_lookback_days)
            time_max = now + timedelta(days=self.settings.sync_lookahead_days)

            fetched = await asyncio.wait_for(
                provider.list_events(
                    access_token,
                    connection.calendar_id,
                    time_min,
                    time_max,
                    account_email=connection.provider_account_email,
                ),
                timeout=self.settings.sync_job_timeout_seconds,
            )

            summary, changed_ids = await self._apply_diff(connection, fetched, time_min, time_max, now)

            connection.last_sync_status = SyncStatus.COMPLETED.value
            connection.last_sync_at = now
            connection.last_sync_error = None
            connection.sync_started_at = None
            self.db.add(
                CalendarSyncLog(
                    calendar_connection_id=connection_id,
                    sync_started_at=now,
                    sync_completed_at=utcnow(),
                    sync_status="completed",
                    events_fetched=len(fetched),
                    **summary,
                )
            )
            await self.db.commit()
        except asyncio.TimeoutError as e:
            logger.error("Sync of connection %s exceeded its deadline", connection_id)
            await self._record_failure(connection_id, now, SYNC_TIMEOUT_MESSAGE)
            raise ProviderError(SYNC_TIMEOUT_MESSAGE) from e
        except CalendarError as e:
            logger.warning("Sync of connection %s failed: %s", connection_id, e.message)
            await self._record_failure(connection_id, now, e.message)
            raise
        except Exception:
            logger.exception("Sync of connection %s failed unexpectedly", connection_id)
            await self._record_failure(connection_id, now, SYNC_FAILED_MESSAGE)
            raise

        logger.info(
            "Synced connection %s: %d added, %d updated, %d deleted",
            connection_id,
            summary["events_added"],
            summary["events_updated"],
            summary["events_deleted"],
        )

        await self._fast_path(changed_ids)
        return summary

    async def sync_organization(self, organization_id: UUID) -> dict:
        """Sync every sync-enabled connection of one organization, one at a time."""
        result = await self.db.execute(
            select(CalendarConnection.id).where(
                CalendarConnection.organization_id == organization_id,
                CalendarConnection.sync_enabled.is_(True),
            )
        )
        connection_ids = list(result.scalars().all())

        results = []
        for connection_id in connection_ids:
            try:
                summary = await self.sync_connection(connection_id)
                results.append({"connection_id": connection_id, "success": True, **summary})
            except CalendarError as e:
                results.append(
                    {"connection_id": connection_id, "success": False, "error": e.message}
                )

        return {
            "synced": sum(1 for r in results if r["success"]),
            "failed": sum(1 for r in results if not r["success"]),
            "results": results,
        }

    # ── Lease ──

    async def _acquire_lease(self, connection_id: UUID, now: datetime) -> None:
        stale_before = now - timedelta(seconds=self.settings.sync_job_timeout_seconds)
        result = await self.db.execute(
            update(CalendarConnection)
            .where(
                CalendarConnection.id == connection_id,
                or_(
                    CalendarConnection.last_sync_status != SyncStatus.SYNCING.value,
                    CalendarConnection.sync_started_at.is_(None),
                    CalendarConnection.sync_started_at < stale_before,
                ),
            )
            .values(last_sync_status=SyncStatus.SYNCING.value, sync_started_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.add(
                CalendarSyncLog(
                    calendar_connection_id=connection_id,
                    sync_started_at=now,
                    sync_completed_at=utcnow(),
                    sync_status="rejected",
                    error_message="Another sync is already running for this calendar.",
                )
            )
            await self.db.commit()
            raise SyncInProgress("A sync is already running for this calendar. Please wait for it to finish.")
        await self.db.commit()

    async def _record_failure(self, connection_id: UUID, started_at: datetime, message: str) -> None:
        """Roll back mirror writes, release the lease as failed and log the attempt."""
        await self.db.rollback()
        await self.db.execute(
            update(CalendarConnection)
            .where(CalendarConnection.id == connection_id)
            .values(
                last_sync_status=SyncStatus.FAILED.value,
                last_sync_error=message,
                sync_started_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.add(
            CalendarSyncLog(
                calendar_connection_id=connection_id,
                sync_started_at=started_at,
                sync_completed_at=utcnow(),
                sync_status="failed",
                error_message=message,
            )
        )
        await self.db.commit()

    # ── Diff ──

    async def _apply_diff(
        self,
        connection: CalendarConnection,
        fetched: list[ProviderEvent],
        time_min: datetime,
        time_max: datetime,
        now: datetime,
    ) -> tuple[dict, list[UUID]]:
        result = await self.db.execute(
            select(SyncedWorkEvent).where(SyncedWorkEvent.calendar_connection_id == connection.id)
        )
        existing = {row.external_event_id: row for row in result.scalars().all()}

        added = updated = deleted = 0
        changed: list[SyncedWorkEvent] = []
        seen: set[str] = set()

        for item in fetched:
            if item.external_id in seen:
                continue
            seen.add(item.external_id)
            is_meeting = classify_meeting(item)
            row = existing.get(item.external_id)

            if row is None:
                row = SyncedWorkEvent(
                    calendar_connection_id=connection.id,
                    organization_id=connection.organization_id,
                    user_id=connection.user_id,
                    external_event_id=item.external_id,
                    last_synced_at=now,
                )
                self._copy_fields(row, item, is_meeting)
                self.db.add(row)
                changed.append(row)
                added += 1
                continue

            restored = row.is_deleted
            if restored:
                row.restore()
            if restored or self._differs(row, item, is_meeting):
                self._copy_fields(row, item, is_meeting)
                changed.append(row)
                updated += 1
            else:
                # Descriptive fields never count as a change
                row.description = item.description
                row.location = item.location
            row.last_synced_at = now

        for external_id, row in existing.items():
            if external_id in seen or row.is_deleted:
                continue
            # Rows outside the fetched window are simply not visible this time
            if row.end_time <= time_min or row.start_time >= time_max:
                continue
            row.mark_deleted()
            changed.append(row)
            deleted += 1

        await self.db.flush()
        summary = {"events_added": added, "events_updated": updated, "events_deleted": deleted}
        return summary, [row.id for row in changed]

    @staticmethod
    def _differs(row: SyncedWorkEvent, item: ProviderEvent, is_meeting: bool) -> bool:
        return (
            row.start_time != item.start
            or row.end_time != item.end
            or row.title != item.title
            or row.status != item.status
            or row.is_meeting != is_meeting
        )

    @staticmethod
    def _copy_fields(row: SyncedWorkEvent, item: ProviderEvent, is_meeting: bool) -> None:
        row.title = item.title[:500]
        row.description = item.description
        row.location = item.location[:500] if item.location else None
        row.start_time = item.start
        row.end_time = item.end
        row.is_all_day = item.is_all_day
        row.attendees_count = len(item.attendees)
        row.status = item.status
        row.is_meeting = is_meeting

    async def _fast_path(self, event_ids: list[UUID]) -> None:
        for event_id in event_ids:
            try:
                event = await self.db.get(SyncedWorkEvent, event_id, populate_existing=True)
                if event is not None:
                    await self.auto_blocker.update_on_change(event)
            except Exception:
                # The next full reconcile pass converges anyway
                logger.exception("Auto-block fast path failed for event %s", event_id)
                await self.db.rollback()
