"""Tests for the sync engine and access-token refresh."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import NOW, FakeProvider, at, meeting
from workblock.core.locks import KeyedLocks
from workblock.errors import (
    RECONNECT_MESSAGE,
    AuthError,
    ProviderError,
    SyncInProgress,
    ValidationError,
)
from workblock.models.calendar import (
    BlockedTimeSlot,
    CalendarConnection,
    CalendarSyncLog,
    SyncedWorkEvent,
)
from workblock.models.types import utcnow
from workblock.services.calendar.providers import ProviderAttendee
from workblock.services.calendar.sync_engine import SYNC_TIMEOUT_MESSAGE, SyncEngine
from workblock.services.calendar.token_manager import TokenManager


def engine_for(db, provider) -> SyncEngine:
    return SyncEngine(db, provider_factory=lambda name: provider)


async def mirror(db, connection_id) -> dict[str, SyncedWorkEvent]:
    result = await db.execute(
        select(SyncedWorkEvent)
        .where(SyncedWorkEvent.calendar_connection_id == connection_id)
        .execution_options(populate_existing=True)
    )
    return {row.external_event_id: row for row in result.scalars().all()}


async def sync_logs(db, connection_id) -> list[CalendarSyncLog]:
    result = await db.execute(
        select(CalendarSyncLog)
        .where(CalendarSyncLog.calendar_connection_id == connection_id)
        .order_by(CalendarSyncLog.sync_completed_at)
    )
    return list(result.scalars().all())


class TestDiff:
    async def test_first_sync_inserts_and_classifies(self, db, household, fake_provider):
        connection_id = household.connection.id
        solo = meeting("solo", at(8, 15), attendees=[])
        fake_provider.events = [meeting("a", at(8, 9)), meeting("b", at(9, 9)), solo]

        summary = await engine_for(db, fake_provider).sync_connection(connection_id, now=NOW)

        assert summary == {"events_added": 3, "events_updated": 0, "events_deleted": 0}
        rows = await mirror(db, connection_id)
        assert rows["a"].is_meeting is True
        assert rows["a"].attendees_count == 2
        assert rows["solo"].is_meeting is False
        assert rows["a"].organization_id == household.org.id

        connection = await db.get(CalendarConnection, connection_id, populate_existing=True)
        assert connection.last_sync_status == "completed"
        assert connection.last_sync_at == NOW
        assert connection.sync_started_at is None

        logs = await sync_logs(db, connection_id)
        assert [(log.sync_status, log.events_fetched, log.events_added) for log in logs] == [
            ("completed", 3, 3)
        ]

    async def test_second_identical_sync_changes_nothing(self, db, household, fake_provider):
        connection_id = household.connection.id
        fake_provider.events = [meeting("a", at(8, 9)), meeting("b", at(9, 9))]
        engine = engine_for(db, fake_provider)

        await engine.sync_connection(connection_id, now=NOW)
        before = {k: (v.id, v.start_time, v.title) for k, v in (await mirror(db, connection_id)).items()}
        summary = await engine.sync_connection(connection_id, now=NOW + timedelta(minutes=15))

        assert summary == {"events_added": 0, "events_updated": 0, "events_deleted": 0}
        after = {k: (v.id, v.start_time, v.title) for k, v in (await mirror(db, connection_id)).items()}
        assert after == before

    async def test_changes_deletions_and_restores(self, db, household, fake_provider):
        connection_id = household.connection.id
        engine = engine_for(db, fake_provider)
        fake_provider.events = [meeting("a", at(8, 9)), meeting("b", at(9, 9)), meeting("c", at(10, 9))]
        await engine.sync_connection(connection_id, now=NOW)

        fake_provider.events = [
            meeting("a", at(8, 10)),
            meeting("b", at(9, 9), description="agenda attached"),
        ]
        summary = await engine.sync_connection(connection_id, now=NOW)
        assert summary == {"events_added": 0, "events_updated": 1, "events_deleted": 1}

        rows = await mirror(db, connection_id)
        assert rows["a"].start_time == at(8, 10)
        assert rows["b"].description == "agenda attached"
        assert rows["c"].is_deleted is True
        assert rows["c"].lifecycle.value == "deleted"

        fake_provider.events.append(meeting("c", at(10, 9)))
        summary = await engine.sync_connection(connection_id, now=NOW)
        assert summary == {"events_added": 0, "events_updated": 1, "events_deleted": 0}
        assert (await mirror(db, connection_id))["c"].is_deleted is False

    async def test_cancelled_upstream_is_an_update(self, db, household, fake_provider):
        connection_id = household.connection.id
        engine = engine_for(db, fake_provider)
        fake_provider.events = [meeting("a", at(8, 9))]
        await engine.sync_connection(connection_id, now=NOW)

        fake_provider.events = [meeting("a", at(8, 9), status="cancelled")]
        summary = await engine.sync_connection(connection_id, now=NOW)

        assert summary["events_updated"] == 1
        row = (await mirror(db, connection_id))["a"]
        assert row.lifecycle.value == "cancelled"

    async def test_duplicate_ids_in_one_fetch_are_collapsed(self, db, household, fake_provider):
        fake_provider.events = [meeting("a", at(8, 9)), meeting("a", at(8, 9))]
        summary = await engine_for(db, fake_provider).sync_connection(household.connection.id, now=NOW)
        assert summary["events_added"] == 1

    async def test_rows_outside_the_window_are_kept(self, db, household, fake_provider, make_event):
        connection_id = household.connection.id
        old = await make_event(
            household.connection, NOW - timedelta(days=30), external_event_id="last-month"
        )
        old_id = old.id
        fake_provider.events = []

        summary = await engine_for(db, fake_provider).sync_connection(connection_id, now=NOW)

        assert summary["events_deleted"] == 0
        row = await db.get(SyncedWorkEvent, old_id, populate_existing=True)
        assert row.is_deleted is False

    async def test_declined_meeting_is_not_a_meeting(self, db, household, fake_provider):
        fake_provider.events = [
            meeting(
                "declined",
                at(8, 9),
                attendees=[
                    ProviderAttendee(email="owner@example.com", is_self=True, response_status="declined"),
                    ProviderAttendee(email="boss@example.com"),
                ],
                self_declined=True,
            )
        ]
        await engine_for(db, fake_provider).sync_connection(household.connection.id, now=NOW)
        assert (await mirror(db, household.connection.id))["declined"].is_meeting is False


class TestFastPath:
    async def test_sync_creates_and_removes_blocks_immediately(self, db, household, fake_provider):
        connection_id = household.connection.id
        engine = engine_for(db, fake_provider)
        fake_provider.events = [meeting("a", at(8, 9)), meeting("solo", at(8, 11), attendees=[])]

        await engine.sync_connection(connection_id, now=NOW)

        blocks = (await db.execute(select(BlockedTimeSlot))).scalars().all()
        assert len(blocks) == 1
        assert blocks[0].start_time == at(8, 9)
        assert blocks[0].title == "Work: Meeting a"
        rows = await mirror(db, connection_id)
        assert rows["a"].auto_blocked is True
        assert rows["solo"].auto_blocked is False

        fake_provider.events = [meeting("solo", at(8, 11), attendees=[])]
        await engine.sync_connection(connection_id, now=NOW)

        assert (await db.execute(select(BlockedTimeSlot))).scalars().all() == []
        assert (await mirror(db, connection_id))["a"].auto_blocked is False

    async def test_no_blocks_when_auto_block_disabled(self, db, household, fake_provider):
        household.connection.auto_block_enabled = False
        await db.commit()
        fake_provider.events = [meeting("a", at(8, 9))]

        await engine_for(db, fake_provider).sync_connection(household.connection.id, now=NOW)

        assert (await db.execute(select(BlockedTimeSlot))).scalars().all() == []


class TestFailures:
    async def test_provider_failure_leaves_mirror_untouched(self, db, household, fake_provider):
        connection_id = household.connection.id
        engine = engine_for(db, fake_provider)
        fake_provider.events = [meeting("a", at(8, 9))]
        await engine.sync_connection(connection_id, now=NOW)

        fake_provider.list_error = ProviderError("Your calendar provider is not responding right now.")
        with pytest.raises(ProviderError):
            await engine.sync_connection(connection_id, now=NOW)

        rows = await mirror(db, connection_id)
        assert list(rows) == ["a"]
        assert rows["a"].is_deleted is False

        connection = await db.get(CalendarConnection, connection_id, populate_existing=True)
        assert connection.last_sync_status == "failed"
        assert connection.last_sync_error == "Your calendar provider is not responding right now."
        assert connection.sync_started_at is None

        logs = await sync_logs(db, connection_id)
        assert [log.sync_status for log in logs] == ["completed", "failed"]

    async def test_unexpected_error_is_recorded_and_reraised(self, db, household, fake_provider):
        connection_id = household.connection.id
        fake_provider.list_error = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await engine_for(db, fake_provider).sync_connection(connection_id, now=NOW)

        connection = await db.get(CalendarConnection, connection_id, populate_existing=True)
        assert connection.last_sync_status == "failed"
        assert "boom" not in connection.last_sync_error

    async def test_deadline_aborts_to_failed(self, db, household):
        class SlowProvider(FakeProvider):
            async def list_events(self, *args, **kwargs):
                await asyncio.sleep(1)
                return []

        connection_id = household.connection.id
        engine = engine_for(db, SlowProvider())
        engine.settings = engine.settings.model_copy(update={"sync_job_timeout_seconds": 0.05})

        with pytest.raises(ProviderError) as excinfo:
            await engine.sync_connection(connection_id, now=NOW)

        assert excinfo.value.message == SYNC_TIMEOUT_MESSAGE
        connection = await db.get(CalendarConnection, connection_id, populate_existing=True)
        assert connection.last_sync_status == "failed"

    async def test_refresh_failure_asks_for_reconnect(self, db, household, fake_provider):
        connection_id = household.connection.id
        household.connection.token_expires_at = utcnow() - timedelta(minutes=1)
        await db.commit()
        fake_provider.refresh_error = AuthError("invalid_grant")
        fake_provider.events = [meeting("a", at(8, 9))]

        with pytest.raises(AuthError) as excinfo:
            await engine_for(db, fake_provider).sync_connection(connection_id, now=NOW)

        assert excinfo.value.message == RECONNECT_MESSAGE
        assert await mirror(db, connection_id) == {}
        connection = await db.get(CalendarConnection, connection_id, populate_existing=True)
        assert connection.last_sync_status == "failed"
        assert connection.last_sync_error == RECONNECT_MESSAGE

    async def test_disabled_connection_is_refused(self, db, household, fake_provider):
        household.connection.sync_enabled = False
        await db.commit()
        with pytest.raises(ValidationError):
            await engine_for(db, fake_provider).sync_connection(household.connection.id, now=NOW)


class TestLease:
    async def test_running_sync_rejects_a_second_one(self, db, household, fake_provider):
        connection_id = household.connection.id
        household.connection.last_sync_status = "syncing"
        household.connection.sync_started_at = NOW - timedelta(seconds=30)
        await db.commit()

        with pytest.raises(SyncInProgress):
            await engine_for(db, fake_provider).sync_connection(connection_id, now=NOW)

        logs = await sync_logs(db, connection_id)
        assert [log.sync_status for log in logs] == ["rejected"]
        connection = await db.get(CalendarConnection, connection_id, populate_existing=True)
        assert connection.last_sync_status == "syncing"

    async def test_stale_lease_is_taken_over(self, db, household, fake_provider):
        connection_id = household.connection.id
        household.connection.last_sync_status = "syncing"
        household.connection.sync_started_at = NOW - timedelta(hours=1)
        await db.commit()
        fake_provider.events = [meeting("a", at(8, 9))]

        summary = await engine_for(db, fake_provider).sync_connection(connection_id, now=NOW)

        assert summary["events_added"] == 1

    async def test_organization_sync_collects_per_connection_results(
        self, db, household, fake_provider
    ):
        fake_provider.events = [meeting("a", at(8, 9))]
        result = await engine_for(db, fake_provider).sync_organization(household.org.id)

        assert result["synced"] == 1
        assert result["failed"] == 0
        assert result["results"][0]["connection_id"] == household.connection.id


class TestTokenManager:
    async def test_fresh_token_is_reused(self, db, household, fake_provider):
        manager = TokenManager(db, provider_factory=lambda name: fake_provider)
        assert await manager.ensure_valid_token(household.connection) == "access-initial"
        assert fake_provider.refresh_calls == 0

    async def test_token_close_to_expiry_is_refreshed(self, db, household, fake_provider):
        household.connection.token_expires_at = utcnow() + timedelta(minutes=2)
        await db.commit()
        manager = TokenManager(db, provider_factory=lambda name: fake_provider)

        token = await manager.ensure_valid_token(household.connection)

        assert token == "access-refreshed-1"
        assert household.connection.refresh_token == "refresh-initial"
        assert household.connection.token_expires_at > utcnow() + timedelta(minutes=30)

    async def test_concurrent_callers_share_one_refresh(
        self, db, session_maker, household, fake_provider
    ):
        household.connection.token_expires_at = utcnow() - timedelta(minutes=1)
        await db.commit()
        connection_id = household.connection.id
        locks = KeyedLocks()

        async def caller() -> str:
            async with session_maker() as session:
                connection = await session.get(CalendarConnection, connection_id)
                manager = TokenManager(
                    session, provider_factory=lambda name: fake_provider, locks=locks
                )
                return await manager.ensure_valid_token(connection)

        tokens = await asyncio.gather(*(caller() for _ in range(5)))

        assert fake_provider.refresh_calls == 1
        assert set(tokens) == {"access-refreshed-1"}

    async def test_missing_refresh_token_needs_reconnect(self, db, household, fake_provider):
        household.connection.token_expires_at = utcnow() - timedelta(minutes=1)
        household.connection.refresh_token = None
        await db.commit()
        manager = TokenManager(db, provider_factory=lambda name: fake_provider)

        with pytest.raises(AuthError):
            await manager.ensure_valid_token(household.connection)
        assert fake_provider.refresh_calls == 0
