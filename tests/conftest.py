"""Shared fixtures: SQLite database, a household with one connection, a fake provider."""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./workblock-test.db")
os.environ.setdefault("OAUTH_STATE_SECRET", "test-state-secret")
os.environ.setdefault("DEV_AUTH_BYPASS", "false")
os.environ.setdefault("FRONTEND_URL", "http://localhost:3000")

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import workblock.models  # noqa: F401  registers every table
from workblock.database import Base
from workblock.models.calendar import BlockedTimeSlot, CalendarConnection, SyncedWorkEvent
from workblock.models.lesson import Lesson
from workblock.models.organization import Organization
from workblock.models.types import utcnow
from workblock.models.user import User
from workblock.services.calendar.providers.base import (
    CalendarProvider,
    ProviderAttendee,
    ProviderCalendar,
    ProviderEvent,
    ProviderProfile,
    ProviderTokens,
)

# A Monday well in the future so lessons always count as upcoming
NOW = datetime(2030, 1, 7, 0, 0, tzinfo=timezone.utc)


def at(day: int, hour: int, minute: int = 0) -> datetime:
    """UTC instant in the week of NOW (day 7 is the Monday)."""
    return datetime(2030, 1, day, hour, minute, tzinfo=timezone.utc)


def meeting(external_id: str, start: datetime, minutes: int = 60, **overrides) -> ProviderEvent:
    """Provider event with one external attendee, so it classifies as a meeting."""
    values = {
        "external_id": external_id,
        "title": f"Meeting {external_id}",
        "start": start,
        "end": start + timedelta(minutes=minutes),
        "attendees": [
            ProviderAttendee(email="owner@example.com", is_self=True, response_status="accepted"),
            ProviderAttendee(email="colleague@example.com", response_status="accepted"),
        ],
    }
    values.update(overrides)
    return ProviderEvent(**values)


class FakeProvider(CalendarProvider):
    """In-memory provider: serves ``events`` and counts token refreshes."""

    name = "google"

    def __init__(self, events: list[ProviderEvent] | None = None) -> None:
        super().__init__()
        self.events = list(events or [])
        self.refresh_calls = 0
        self.refresh_error: Exception | None = None
        self.list_error: Exception | None = None
        self.revoked: list[str] = []

    def authorization_url(self, state: str, code_challenge: str) -> str:
        return f"https://provider.test/auth?state={state}&code_challenge={code_challenge}"

    async def exchange_code(self, code: str, code_verifier: str) -> ProviderTokens:
        return ProviderTokens(
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=utcnow() + timedelta(hours=1),
        )

    async def refresh_token(self, refresh_token: str) -> ProviderTokens:
        self.refresh_calls += 1
        # Give concurrent callers a chance to pile up on the lock
        await asyncio.sleep(0.01)
        if self.refresh_error is not None:
            raise self.refresh_error
        return ProviderTokens(
            access_token=f"access-refreshed-{self.refresh_calls}",
            refresh_token=None,
            expires_at=utcnow() + timedelta(hours=1),
        )

    async def get_profile(self, access_token: str) -> ProviderProfile:
        return ProviderProfile(account_id="owner@example.com", email="owner@example.com")

    async def list_calendars(self, access_token: str) -> list[ProviderCalendar]:
        return [
            ProviderCalendar(id="team@group.calendar", name="Team"),
            ProviderCalendar(id="owner@example.com", name="Owner", is_primary=True),
        ]

    async def list_events(self, access_token, calendar_id, time_min, time_max, account_email=None):
        if self.list_error is not None:
            raise self.list_error
        return list(self.events)

    async def revoke(self, token: str) -> None:
        self.revoked.append(token)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'calendar.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
async def household(db):
    """One organization, its calendar owner, a second member and a Google connection."""
    org = Organization(name="Test Household")
    db.add(org)
    await db.flush()

    owner = User(
        clerk_user_id="user_owner",
        email="owner@example.com",
        name="Owner",
        organization_id=org.id,
    )
    member = User(
        clerk_user_id="user_member",
        email="member@example.com",
        name="Member",
        organization_id=org.id,
    )
    db.add_all([owner, member])
    await db.flush()

    connection = CalendarConnection(
        organization_id=org.id,
        user_id=owner.id,
        provider="google",
        provider_account_id="owner@example.com",
        provider_account_email="owner@example.com",
        calendar_id="primary",
        access_token="access-initial",
        refresh_token="refresh-initial",
        token_expires_at=utcnow() + timedelta(hours=1),
        auto_block_enabled=True,
    )
    db.add(connection)
    await db.commit()
    return SimpleNamespace(org=org, owner=owner, member=member, connection=connection)


@pytest.fixture
def make_event(db):
    async def _make(connection, start, minutes=60, **overrides) -> SyncedWorkEvent:
        values = {
            "calendar_connection_id": connection.id,
            "organization_id": connection.organization_id,
            "user_id": connection.user_id,
            "external_event_id": f"ext-{start.isoformat()}",
            "title": "Standup",
            "start_time": start,
            "end_time": start + timedelta(minutes=minutes),
            "is_meeting": True,
            "status": "confirmed",
        }
        values.update(overrides)
        event = SyncedWorkEvent(**values)
        db.add(event)
        await db.commit()
        return event

    return _make


@pytest.fixture
def make_lesson(db):
    async def _make(organization_id, start, minutes=60, **overrides) -> Lesson:
        values = {
            "organization_id": organization_id,
            "title": "Math",
            "scheduled_start": start,
            "scheduled_end": start + timedelta(minutes=minutes),
        }
        values.update(overrides)
        lesson = Lesson(**values)
        db.add(lesson)
        await db.commit()
        return lesson

    return _make


@pytest.fixture
def make_block(db):
    async def _make(organization_id, user_id, start, minutes=60, **overrides) -> BlockedTimeSlot:
        values = {
            "organization_id": organization_id,
            "user_id": user_id,
            "start_time": start,
            "end_time": start + timedelta(minutes=minutes),
            "source_type": "manual",
            "title": "Doctor",
        }
        values.update(overrides)
        block = BlockedTimeSlot(**values)
        db.add(block)
        await db.commit()
        return block

    return _make
