"""Tests for the conflict resolution workflow."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import at
from workblock.errors import AccessDenied, ConflictAlreadyResolved, NotFoundError, ValidationError
from workblock.models.calendar import ConflictResolution, SyncedWorkEvent
from workblock.models.lesson import Lesson
from workblock.services.calendar.resolution import ConflictState, ResolutionWorkflow


async def audit_count(db) -> int:
    return await db.scalar(select(func.count()).select_from(ConflictResolution))


@pytest.fixture
async def flagged(household, make_event):
    return await make_event(household.connection, at(8, 9, 30), has_conflict=True)


class TestResolve:
    async def test_reschedule_keeps_lesson_duration(self, db, household, make_event, make_lesson):
        event = await make_event(
            household.connection,
            datetime(2024, 9, 10, 9, 30, tzinfo=timezone.utc),
            has_conflict=True,
        )
        lesson = await make_lesson(household.org.id, datetime(2024, 9, 10, 9, 0, tzinfo=timezone.utc))

        resolution = await ResolutionWorkflow(db).resolve(
            work_event_id=event.id,
            resolution_type="reschedule_lesson",
            resolver_id=household.owner.id,
            organization_id=household.org.id,
            affected_lesson_id=lesson.id,
            new_lesson_time=datetime(2024, 9, 10, 13, 0, tzinfo=timezone.utc),
        )

        await db.refresh(lesson)
        await db.refresh(event)
        assert lesson.scheduled_start == datetime(2024, 9, 10, 13, 0, tzinfo=timezone.utc)
        assert lesson.scheduled_end == datetime(2024, 9, 10, 14, 0, tzinfo=timezone.utc)
        assert event.has_conflict is False
        assert resolution.resolution_type == "reschedule_lesson"
        assert resolution.synced_work_event_id == event.id
        assert resolution.new_lesson_time == datetime(2024, 9, 10, 13, 0, tzinfo=timezone.utc)
        assert await ResolutionWorkflow(db).state(event) is ConflictState.RESOLVED

    async def test_naive_time_is_read_as_utc(self, db, household, flagged, make_lesson):
        lesson = await make_lesson(household.org.id, at(8, 9), minutes=45)

        await ResolutionWorkflow(db).resolve(
            flagged.id,
            "reschedule_lesson",
            household.owner.id,
            household.org.id,
            affected_lesson_id=lesson.id,
            new_lesson_time=datetime(2030, 1, 8, 15, 0),
        )

        await db.refresh(lesson)
        assert lesson.scheduled_start == at(8, 15)
        assert lesson.scheduled_end == at(8, 15, 45)

    async def test_cancel_lesson(self, db, household, flagged, make_lesson):
        lesson = await make_lesson(household.org.id, at(8, 9))

        await ResolutionWorkflow(db).resolve(
            flagged.id, "cancel_lesson", household.owner.id, household.org.id,
            notes="Client call can't move", affected_lesson_id=lesson.id,
        )

        await db.refresh(lesson)
        assert lesson.status == "cancelled"
        assert lesson.scheduled_start == at(8, 9)

    @pytest.mark.parametrize(
        ("resolution_type", "state"),
        [("keep_both", ConflictState.RESOLVED), ("ignore", ConflictState.IGNORED)],
    )
    async def test_keep_both_and_ignore_leave_lessons_alone(
        self, db, household, flagged, make_lesson, resolution_type, state
    ):
        lesson = await make_lesson(household.org.id, at(8, 9))
        workflow = ResolutionWorkflow(db)

        await workflow.resolve(flagged.id, resolution_type, household.owner.id, household.org.id)

        await db.refresh(lesson)
        await db.refresh(flagged)
        assert (lesson.scheduled_start, lesson.status) == (at(8, 9), "scheduled")
        assert flagged.has_conflict is False
        assert await workflow.state(flagged) is state

    async def test_terminal_conflict_cannot_be_resolved_again(self, db, household, flagged):
        workflow = ResolutionWorkflow(db)
        await workflow.resolve(flagged.id, "keep_both", household.owner.id, household.org.id)

        with pytest.raises(ConflictAlreadyResolved):
            await workflow.resolve(flagged.id, "ignore", household.owner.id, household.org.id)
        assert await audit_count(db) == 1


class TestAuthorization:
    async def test_non_owner_is_denied_without_side_effects(self, db, household, flagged, make_lesson):
        lesson = await make_lesson(household.org.id, at(8, 9))

        with pytest.raises(AccessDenied):
            await ResolutionWorkflow(db).resolve(
                flagged.id, "cancel_lesson", household.member.id, household.org.id,
                affected_lesson_id=lesson.id,
            )

        assert await audit_count(db) == 0
        await db.refresh(lesson)
        await db.refresh(flagged)
        assert lesson.status == "scheduled"
        assert flagged.has_conflict is True

    async def test_other_household_is_denied(self, db, household, flagged):
        with pytest.raises(AccessDenied):
            await ResolutionWorkflow(db).resolve(flagged.id, "ignore", household.owner.id, uuid4())
        assert await audit_count(db) == 0

    async def test_unknown_event(self, db, household):
        with pytest.raises(NotFoundError):
            await ResolutionWorkflow(db).resolve(uuid4(), "ignore", household.owner.id, household.org.id)


class TestValidation:
    @pytest.mark.parametrize(
        ("resolution_type", "kwargs"),
        [
            ("reschedule_lesson", {}),
            ("reschedule_lesson", {"affected_lesson_id": uuid4()}),
            ("reschedule_lesson", {"new_lesson_time": datetime(2030, 1, 8, 15, tzinfo=timezone.utc)}),
            ("cancel_lesson", {}),
            ("postpone_work", {}),
        ],
    )
    async def test_incomplete_requests(self, db, household, flagged, resolution_type, kwargs):
        with pytest.raises(ValidationError):
            await ResolutionWorkflow(db).resolve(
                flagged.id, resolution_type, household.owner.id, household.org.id, **kwargs
            )
        assert await audit_count(db) == 0


class TestSideEffectFailure:
    async def test_missing_lesson_keeps_audit_and_flag_then_retry_succeeds(
        self, db, household, flagged, make_lesson
    ):
        event_id = flagged.id
        owner_id = household.owner.id
        org_id = household.org.id
        workflow = ResolutionWorkflow(db)

        with pytest.raises(NotFoundError):
            await workflow.resolve(event_id, "cancel_lesson", owner_id, org_id, affected_lesson_id=uuid4())

        assert await audit_count(db) == 1
        event = await db.get(SyncedWorkEvent, event_id, populate_existing=True)
        assert event.has_conflict is True

        lesson = await make_lesson(org_id, at(8, 9))
        await workflow.resolve(event_id, "cancel_lesson", owner_id, org_id, affected_lesson_id=lesson.id)

        assert await audit_count(db) == 2
        event = await db.get(SyncedWorkEvent, event_id, populate_existing=True)
        assert event.has_conflict is False
        assert (await db.get(Lesson, lesson.id, populate_existing=True)).status == "cancelled"

    async def test_unflagged_event_is_refused_so_it_never_looks_resolved(
        self, db, household, make_event, make_lesson
    ):
        event = await make_event(household.connection, at(8, 9))
        event_id = event.id
        owner_id = household.owner.id
        org_id = household.org.id
        workflow = ResolutionWorkflow(db)

        with pytest.raises(ValidationError):
            await workflow.resolve(event_id, "cancel_lesson", owner_id, org_id, affected_lesson_id=uuid4())

        assert await audit_count(db) == 0
        event = await db.get(SyncedWorkEvent, event_id, populate_existing=True)
        assert await workflow.state(event) is ConflictState.UNRESOLVED

        lesson = await make_lesson(org_id, at(8, 9))
        with pytest.raises(ValidationError):
            await workflow.resolve(event_id, "cancel_lesson", owner_id, org_id, affected_lesson_id=lesson.id)
        assert (await db.get(Lesson, lesson.id, populate_existing=True)).status == "scheduled"

    async def test_lesson_of_another_household_is_not_touched(self, db, household, flagged, make_lesson):
        event_id = flagged.id
        foreign = await make_lesson(uuid4(), at(8, 9))
        foreign_id = foreign.id

        with pytest.raises(NotFoundError):
            await ResolutionWorkflow(db).resolve(
                event_id, "cancel_lesson", household.owner.id, household.org.id,
                affected_lesson_id=foreign_id,
            )

        assert (await db.get(Lesson, foreign_id, populate_existing=True)).status == "scheduled"


async def test_list_resolutions_newest_first(db, household, make_event):
    first = await make_event(household.connection, at(8, 9), has_conflict=True)
    second = await make_event(household.connection, at(9, 9), has_conflict=True)
    workflow = ResolutionWorkflow(db)
    await workflow.resolve(first.id, "keep_both", household.owner.id, household.org.id)
    await workflow.resolve(second.id, "ignore", household.owner.id, household.org.id)

    resolutions = await workflow.list_resolutions(household.org.id)

    assert [r.synced_work_event_id for r in resolutions] == [second.id, first.id]
    assert await workflow.list_resolutions(uuid4()) == []
