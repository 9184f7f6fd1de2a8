"""Tests for the schedule store and admin enqueue operations."""

import uuid
from datetime import datetime

import pytest

from jobengine.core.cron import CronError
from jobengine.models.job_run import JobRun, RunStatus
from jobengine.models.schedule import JobType, Schedule
from jobengine.schemas.job import ScheduleCreate, ScheduleOneOff, ScheduleUpdate
from jobengine.services.schedules import (
    ONE_OFF_CRON,
    RunAlreadyActiveError,
    ScheduleInactiveError,
    create_schedule,
    enqueue_run,
    get_due_schedules,
    list_schedules,
    schedule_failure_retry,
    schedule_one_off,
    trigger_run,
    update_schedule,
)

pytestmark = pytest.mark.asyncio

NOW = datetime(2024, 1, 1, 0, 0, 0)


class TestGetDueSchedules:
    async def test_due_and_never_fired_first(self, db_session, schedule_factory):
        overdue = await schedule_factory(next_run_at=datetime(2023, 12, 31, 23, 55))
        never = await schedule_factory(next_run_at=None)
        await schedule_factory(next_run_at=datetime(2024, 1, 1, 0, 5))  # future
        await schedule_factory(next_run_at=None, is_active=False)

        due = await get_due_schedules(db_session, NOW, limit=10)

        assert [s.id for s in due] == [never.id, overdue.id]

    async def test_bounded_by_limit(self, db_session, schedule_factory):
        for _ in range(3):
            await schedule_factory(next_run_at=None)

        assert len(await get_due_schedules(db_session, NOW, limit=2)) == 2


class TestCreateSchedule:
    async def test_computes_first_run_from_now(self, db_session):
        schedule = await create_schedule(
            db_session,
            ScheduleCreate(
                owner_id="owner-1",
                brand_id="brand-1",
                job_type=JobType.SCORING,
                cron_expression="0 * * * *",
            ),
            now=datetime(2024, 1, 1, 10, 15),
        )

        assert schedule.id is not None
        assert schedule.timezone == "UTC"
        assert schedule.next_run_at == datetime(2024, 1, 1, 11, 0)

    async def test_explicit_next_run_at(self, db_session):
        schedule = await create_schedule(
            db_session,
            ScheduleCreate(
                owner_id="owner-1",
                brand_id="brand-1",
                job_type=JobType.SCORING,
                cron_expression="0 * * * *",
                next_run_at=datetime(2024, 2, 1, 8, 0),
            ),
        )

        assert schedule.next_run_at == datetime(2024, 2, 1, 8, 0)

    async def test_rejects_bad_cron(self, db_session):
        with pytest.raises(CronError):
            await create_schedule(
                db_session,
                ScheduleCreate(
                    owner_id="owner-1",
                    brand_id="brand-1",
                    job_type=JobType.SCORING,
                    cron_expression="every day",
                ),
            )

    async def test_rejects_bad_timezone(self, db_session):
        with pytest.raises(CronError):
            await create_schedule(
                db_session,
                ScheduleCreate(
                    owner_id="owner-1",
                    brand_id="brand-1",
                    job_type=JobType.SCORING,
                    cron_expression="0 * * * *",
                    timezone="Nowhere/Special",
                ),
            )


class TestUpdateSchedule:
    async def test_cron_change_recomputes_from_previous_next_run(
        self, db_session, schedule_factory
    ):
        schedule = await schedule_factory(
            cron_expression="0 * * * *", next_run_at=datetime(2024, 1, 1, 10, 0)
        )

        updated = await update_schedule(
            db_session, schedule.id, ScheduleUpdate(cron_expression="*/15 * * * *"), now=NOW
        )

        assert updated.cron_expression == "*/15 * * * *"
        assert updated.next_run_at == datetime(2024, 1, 1, 10, 15)

    async def test_deactivate_keeps_cadence(self, db_session, schedule_factory):
        next_run_at = datetime(2024, 1, 1, 10, 0)
        schedule = await schedule_factory(next_run_at=next_run_at)

        updated = await update_schedule(db_session, schedule.id, ScheduleUpdate(is_active=False))

        assert updated.is_active is False
        assert updated.next_run_at == next_run_at

    async def test_invalid_cron_rejected(self, db_session, schedule_factory):
        schedule = await schedule_factory()

        with pytest.raises(CronError):
            await update_schedule(db_session, schedule.id, ScheduleUpdate(cron_expression="nope"))

    async def test_missing_schedule(self, db_session):
        assert await update_schedule(db_session, uuid.uuid4(), ScheduleUpdate()) is None

    async def test_list_by_brand(self, db_session, schedule_factory):
        await schedule_factory(brand_id="brand-1")
        other = await schedule_factory(brand_id="brand-2")

        schedules = await list_schedules(db_session, brand_id="brand-2")

        assert [s.id for s in schedules] == [other.id]


class TestEnqueue:
    async def test_enqueue_inserts_pending_run(self, db_session, schedule_factory):
        schedule = await schedule_factory()
        loaded = await db_session.get(Schedule, schedule.id)

        run = await enqueue_run(db_session, loaded, NOW, trigger="manual")

        assert run.status == RunStatus.PENDING
        assert run.scheduled_for == NOW
        assert run.job_type == schedule.job_type
        assert run.run_metadata == {"trigger": "manual"}

    async def test_enqueue_refuses_when_active(self, db_session, schedule_factory, run_factory):
        schedule = await schedule_factory()
        await run_factory(schedule, status=RunStatus.PROCESSING)
        loaded = await db_session.get(Schedule, schedule.id)

        with pytest.raises(RunAlreadyActiveError):
            await enqueue_run(db_session, loaded, NOW)

    async def test_trigger_leaves_cadence_alone(self, db_session, schedule_factory):
        next_run_at = datetime(2030, 1, 1)
        schedule = await schedule_factory(next_run_at=next_run_at)

        run = await trigger_run(db_session, schedule.id, now=NOW)

        assert run is not None
        assert run.scheduled_for == NOW
        assert run.run_metadata["trigger"] == "manual"
        assert (await db_session.get(Schedule, schedule.id)).next_run_at == next_run_at

    async def test_trigger_inactive_schedule(self, db_session, schedule_factory):
        schedule = await schedule_factory(is_active=False)

        with pytest.raises(ScheduleInactiveError):
            await trigger_run(db_session, schedule.id)

        assert (await db_session.execute(JobRun.__table__.select())).first() is None


class TestOneOff:
    async def test_schedule_one_off(self, db_session):
        scheduled_for = datetime(2024, 6, 1, 12, 0)

        schedule = await schedule_one_off(
            db_session,
            ScheduleOneOff(
                owner_id="owner-1",
                brand_id="brand-1",
                job_type=JobType.COLLECTION_AND_SCORING,
                scheduled_for=scheduled_for,
                parameters={"locale": "fr-FR"},
            ),
        )

        assert schedule.is_active is True
        assert schedule.is_one_off is True
        assert schedule.cron_expression == ONE_OFF_CRON
        assert schedule.next_run_at == scheduled_for
        assert schedule.parameters == {"locale": "fr-FR", "one_off": True}

    async def test_failure_retry_is_due_now(self, db_session):
        schedule = await schedule_failure_retry(
            db_session, "owner-1", "brand-1", lookback_minutes=90, now=NOW
        )

        assert schedule.job_type == JobType.COLLECTION_RETRY
        assert schedule.next_run_at == NOW
        assert schedule.parameters["lookback_minutes"] == 90
        assert schedule.is_one_off is True
