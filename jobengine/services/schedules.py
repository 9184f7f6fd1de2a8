"""Schedule store and the admin operations that enqueue work."""

import uuid
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.core.cron import next_fire_time, reference_for, validate_schedule_cron
from jobengine.core.datetime_utils import to_naive_utc, utc_now
from jobengine.core.logging import get_logger
from jobengine.models.job_run import JobRun, RunStatus
from jobengine.models.schedule import JobType, Schedule
from jobengine.schemas.job import ScheduleCreate, ScheduleOneOff, ScheduleUpdate
from jobengine.services.runs import has_active_run

logger = get_logger(__name__)

# Never fires; one-off schedules are driven by next_run_at alone
ONE_OFF_CRON = "0 0 1 1 *"

DEFAULT_FAILURE_LOOKBACK_MINUTES = 24 * 60


class RunAlreadyActiveError(Exception):
    """The schedule already has a pending or processing run."""

    def __init__(self, schedule_id: uuid.UUID) -> None:
        self.schedule_id = schedule_id
        super().__init__(f"Schedule {schedule_id} already has a pending or processing run")


class ScheduleInactiveError(ValueError):
    """Manual trigger of a deactivated schedule."""


async def get_schedule(db: AsyncSession, schedule_id: uuid.UUID) -> Schedule | None:
    return await db.get(Schedule, schedule_id)


async def list_schedules(
    db: AsyncSession,
    owner_id: str | None = None,
    brand_id: str | None = None,
) -> list[Schedule]:
    """Schedules of an owner and/or brand, newest first."""
    query = select(Schedule).order_by(Schedule.created_at.desc())

    if owner_id:
        query = query.where(Schedule.owner_id == owner_id)
    if brand_id:
        query = query.where(Schedule.brand_id == brand_id)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_due_schedules(db: AsyncSession, now: datetime, limit: int) -> list[Schedule]:
    """
    Active schedules whose next run is unset or not in the future.

    Never-fired schedules come first; the rest is best-effort ordered by
    how overdue they are.
    """
    result = await db.execute(
        select(Schedule)
        .where(
            Schedule.is_active.is_(True),
            or_(Schedule.next_run_at.is_(None), Schedule.next_run_at <= now),
        )
        .order_by(Schedule.next_run_at.asc().nulls_first())
        .limit(limit)
    )
    return list(result.scalars().all())


async def create_schedule(
    db: AsyncSession,
    data: ScheduleCreate,
    now: datetime | None = None,
) -> Schedule:
    """
    Create a schedule after validating its cadence.

    Raises:
        CronError: If the cron expression or timezone is invalid
    """
    validate_schedule_cron(data.cron_expression, data.timezone)
    now = now or utc_now()

    if data.next_run_at is not None:
        next_run_at = to_naive_utc(data.next_run_at)
    else:
        next_run_at = next_fire_time(data.cron_expression, data.timezone, now)

    schedule = Schedule(
        owner_id=data.owner_id,
        brand_id=data.brand_id,
        job_type=data.job_type,
        cron_expression=data.cron_expression,
        timezone=data.timezone,
        is_active=data.is_active,
        next_run_at=next_run_at,
        parameters=data.parameters,
        created_by=data.created_by,
    )
    db.add(schedule)
    await db.flush()

    logger.bind(
        schedule_id=str(schedule.id),
        job_type=schedule.job_type.value,
        cron=schedule.cron_expression,
        next_run_at=str(next_run_at),
    ).info("schedule_created")
    return schedule


async def update_schedule(
    db: AsyncSession,
    schedule_id: uuid.UUID,
    data: ScheduleUpdate,
    now: datetime | None = None,
) -> Schedule | None:
    """
    Apply a partial update.

    A changed cron expression or timezone recomputes next_run_at from the
    previous next_run_at (or now when it was never set).

    Raises:
        CronError: If the new cron expression or timezone is invalid
    """
    schedule = await get_schedule(db, schedule_id)
    if schedule is None:
        return None

    changes = data.model_dump(exclude_unset=True)
    cron_expression = changes.get("cron_expression") or schedule.cron_expression
    timezone = changes.get("timezone") or schedule.timezone
    cadence_changed = (
        cron_expression != schedule.cron_expression or timezone != schedule.timezone
    )

    if cadence_changed:
        validate_schedule_cron(cron_expression, timezone)
        schedule.next_run_at = next_fire_time(
            cron_expression, timezone, reference_for(schedule, now or utc_now())
        )

    schedule.cron_expression = cron_expression
    schedule.timezone = timezone
    if changes.get("is_active") is not None:
        schedule.is_active = changes["is_active"]
    if changes.get("parameters") is not None:
        schedule.parameters = changes["parameters"]

    await db.flush()

    logger.bind(
        schedule_id=str(schedule.id),
        fields=sorted(changes),
        cadence_changed=cadence_changed,
    ).info("schedule_updated")
    return schedule


async def enqueue_run(
    db: AsyncSession,
    schedule: Schedule,
    scheduled_for: datetime,
    trigger: str = "scheduler",
) -> JobRun:
    """
    Insert a pending run for a schedule.

    The caller commits. A concurrent enqueue that slips past the check is
    rejected by the storage constraints at flush or commit time.

    Raises:
        RunAlreadyActiveError: If the schedule has a pending/processing run
    """
    if await has_active_run(db, schedule.id):
        raise RunAlreadyActiveError(schedule.id)

    run = JobRun(
        schedule_id=schedule.id,
        owner_id=schedule.owner_id,
        brand_id=schedule.brand_id,
        job_type=schedule.job_type,
        status=RunStatus.PENDING,
        scheduled_for=scheduled_for,
        run_metadata={"trigger": trigger},
    )
    db.add(run)
    await db.flush()
    return run


async def trigger_run(
    db: AsyncSession,
    schedule_id: uuid.UUID,
    now: datetime | None = None,
) -> JobRun | None:
    """
    Enqueue a run for now, outside the schedule's cadence.

    Returns:
        The pending run, or None if the schedule does not exist

    Raises:
        ScheduleInactiveError: If the schedule is deactivated
        RunAlreadyActiveError: If a run is already pending/processing
    """
    schedule = await get_schedule(db, schedule_id)
    if schedule is None:
        return None
    if not schedule.is_active:
        raise ScheduleInactiveError(f"Schedule {schedule_id} is inactive")

    run = await enqueue_run(db, schedule, now or utc_now(), trigger="manual")
    logger.bind(schedule_id=str(schedule_id), run_id=str(run.id)).info("job_run_triggered")
    return run


async def schedule_one_off(db: AsyncSession, data: ScheduleOneOff) -> Schedule:
    """
    Create a schedule that runs once at the requested time.

    The Scheduler picks it up like any other due schedule; the Worker
    deactivates it after the run finishes.
    """
    schedule = Schedule(
        owner_id=data.owner_id,
        brand_id=data.brand_id,
        job_type=data.job_type,
        cron_expression=ONE_OFF_CRON,
        timezone="UTC",
        is_active=True,
        next_run_at=to_naive_utc(data.scheduled_for),
        parameters={**data.parameters, "one_off": True},
        created_by=data.created_by,
    )
    db.add(schedule)
    await db.flush()

    logger.bind(
        schedule_id=str(schedule.id),
        job_type=schedule.job_type.value,
        scheduled_for=str(schedule.next_run_at),
    ).info("one_off_scheduled")
    return schedule


async def schedule_failure_retry(
    db: AsyncSession,
    owner_id: str,
    brand_id: str,
    lookback_minutes: int = DEFAULT_FAILURE_LOOKBACK_MINUTES,
    now: datetime | None = None,
) -> Schedule:
    """Queue a one-off collection_retry for a brand's recent failures."""
    return await schedule_one_off(
        db,
        ScheduleOneOff(
            owner_id=owner_id,
            brand_id=brand_id,
            job_type=JobType.COLLECTION_RETRY,
            scheduled_for=now or utc_now(),
            parameters={"lookback_minutes": lookback_minutes},
            created_by="retry-failures",
        ),
    )
