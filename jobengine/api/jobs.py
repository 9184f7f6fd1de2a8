"""Job scheduling admin and monitoring API endpoints."""

import uuid

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError

from jobengine.core.cron import CronError
from jobengine.core.datetime_utils import utc_now
from jobengine.core.runner import get_loop_schedules
from jobengine.dependencies import AppSettings, DBSession
from jobengine.jobs.reconciler import get_stuck_execution_stats
from jobengine.models.job_run import JobRun, RunStatus
from jobengine.schemas.job import (
    EnqueuedRunResponse,
    FailureRetryRequest,
    JobRunResponse,
    JobStatsResponse,
    LoopScheduleResponse,
    ScheduleCreate,
    ScheduleOneOff,
    ScheduleResponse,
    ScheduleUpdate,
    StuckExecutionStatsResponse,
)
from jobengine.services import runs as run_store
from jobengine.services import schedules as schedule_store
from jobengine.services.schedules import RunAlreadyActiveError, ScheduleInactiveError

router = APIRouter()


def _run_response(run: JobRun) -> JobRunResponse:
    return JobRunResponse(
        id=run.id,
        schedule_id=run.schedule_id,
        owner_id=run.owner_id,
        brand_id=run.brand_id,
        job_type=run.job_type,
        status=run.status,
        scheduled_for=run.scheduled_for,
        started_at=run.started_at,
        finished_at=run.finished_at,
        duration_seconds=run.duration_seconds,
        metrics=run.metrics,
        error_message=run.error_message,
        metadata=run.run_metadata or {},
    )


def _not_found(schedule_id: uuid.UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Schedule {schedule_id} not found",
    )


@router.get("/jobs/schedules", response_model=list[ScheduleResponse])
async def list_schedules(
    db: DBSession,
    owner_id: str | None = Query(default=None, description="Filter by owner"),
    brand_id: str | None = Query(default=None, description="Filter by brand"),
) -> list[ScheduleResponse]:
    """List schedules, optionally for one owner and/or brand."""
    schedules = await schedule_store.list_schedules(db, owner_id=owner_id, brand_id=brand_id)
    return [ScheduleResponse.model_validate(s) for s in schedules]


@router.post(
    "/jobs/schedules",
    response_model=ScheduleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_schedule(data: ScheduleCreate, db: DBSession) -> ScheduleResponse:
    """
    Create a recurring schedule.

    The first next_run_at is computed from the cron expression unless one
    is given explicitly.
    """
    try:
        schedule = await schedule_store.create_schedule(db, data)
    except CronError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return ScheduleResponse.model_validate(schedule)


@router.get("/jobs/schedules/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(schedule_id: uuid.UUID, db: DBSession) -> ScheduleResponse:
    schedule = await schedule_store.get_schedule(db, schedule_id)
    if schedule is None:
        raise _not_found(schedule_id)
    return ScheduleResponse.model_validate(schedule)


@router.patch("/jobs/schedules/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: uuid.UUID,
    data: ScheduleUpdate,
    db: DBSession,
) -> ScheduleResponse:
    """
    Partially update a schedule.

    Schedules are never deleted; set is_active to false to retire one.
    """
    try:
        schedule = await schedule_store.update_schedule(db, schedule_id, data)
    except CronError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    if schedule is None:
        raise _not_found(schedule_id)
    return ScheduleResponse.model_validate(schedule)


@router.post(
    "/jobs/schedules/{schedule_id}/trigger",
    response_model=EnqueuedRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_schedule(schedule_id: uuid.UUID, db: DBSession) -> EnqueuedRunResponse:
    """Enqueue a run now without changing the schedule's cadence."""
    try:
        run = await schedule_store.trigger_run(db, schedule_id)
        if run is not None:
            await db.commit()
    except ScheduleInactiveError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except (RunAlreadyActiveError, IntegrityError) as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Schedule {schedule_id} already has a pending or processing run",
        ) from e

    if run is None:
        raise _not_found(schedule_id)

    return EnqueuedRunResponse(message="Run enqueued", schedule_id=schedule_id, run_id=run.id)


@router.post(
    "/jobs/run-once",
    response_model=EnqueuedRunResponse,
    status_code=status.HTTP_201_CREATED,
)
async def run_once(data: ScheduleOneOff, db: DBSession) -> EnqueuedRunResponse:
    """Schedule a job to run once at the given time."""
    schedule = await schedule_store.schedule_one_off(db, data)
    return EnqueuedRunResponse(
        message=f"Job scheduled for {schedule.next_run_at.isoformat()}",
        schedule_id=schedule.id,
    )


@router.post(
    "/jobs/retry-failures",
    response_model=EnqueuedRunResponse,
    status_code=status.HTTP_201_CREATED,
)
async def retry_failures(data: FailureRetryRequest, db: DBSession) -> EnqueuedRunResponse:
    """Queue a retry of a brand's work items that failed within the lookback window."""
    schedule = await schedule_store.schedule_failure_retry(
        db,
        owner_id=data.owner_id,
        brand_id=data.brand_id,
        lookback_minutes=data.lookback_minutes,
    )
    return EnqueuedRunResponse(
        message=f"Retry of failures from the last {data.lookback_minutes} minutes scheduled",
        schedule_id=schedule.id,
    )


@router.get("/jobs/runs", response_model=list[JobRunResponse])
async def list_job_runs(
    db: DBSession,
    schedule_id: uuid.UUID | None = Query(default=None, description="Filter by schedule"),
    run_status: RunStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[JobRunResponse]:
    """
    List job run history.

    Returns the most recently scheduled runs first.
    """
    runs = await run_store.list_runs(
        db, schedule_id=schedule_id, status=run_status, limit=limit, offset=offset
    )
    return [_run_response(run) for run in runs]


@router.get("/jobs/stats", response_model=list[JobStatsResponse])
async def get_job_stats(db: DBSession) -> list[JobStatsResponse]:
    """
    Get aggregated run statistics per job type.

    Returns success rates, average durations, and last run info.
    """
    stats = await run_store.get_run_stats(db)
    return [JobStatsResponse(**s) for s in stats]


@router.get("/jobs/executions/stuck", response_model=StuckExecutionStatsResponse)
async def get_stuck_executions(db: DBSession, settings: AppSettings) -> StuckExecutionStatsResponse:
    """Executions currently stuck in running past the reconciler timeout."""
    stats = await get_stuck_execution_stats(db, utc_now(), settings.stuck_timeout_minutes)
    return StuckExecutionStatsResponse(**stats)


@router.get("/jobs/loops", response_model=list[LoopScheduleResponse])
async def list_loops() -> list[LoopScheduleResponse]:
    """
    List the registered polling loops.

    Empty when the loops are not running in this process.
    """
    schedules = await get_loop_schedules()
    return [LoopScheduleResponse(**s) for s in schedules]
