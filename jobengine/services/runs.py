"""Run store: the job_runs queue and the claim protocol.

Every status transition here is a single conditional UPDATE guarded on the
status the caller expects the row to be in. The claim in particular must
never become a read followed by a write: two workers racing for the same
run both issue the same UPDATE and the database lets exactly one of them
match the row.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.core.logging import get_logger
from jobengine.models.execution import Execution, ExecutionStatus
from jobengine.models.job_run import ACTIVE_RUN_STATUSES, TERMINAL_RUN_STATUSES, JobRun, RunStatus
from jobengine.models.schedule import JobType

logger = get_logger(__name__)

# Completed runs considered when averaging durations
STATS_SAMPLE_SIZE = 500


async def has_active_run(db: AsyncSession, schedule_id: uuid.UUID) -> bool:
    """Check whether a schedule already has a pending or processing run."""
    result = await db.execute(
        select(JobRun.id)
        .where(JobRun.schedule_id == schedule_id, JobRun.status.in_(ACTIVE_RUN_STATUSES))
        .limit(1)
    )
    return result.first() is not None


async def get_pending_run_ids(db: AsyncSession, limit: int) -> list[uuid.UUID]:
    """Oldest pending runs first, bounded by the worker batch size."""
    result = await db.execute(
        select(JobRun.id)
        .where(JobRun.status == RunStatus.PENDING)
        .order_by(JobRun.scheduled_for.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def claim_run(db: AsyncSession, run_id: uuid.UUID, now: datetime) -> JobRun | None:
    """
    Atomically move a run from pending to processing.

    Returns:
        The claimed run, or None if another worker got there first
    """
    result = await db.execute(
        update(JobRun)
        .where(JobRun.id == run_id, JobRun.status == RunStatus.PENDING)
        .values(status=RunStatus.PROCESSING, started_at=now)
        .returning(JobRun)
        .execution_options(synchronize_session=False)
    )
    run: JobRun | None = result.scalar_one_or_none()
    return run


async def finish_run(
    db: AsyncSession,
    run_id: uuid.UUID,
    *,
    status: RunStatus,
    finished_at: datetime,
    metrics: dict[str, Any] | None = None,
    error_message: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    Move a processing run to a terminal status.

    Returns:
        False if the run was no longer processing (e.g. the Reconciler
        already failed it after a timeout)
    """
    values: dict[Any, Any] = {
        JobRun.status: status,
        JobRun.finished_at: finished_at,
        JobRun.error_message: error_message,
    }
    if metrics is not None:
        values[JobRun.metrics] = metrics
    if metadata is not None:
        values[JobRun.run_metadata] = metadata

    result = await db.execute(
        update(JobRun)
        .where(JobRun.id == run_id, JobRun.status == RunStatus.PROCESSING)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.bind(run_id=str(run_id), status=status.value).warning("job_run_finish_lost")
        return False
    return True


async def mark_run_failed(
    db: AsyncSession,
    run_id: uuid.UUID,
    error_message: str,
    finished_at: datetime,
) -> bool:
    """Fail a processing run with a reason."""
    return await finish_run(
        db,
        run_id,
        status=RunStatus.FAILED,
        finished_at=finished_at,
        error_message=error_message,
    )


async def find_failed_work_items(
    db: AsyncSession,
    owner_id: str,
    brand_id: str,
    since: datetime,
) -> list[str]:
    """
    Distinct work items whose executions failed after a cutoff.

    Args:
        db: Database session
        owner_id: Owner the executions belong to
        brand_id: Brand the executions belong to
        since: Only failures created after this instant (naive UTC)

    Returns:
        Work item ids in first-failure order, without duplicates or nulls
    """
    result = await db.execute(
        select(Execution.work_item_id)
        .where(
            Execution.owner_id == owner_id,
            Execution.brand_id == brand_id,
            Execution.status == ExecutionStatus.FAILED,
            Execution.created_at > since,
        )
        .order_by(Execution.created_at.asc())
    )
    return list(dict.fromkeys(wid for wid in result.scalars().all() if wid))


async def list_runs(
    db: AsyncSession,
    schedule_id: uuid.UUID | None = None,
    status: RunStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[JobRun]:
    """Most recently scheduled runs first."""
    query = select(JobRun).order_by(JobRun.scheduled_for.desc())

    if schedule_id:
        query = query.where(JobRun.schedule_id == schedule_id)
    if status:
        query = query.where(JobRun.status == status)

    result = await db.execute(query.offset(offset).limit(limit))
    return list(result.scalars().all())


async def get_run_stats(db: AsyncSession) -> list[dict[str, Any]]:
    """Aggregate run outcomes per job type."""
    counts_result = await db.execute(
        select(JobRun.job_type, JobRun.status, func.count(JobRun.id)).group_by(
            JobRun.job_type, JobRun.status
        )
    )
    counts: dict[JobType, dict[RunStatus, int]] = {}
    for job_type, status, count in counts_result.all():
        counts.setdefault(job_type, {})[status] = count

    stats = []
    for job_type, by_status in counts.items():
        total = sum(by_status.values())
        completed = by_status.get(RunStatus.COMPLETED, 0)
        failed = by_status.get(RunStatus.FAILED, 0)
        finished = sum(by_status.get(s, 0) for s in TERMINAL_RUN_STATUSES)

        # Average duration over recent completed runs
        durations_result = await db.execute(
            select(JobRun.started_at, JobRun.finished_at)
            .where(
                JobRun.job_type == job_type,
                JobRun.status == RunStatus.COMPLETED,
                JobRun.started_at.is_not(None),
                JobRun.finished_at.is_not(None),
            )
            .order_by(JobRun.finished_at.desc())
            .limit(STATS_SAMPLE_SIZE)
        )
        durations = [
            (finished_at - started_at).total_seconds()
            for started_at, finished_at in durations_result.all()
        ]

        last_run_result = await db.execute(
            select(JobRun)
            .where(JobRun.job_type == job_type)
            .order_by(JobRun.scheduled_for.desc())
            .limit(1)
        )
        last_run = last_run_result.scalar_one_or_none()

        stats.append(
            {
                "job_type": job_type,
                "total_runs": total,
                "completed_runs": completed,
                "failed_runs": failed,
                "active_runs": total - finished,
                "success_rate": completed / finished if finished > 0 else 0.0,
                "avg_duration_seconds": sum(durations) / len(durations) if durations else None,
                "last_run": last_run.scheduled_for if last_run else None,
                "last_status": last_run.status if last_run else None,
            }
        )

    return sorted(stats, key=lambda s: s["job_type"].value)
