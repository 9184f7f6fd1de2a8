"""
Stuck-execution reconciler.

Collection services sometimes store a result and then crash before moving
the execution out of ``running``. This sweep is the backstop for that
window:

1. Executions ``running`` for longer than the timeout are inspected.
2. A non-empty collector result means the work finished: ``completed``.
3. No result means the work is lost: ``failed``, with the stuck duration
   and ``cleanup_reason = "stuck_running_timeout"`` in error_metadata.

Runs left in ``processing`` by a worker that died mid-dispatch get the same
treatment with a longer timeout.

Every correction is conditional on the row still being in the stuck
status, so a second sweep over the same state changes nothing.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.core.datetime_utils import get_cutoff, minutes_between, utc_now
from jobengine.core.logging import get_logger
from jobengine.jobs.base import PollingLoop
from jobengine.models.execution import CollectorResult, Execution, ExecutionStatus
from jobengine.models.job_run import JobRun, RunStatus
from jobengine.services.runs import finish_run

logger = get_logger(__name__)

STUCK_EXECUTION_REASON = "stuck_running_timeout"
STUCK_RUN_REASON = "stuck_processing_timeout"


async def get_stuck_executions(
    db: AsyncSession,
    now: datetime,
    timeout_minutes: int,
) -> list[Execution]:
    """Executions running past the timeout, oldest first."""
    result = await db.execute(
        select(Execution)
        .where(
            Execution.status == ExecutionStatus.RUNNING,
            Execution.updated_at < get_cutoff(minutes=timeout_minutes, now=now),
        )
        .order_by(Execution.updated_at.asc())
    )
    return list(result.scalars().all())


async def has_result_payload(db: AsyncSession, execution_id: uuid.UUID) -> bool:
    """Check for a collector result with a non-empty payload."""
    result = await db.execute(
        select(CollectorResult.id)
        .where(
            CollectorResult.execution_id == execution_id,
            CollectorResult.payload.is_not(None),
            CollectorResult.payload != "",
        )
        .limit(1)
    )
    return result.first() is not None


async def reconcile_execution(
    db: AsyncSession,
    execution_id: uuid.UUID,
    stuck_since: datetime,
    now: datetime,
) -> ExecutionStatus | None:
    """
    Move one stuck execution to completed or failed.

    Returns:
        The status written, or None if the execution left ``running`` in
        the meantime
    """
    if await has_result_payload(db, execution_id):
        values: dict[str, Any] = {"status": ExecutionStatus.COMPLETED, "updated_at": now}
    else:
        stuck_minutes = minutes_between(stuck_since, now)
        values = {
            "status": ExecutionStatus.FAILED,
            "error_message": (
                f"Execution stuck in 'running' status for {stuck_minutes} minutes. "
                "Likely timeout or process crash."
            ),
            "error_metadata": {
                "stuck_duration_minutes": stuck_minutes,
                "cleanup_reason": STUCK_EXECUTION_REASON,
                "cleaned_at": now.isoformat(),
            },
            "updated_at": now,
        }

    result = await db.execute(
        update(Execution)
        .where(Execution.id == execution_id, Execution.status == ExecutionStatus.RUNNING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    status: ExecutionStatus = values["status"]
    return status


async def get_stuck_execution_stats(
    db: AsyncSession,
    now: datetime,
    timeout_minutes: int,
) -> dict[str, Any]:
    """Count stuck executions per collector type and find the oldest one."""
    stuck = await get_stuck_executions(db, now, timeout_minutes)

    by_collector_type: dict[str, int] = {}
    for execution in stuck:
        collector_type = execution.collector_type or "unknown"
        by_collector_type[collector_type] = by_collector_type.get(collector_type, 0) + 1

    return {
        "total_stuck": len(stuck),
        "by_collector_type": by_collector_type,
        "oldest_stuck": min((e.updated_at for e in stuck), default=None),
    }


class Reconciler(PollingLoop):
    name = "reconciler"

    async def tick(self, now: datetime | None = None) -> dict[str, int]:
        now = now or utc_now()
        stats = await self.reconcile_executions(now)
        stats["runs_failed"] = await self.fail_stuck_runs(now)
        return stats

    async def reconcile_executions(self, now: datetime) -> dict[str, int]:
        stats = {"checked": 0, "fixed": 0, "failed": 0, "errors": 0}

        async with self.session_factory() as db:
            stuck = await get_stuck_executions(db, now, self.settings.stuck_timeout_minutes)
            candidates = [(e.id, e.updated_at) for e in stuck]

        stats["checked"] = len(candidates)
        if not candidates:
            logger.debug("no_stuck_executions")
            return stats

        for execution_id, stuck_since in candidates:
            try:
                async with self.session_factory() as db:
                    status = await reconcile_execution(db, execution_id, stuck_since, now)
                    await db.commit()
            except Exception as e:
                stats["errors"] += 1
                logger.bind(execution_id=str(execution_id), error=str(e)).error(
                    "stuck_execution_reconcile_failed"
                )
                continue

            if status == ExecutionStatus.COMPLETED:
                stats["fixed"] += 1
                logger.bind(execution_id=str(execution_id)).info("stuck_execution_completed")
            elif status == ExecutionStatus.FAILED:
                stats["failed"] += 1
                logger.bind(
                    execution_id=str(execution_id),
                    stuck_minutes=minutes_between(stuck_since, now),
                ).warning("stuck_execution_failed")

        return stats

    async def fail_stuck_runs(self, now: datetime) -> int:
        """Fail runs a dead worker left in processing."""
        cutoff = get_cutoff(minutes=self.settings.stuck_run_timeout_minutes, now=now)

        async with self.session_factory() as db:
            result = await db.execute(
                select(JobRun.id, JobRun.started_at, JobRun.run_metadata).where(
                    JobRun.status == RunStatus.PROCESSING,
                    JobRun.started_at < cutoff,
                )
            )
            stuck_runs = result.all()

        failed = 0
        for run_id, started_at, metadata in stuck_runs:
            stuck_minutes = minutes_between(started_at, now)
            try:
                async with self.session_factory() as db:
                    finished = await finish_run(
                        db,
                        run_id,
                        status=RunStatus.FAILED,
                        finished_at=now,
                        error_message=(
                            f"Run stuck in 'processing' status for {stuck_minutes} minutes. "
                            "Worker likely crashed."
                        ),
                        metadata={
                            **(metadata or {}),
                            "stuck_duration_minutes": stuck_minutes,
                            "cleanup_reason": STUCK_RUN_REASON,
                        },
                    )
                    await db.commit()
            except Exception as e:
                logger.bind(run_id=str(run_id), error=str(e)).error("stuck_run_reconcile_failed")
                continue

            if finished:
                failed += 1
                logger.bind(run_id=str(run_id), stuck_minutes=stuck_minutes).warning(
                    "stuck_run_failed"
                )

        return failed
