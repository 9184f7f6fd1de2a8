"""
Worker loop: claim pending runs and dispatch them to collaborators.

Runs are claimed one at a time with a single conditional UPDATE; a lost
claim means another replica has the run and is skipped without a word.
Collection and scoring each run inside their own error boundary, so a
collection_and_scoring run whose collection blows up still gets scored.
Partial success completes the run with its errors attached; a run that
produced no metrics at all is failed.
"""

import time
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.config import CollectorsConfig, Settings, get_config
from jobengine.core.datetime_utils import get_cutoff, utc_now
from jobengine.core.logging import get_logger
from jobengine.jobs.base import PollingLoop, SessionFactory
from jobengine.models.job_run import JobRun, RunStatus
from jobengine.models.schedule import JobType, Schedule
from jobengine.schemas.collaborators import CollectionOptions, ScoringOptions
from jobengine.services.collaborators import (
    BaseCollectionService,
    BaseScoringService,
    get_collection_service,
    get_scoring_service,
)
from jobengine.services.collectors import resolve_collectors
from jobengine.services.runs import (
    claim_run,
    find_failed_work_items,
    finish_run,
    get_pending_run_ids,
    mark_run_failed,
)

logger = get_logger(__name__)

NO_FAILED_ITEMS_MESSAGE = "No failed work items found to retry"


class Worker(PollingLoop):
    name = "worker"

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        settings: Settings | None = None,
        collection_service: BaseCollectionService | None = None,
        scoring_service: BaseScoringService | None = None,
        collectors_config: CollectorsConfig | None = None,
    ) -> None:
        super().__init__(session_factory, settings)
        self.collection_service = collection_service or get_collection_service()
        self.scoring_service = scoring_service or get_scoring_service()
        self.collectors_config = collectors_config or get_config().collectors

    async def tick(self, now: datetime | None = None) -> dict[str, int]:
        async with self.session_factory() as db:
            run_ids = await get_pending_run_ids(db, self.settings.worker_batch_size)

        stats = {"pending": len(run_ids), "claimed": 0, "completed": 0, "failed": 0}

        for run_id in run_ids:
            try:
                status = await self.process_run(run_id)
            except Exception as e:
                stats["failed"] += 1
                logger.bind(run_id=str(run_id), error=str(e)).exception("job_run_processing_error")
                continue

            if status is None:
                continue
            stats["claimed"] += 1
            if status == RunStatus.COMPLETED:
                stats["completed"] += 1
            else:
                stats["failed"] += 1

        return stats

    async def process_run(self, run_id: uuid.UUID) -> RunStatus | None:
        """
        Claim and execute one run.

        Returns:
            The status the run was finished with, or None if the claim was lost
        """
        async with self.session_factory() as db:
            run = await claim_run(db, run_id, utc_now())
            if run is None:
                return None
            await db.commit()

            logger.bind(
                run_id=str(run_id),
                schedule_id=str(run.schedule_id),
                brand_id=run.brand_id,
                job_type=run.job_type.value,
            ).info("job_run_claimed")

            try:
                return await self.execute_run(db, run)
            except Exception as e:
                await db.rollback()
                message = str(e) or e.__class__.__name__
                logger.bind(run_id=str(run_id), error=message).exception("job_run_failed")
                await mark_run_failed(db, run_id, message, utc_now())
                await db.commit()
                return RunStatus.FAILED

    async def execute_run(self, db: AsyncSession, run: JobRun) -> RunStatus:
        schedule = await db.get(Schedule, run.schedule_id)
        if schedule is None:
            return await self._fail_fast(db, run, f"Schedule {run.schedule_id} not found")
        if not schedule.is_active:
            return await self._fail_fast(db, run, f"Schedule {run.schedule_id} is inactive")

        parameters = schedule.parameters or {}
        started = time.monotonic()
        metrics: dict[str, Any] = {}
        errors: list[dict[str, str]] = []
        metadata: dict[str, Any] = dict(run.run_metadata or {})

        if run.job_type.runs_collection:
            specific_work_ids = None

            if run.job_type == JobType.COLLECTION_RETRY:
                lookback_minutes = self._lookback_minutes(parameters)
                specific_work_ids = await find_failed_work_items(
                    db,
                    run.owner_id,
                    run.brand_id,
                    get_cutoff(minutes=lookback_minutes),
                )
                if not specific_work_ids:
                    logger.bind(
                        run_id=str(run.id),
                        brand_id=run.brand_id,
                        lookback_minutes=lookback_minutes,
                    ).info("retry_no_failed_work_items")
                    metadata["message"] = NO_FAILED_ITEMS_MESSAGE
                    metadata["duration_ms"] = _elapsed_ms(started)
                    return await self._finish(
                        db, run, schedule, RunStatus.COMPLETED, metadata=metadata
                    )
                metadata["retry_work_item_ids"] = specific_work_ids

            try:
                result = await self.collection_service.execute(
                    run.owner_id,
                    run.brand_id,
                    CollectionOptions(
                        collectors=resolve_collectors(parameters, self.collectors_config),
                        locale=parameters.get("locale"),
                        country=parameters.get("country"),
                        since=schedule.last_run_at,
                        specific_work_ids=specific_work_ids,
                        suppress_scoring=run.job_type == JobType.COLLECTION,
                    ),
                )
                metrics["collection"] = result.metrics()
                errors.extend(
                    {"operation": "collection", "error": err.error} for err in result.errors
                )
                logger.bind(
                    run_id=str(run.id),
                    provider=self.collection_service.provider_name,
                    retry=specific_work_ids is not None,
                    **result.metrics(),
                ).info("collection_completed")
            except Exception as e:
                logger.bind(
                    run_id=str(run.id),
                    provider=self.collection_service.provider_name,
                    error=str(e),
                ).error("collection_failed")
                errors.append({"operation": "collection", "error": str(e)})

        if run.job_type.runs_scoring:
            since = schedule.last_run_at
            if run.job_type == JobType.SCORING_RETRY:
                since = get_cutoff(minutes=self._lookback_minutes(parameters))

            try:
                result = await self.scoring_service.score(
                    run.brand_id,
                    run.owner_id,
                    ScoringOptions(
                        since=since,
                        position_limit=parameters.get("position_limit"),
                        sentiment_limit=parameters.get("sentiment_limit"),
                        parallel=bool(parameters.get("parallel", False)),
                    ),
                )
                metrics["scoring"] = result.metrics()
                errors.extend(
                    {"operation": err.operation or "scoring", "error": err.error}
                    for err in result.errors
                )
                logger.bind(
                    run_id=str(run.id),
                    provider=self.scoring_service.provider_name,
                    **result.metrics(),
                ).info("scoring_completed")
            except Exception as e:
                logger.bind(
                    run_id=str(run.id),
                    provider=self.scoring_service.provider_name,
                    error=str(e),
                ).error("scoring_failed")
                errors.append({"operation": "scoring", "error": str(e)})

        metadata["duration_ms"] = _elapsed_ms(started)
        if errors:
            metadata["errors"] = errors

        status = RunStatus.COMPLETED if metrics else RunStatus.FAILED
        error_message = "; ".join(f"{e['operation']}: {e['error']}" for e in errors) or None

        return await self._finish(
            db,
            run,
            schedule,
            status,
            metrics=metrics,
            error_message=error_message,
            metadata=metadata,
        )

    async def _finish(
        self,
        db: AsyncSession,
        run: JobRun,
        schedule: Schedule,
        status: RunStatus,
        metrics: dict[str, Any] | None = None,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RunStatus:
        finished_at = utc_now()

        schedule.last_run_at = finished_at
        if schedule.is_one_off:
            schedule.is_active = False

        await finish_run(
            db,
            run.id,
            status=status,
            finished_at=finished_at,
            metrics=metrics,
            error_message=error_message,
            metadata=metadata,
        )
        await db.commit()

        logger.bind(
            run_id=str(run.id),
            schedule_id=str(schedule.id),
            status=status.value,
            duration_ms=(metadata or {}).get("duration_ms"),
            errors=len((metadata or {}).get("errors", [])),
        ).info("job_run_finished")
        return status

    async def _fail_fast(self, db: AsyncSession, run: JobRun, message: str) -> RunStatus:
        logger.bind(run_id=str(run.id), reason=message).warning("job_run_rejected")
        await mark_run_failed(db, run.id, message, utc_now())
        await db.commit()
        return RunStatus.FAILED

    def _lookback_minutes(self, parameters: dict[str, Any]) -> int:
        return int(parameters.get("lookback_minutes") or self.settings.retry_lookback_minutes)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
