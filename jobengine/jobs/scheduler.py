"""
Scheduler loop: turn due schedules into pending runs.

Each due schedule is handled in its own transaction: the pending run and
the advanced next_run_at are committed together, so a crash between the
two writes cannot double-enqueue. A schedule whose cron no longer parses
still gets its run, but keeps its stale next_run_at; the unique
(schedule_id, scheduled_for) constraint then rejects any repeat for the
same slot.
"""

import uuid
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from jobengine.core.cron import CronError, next_fire_time, reference_for
from jobengine.core.datetime_utils import utc_now
from jobengine.core.logging import get_logger
from jobengine.jobs.base import PollingLoop
from jobengine.models.schedule import Schedule
from jobengine.services.schedules import RunAlreadyActiveError, enqueue_run, get_due_schedules

logger = get_logger(__name__)


class Scheduler(PollingLoop):
    name = "scheduler"

    async def tick(self, now: datetime | None = None) -> dict[str, int]:
        now = now or utc_now()

        async with self.session_factory() as db:
            due = await get_due_schedules(db, now, self.settings.scheduler_batch_size)
            due_ids = [schedule.id for schedule in due]

        stats = {"due": len(due_ids), "enqueued": 0, "skipped": 0, "errors": 0}

        for schedule_id in due_ids:
            try:
                enqueued = await self.process_schedule(schedule_id, now)
            except Exception as e:
                stats["errors"] += 1
                logger.bind(schedule_id=str(schedule_id), error=str(e)).error(
                    "schedule_enqueue_failed"
                )
                continue

            if enqueued:
                stats["enqueued"] += 1
            else:
                stats["skipped"] += 1

        return stats

    async def process_schedule(self, schedule_id: uuid.UUID, now: datetime) -> bool:
        """
        Enqueue one run for a due schedule and advance its next_run_at.

        Returns:
            True if a run was enqueued, False if the schedule was skipped
        """
        async with self.session_factory() as db:
            schedule = await db.get(Schedule, schedule_id)
            if schedule is None or not schedule.is_active:
                return False

            scheduled_for = schedule.next_run_at or now

            try:
                run = await enqueue_run(db, schedule, scheduled_for, trigger="scheduler")
            except RunAlreadyActiveError:
                logger.bind(schedule_id=str(schedule_id)).debug("schedule_skipped_active_run")
                return False
            except IntegrityError:
                await db.rollback()
                logger.bind(
                    schedule_id=str(schedule_id),
                    scheduled_for=str(scheduled_for),
                ).warning("schedule_enqueue_conflict")
                return False

            try:
                schedule.next_run_at = next_fire_time(
                    schedule.cron_expression,
                    schedule.timezone,
                    reference_for(schedule, now),
                )
            except CronError as e:
                logger.bind(
                    schedule_id=str(schedule_id),
                    cron=schedule.cron_expression,
                    timezone=schedule.timezone,
                    error=str(e),
                ).warning("schedule_next_run_failed")

            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.bind(
                    schedule_id=str(schedule_id),
                    scheduled_for=str(scheduled_for),
                ).warning("schedule_enqueue_conflict")
                return False

            logger.bind(
                schedule_id=str(schedule_id),
                run_id=str(run.id),
                job_type=schedule.job_type.value,
                scheduled_for=str(scheduled_for),
                next_run_at=str(schedule.next_run_at),
            ).info("job_run_enqueued")
            return True
