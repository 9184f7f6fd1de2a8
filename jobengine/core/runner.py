"""
APScheduler driver for the polling loops.

Runs the Scheduler, Worker and Reconciler loops on interval triggers, either
in the FastAPI process (lifespan) or in the foreground via ``jobengine run``.

Loops:
- scheduler_loop: enqueues runs for due schedules (SCHEDULER_POLL_SECONDS)
- worker_loop: claims and executes pending runs (WORKER_POLL_SECONDS)
- reconciler_loop: fixes stuck executions and runs (RECONCILER_INTERVAL_SECONDS)
"""

import asyncio
from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.interval import IntervalTrigger

from jobengine.config import get_settings
from jobengine.core.logging import get_logger
from jobengine.jobs.base import PollingLoop
from jobengine.jobs.reconciler import Reconciler
from jobengine.jobs.scheduler import Scheduler
from jobengine.jobs.worker import Worker

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncScheduler | None = None

# One instance per loop so each busy flag lives for the whole process
_loops: dict[str, PollingLoop] = {}


def get_loop(name: str) -> PollingLoop:
    """Get (or lazily create) the process-wide instance of a loop."""
    if name not in _loops:
        factories: dict[str, type[PollingLoop]] = {
            "scheduler": Scheduler,
            "worker": Worker,
            "reconciler": Reconciler,
        }
        _loops[name] = factories[name]()
    return _loops[name]


def reset_loops() -> None:
    """Drop the loop instances. Useful for testing."""
    _loops.clear()


async def scheduler_loop() -> None:
    """Enqueue runs for due schedules."""
    await get_loop("scheduler").run_tick()


async def worker_loop() -> None:
    """Claim and execute pending runs."""
    await get_loop("worker").run_tick()


async def reconciler_loop() -> None:
    """Correct executions and runs stuck past their timeout."""
    await get_loop("reconciler").run_tick()


async def start_loops() -> AsyncScheduler:
    """Register the three loops and start processing in the background."""
    global scheduler

    settings = get_settings()

    # Loop schedules are rebuilt from settings on every start
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    scheduler.subscribe(_on_job_released, {JobReleased})

    await scheduler.add_schedule(
        scheduler_loop,
        IntervalTrigger(seconds=settings.scheduler_poll_seconds),
        id="scheduler_loop",
        conflict_policy=ConflictPolicy.replace,
    )
    await scheduler.add_schedule(
        worker_loop,
        IntervalTrigger(seconds=settings.worker_poll_seconds),
        id="worker_loop",
        conflict_policy=ConflictPolicy.replace,
    )
    await scheduler.add_schedule(
        reconciler_loop,
        IntervalTrigger(seconds=settings.reconciler_interval_seconds),
        id="reconciler_loop",
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.start_in_background()

    logger.bind(
        loops=["scheduler_loop", "worker_loop", "reconciler_loop"],
        scheduler_poll_seconds=settings.scheduler_poll_seconds,
        worker_poll_seconds=settings.worker_poll_seconds,
        reconciler_interval_seconds=settings.reconciler_interval_seconds,
    ).info("loops_started")

    return scheduler


async def _on_job_released(event: Any) -> None:
    """Log loop jobs that APScheduler saw fail."""
    if isinstance(event, JobReleased) and event.outcome != JobOutcome.success:
        exception = getattr(event, "exception", None)
        logger.bind(
            schedule_id=event.schedule_id or "unknown",
            outcome=event.outcome.name,
            error=str(exception) if exception else None,
        ).error("loop_job_failed")


async def stop_loops() -> None:
    """Gracefully stop the loops."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("loops_stopped")
        scheduler = None


async def run_loops_forever() -> None:
    """Run the loops in the foreground until cancelled."""
    await start_loops()
    try:
        await asyncio.Event().wait()
    finally:
        await stop_loops()


async def get_loop_schedules() -> list[dict[str, Any]]:
    """Get the registered loop schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
