"""
jobengine CLI - Command line interface for running the loops.

Usage:
    jobengine --help              Show all commands
    jobengine scheduler-tick      Enqueue runs for due schedules once
    jobengine worker-tick         Claim and execute pending runs once
    jobengine reconcile           Fix stuck executions and runs once
    jobengine stuck-stats         Show executions stuck in running
    jobengine run                 Run all loops in the foreground
"""

import asyncio

import typer

app = typer.Typer(
    name="jobengine",
    help="jobengine CLI - Scheduler, worker and reconciler runner",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_skipped(message: str) -> None:
    """Print a skipped step message."""
    typer.echo(f"  ⏭️ {message}")


def _print_stats(title: str, stats: dict[str, int] | None) -> None:
    if stats is None:
        _print_skipped(f"{title}: tick skipped or failed (see logs)")
        return
    summary = ", ".join(f"{key}={value}" for key, value in stats.items())
    _print_success(f"{title}: {summary}")


@app.command()
def scheduler_tick():
    """Run one Scheduler tick (enqueue runs for due schedules)."""
    from jobengine.core.logging import setup_logging
    from jobengine.jobs.scheduler import Scheduler

    setup_logging()
    _print_stats("Scheduler", asyncio.run(Scheduler().run_tick()))


@app.command()
def worker_tick():
    """Run one Worker tick (claim and execute pending runs)."""
    from jobengine.core.logging import setup_logging
    from jobengine.jobs.worker import Worker

    setup_logging()
    _print_stats("Worker", asyncio.run(Worker().run_tick()))


@app.command()
def reconcile():
    """Run one Reconciler sweep (stuck executions and runs)."""
    from jobengine.core.logging import setup_logging
    from jobengine.jobs.reconciler import Reconciler

    setup_logging()
    _print_stats("Reconciler", asyncio.run(Reconciler().run_tick()))


@app.command()
def stuck_stats():
    """Show executions stuck in running past the timeout."""
    from jobengine.config import get_settings
    from jobengine.core.database import AsyncSessionLocal
    from jobengine.core.datetime_utils import utc_now
    from jobengine.jobs.reconciler import get_stuck_execution_stats

    async def run():
        async with AsyncSessionLocal() as db:
            return await get_stuck_execution_stats(
                db, utc_now(), get_settings().stuck_timeout_minutes
            )

    stats = asyncio.run(run())

    typer.echo(f"\nStuck executions: {stats['total_stuck']}")
    for collector_type, count in sorted(stats["by_collector_type"].items()):
        typer.echo(f"  {collector_type}: {count}")
    if stats["oldest_stuck"]:
        typer.echo(f"Oldest stuck since: {stats['oldest_stuck'].isoformat()}")


@app.command()
def run():
    """Run the Scheduler, Worker and Reconciler loops until interrupted."""
    from jobengine.core.logging import setup_logging
    from jobengine.core.runner import run_loops_forever

    setup_logging()
    try:
        asyncio.run(run_loops_forever())
    except KeyboardInterrupt:
        typer.echo("\nStopped.")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server (loops run in-process when LOOPS_ENABLED)."""
    import subprocess

    cmd = ["uvicorn", "jobengine.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
