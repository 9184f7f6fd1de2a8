"""Tests for the Worker loop."""

import uuid

import pytest

from jobengine.jobs.worker import NO_FAILED_ITEMS_MESSAGE, Worker
from jobengine.models.execution import ExecutionStatus
from jobengine.models.job_run import JobRun, RunStatus
from jobengine.models.schedule import JobType, Schedule
from jobengine.schemas.collaborators import CollaboratorError, CollectionResult
from jobengine.services.collaborators import NullCollectionService, NullScoringService

pytestmark = pytest.mark.asyncio


@pytest.fixture
def worker(session_factory, test_settings, collection_service, scoring_service, collectors_config):
    return Worker(
        session_factory=session_factory,
        settings=test_settings,
        collection_service=collection_service,
        scoring_service=scoring_service,
        collectors_config=collectors_config,
    )


class TestWorkerCollection:
    """Collection runs."""

    async def test_collection_run_completes(
        self, worker, schedule_factory, run_factory, collection_service, scoring_service, fetch
    ):
        schedule = await schedule_factory(
            job_type=JobType.COLLECTION,
            parameters={"collectors": ["chatgpt"], "locale": "en-US", "country": "US"},
        )
        run = await run_factory(schedule)

        stats = await worker.tick()

        assert stats == {"pending": 1, "claimed": 1, "completed": 1, "failed": 0}

        owner_id, brand_id, options = collection_service.execute.call_args.args
        assert (owner_id, brand_id) == ("owner-1", "brand-1")
        assert options.collectors == ["chatgpt"]
        assert options.locale == "en-US"
        assert options.country == "US"
        assert options.suppress_scoring is True
        assert options.specific_work_ids is None
        scoring_service.score.assert_not_called()

        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.started_at is not None
        assert stored.finished_at is not None
        assert stored.metrics["collection"]["results_produced"] == 8
        assert stored.error_message is None
        assert stored.run_metadata["trigger"] == "scheduler"
        assert "duration_ms" in stored.run_metadata

        assert (await fetch(Schedule, schedule.id)).last_run_at is not None

    async def test_since_is_last_run(self, worker, schedule_factory, run_factory, collection_service, minutes_ago):
        last_run = minutes_ago(60)
        schedule = await schedule_factory(last_run_at=last_run)
        await run_factory(schedule)

        await worker.tick()

        options = collection_service.execute.call_args.args[2]
        assert options.since == last_run

    async def test_collection_failure_fails_run(
        self, worker, schedule_factory, run_factory, collection_service, fetch
    ):
        collection_service.execute.side_effect = RuntimeError("collector down")
        schedule = await schedule_factory(job_type=JobType.COLLECTION)
        run = await run_factory(schedule)

        stats = await worker.tick()

        assert stats["failed"] == 1
        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.FAILED
        assert stored.error_message == "collection: collector down"
        assert stored.run_metadata["errors"] == [
            {"operation": "collection", "error": "collector down"}
        ]

    async def test_reported_errors_keep_run_completed(
        self, worker, schedule_factory, run_factory, collection_service, fetch
    ):
        collection_service.execute.return_value = CollectionResult(
            items_processed=2,
            succeeded=1,
            failed=1,
            errors=[CollaboratorError(error="timeout on work item", work_item_id="w1")],
        )
        schedule = await schedule_factory()
        run = await run_factory(schedule)

        await worker.tick()

        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.error_message == "collection: timeout on work item"


class TestWorkerScoring:
    """Scoring and combined runs."""

    async def test_collection_error_does_not_block_scoring(
        self, worker, schedule_factory, run_factory, collection_service, scoring_service, fetch
    ):
        collection_service.execute.side_effect = RuntimeError("collector down")
        schedule = await schedule_factory(job_type=JobType.COLLECTION_AND_SCORING)
        run = await run_factory(schedule)

        await worker.tick()

        scoring_service.score.assert_awaited_once()
        options = collection_service.execute.call_args.args[2]
        assert options.suppress_scoring is False

        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.COMPLETED
        assert "collection" not in stored.metrics
        assert stored.metrics["scoring"]["positions_processed"] == 3
        assert stored.error_message == "collection: collector down"

    async def test_scoring_options(self, worker, schedule_factory, run_factory, scoring_service, minutes_ago):
        last_run = minutes_ago(30)
        schedule = await schedule_factory(
            job_type=JobType.SCORING,
            last_run_at=last_run,
            parameters={"position_limit": 10, "sentiment_limit": 5, "parallel": True},
        )
        await run_factory(schedule)

        await worker.tick()

        brand_id, owner_id, options = scoring_service.score.call_args.args
        assert (brand_id, owner_id) == ("brand-1", "owner-1")
        assert options.since == last_run
        assert options.position_limit == 10
        assert options.sentiment_limit == 5
        assert options.parallel is True

    async def test_scoring_retry_uses_lookback_window(
        self, worker, schedule_factory, run_factory, scoring_service, minutes_ago
    ):
        schedule = await schedule_factory(
            job_type=JobType.SCORING_RETRY,
            last_run_at=minutes_ago(5),
            parameters={"lookback_minutes": 120},
        )
        await run_factory(schedule)

        await worker.tick()

        options = scoring_service.score.call_args.args[2]
        assert minutes_ago(125) < options.since < minutes_ago(115)


class TestWorkerRetry:
    """collection_retry runs."""

    async def test_retry_targets_failed_work_items(
        self, worker, schedule_factory, run_factory, execution_factory, collection_service, minutes_ago, fetch
    ):
        await execution_factory(status=ExecutionStatus.FAILED, work_item_id="w1", created_at=minutes_ago(30))
        await execution_factory(status=ExecutionStatus.FAILED, work_item_id="w2", created_at=minutes_ago(20))
        await execution_factory(status=ExecutionStatus.FAILED, work_item_id="w1", created_at=minutes_ago(10))
        # Outside the window, another brand, and not failed
        await execution_factory(status=ExecutionStatus.FAILED, work_item_id="w3", created_at=minutes_ago(120))
        await execution_factory(
            status=ExecutionStatus.FAILED, work_item_id="w4", created_at=minutes_ago(10), brand_id="brand-2"
        )
        await execution_factory(status=ExecutionStatus.COMPLETED, work_item_id="w5", created_at=minutes_ago(10))

        schedule = await schedule_factory(job_type=JobType.COLLECTION_RETRY)
        run = await run_factory(schedule)

        await worker.tick()

        options = collection_service.execute.call_args.args[2]
        assert options.specific_work_ids == ["w1", "w2"]
        assert options.suppress_scoring is False

        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.run_metadata["retry_work_item_ids"] == ["w1", "w2"]

    async def test_retry_without_failures_completes_immediately(
        self, worker, schedule_factory, run_factory, collection_service, fetch
    ):
        schedule = await schedule_factory(job_type=JobType.COLLECTION_RETRY)
        run = await run_factory(schedule)

        stats = await worker.tick()

        assert stats["completed"] == 1
        collection_service.execute.assert_not_called()
        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.run_metadata["message"] == NO_FAILED_ITEMS_MESSAGE
        assert (await fetch(Schedule, schedule.id)).last_run_at is not None


class TestWorkerRejections:
    """Runs that cannot be executed."""

    async def test_inactive_schedule_fails_run(
        self, worker, schedule_factory, run_factory, collection_service, fetch
    ):
        schedule = await schedule_factory(is_active=False)
        run = await run_factory(schedule)

        await worker.tick()

        collection_service.execute.assert_not_called()
        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.FAILED
        assert stored.error_message == f"Schedule {schedule.id} is inactive"

    async def test_missing_schedule_fails_run(self, worker, run_factory, collection_service, fetch):
        ghost = Schedule(
            id=uuid.uuid4(),
            owner_id="owner-1",
            brand_id="brand-1",
            job_type=JobType.COLLECTION,
            cron_expression="*/5 * * * *",
        )
        run = await run_factory(ghost)

        await worker.tick()

        collection_service.execute.assert_not_called()
        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.FAILED
        assert stored.error_message == f"Schedule {ghost.id} not found"

    async def test_lost_claim_returns_none(self, worker, schedule_factory, run_factory, collection_service):
        schedule = await schedule_factory()
        run = await run_factory(schedule, status=RunStatus.PROCESSING)

        assert await worker.process_run(run.id) is None
        collection_service.execute.assert_not_called()


class TestWorkerLifecycle:
    async def test_one_off_schedule_is_deactivated(self, worker, schedule_factory, run_factory, fetch):
        schedule = await schedule_factory(cron_expression="0 0 1 1 *", parameters={"one_off": True})
        await run_factory(schedule)

        await worker.tick()

        stored = await fetch(Schedule, schedule.id)
        assert stored.is_active is False
        assert stored.last_run_at is not None

    async def test_recurring_schedule_stays_active(self, worker, schedule_factory, run_factory, fetch):
        schedule = await schedule_factory()
        await run_factory(schedule)

        await worker.tick()

        assert (await fetch(Schedule, schedule.id)).is_active is True

    async def test_unexpected_error_fails_run_and_batch_continues(
        self, worker, schedule_factory, run_factory, minutes_ago, fetch, monkeypatch
    ):
        first = await run_factory(await schedule_factory(), scheduled_for=minutes_ago(10))
        second = await run_factory(await schedule_factory(), scheduled_for=minutes_ago(5))

        original = worker.execute_run

        async def flaky_execute_run(db, run):
            if run.id == first.id:
                raise RuntimeError("boom")
            return await original(db, run)

        monkeypatch.setattr(worker, "execute_run", flaky_execute_run)

        stats = await worker.tick()

        assert stats == {"pending": 2, "claimed": 2, "completed": 1, "failed": 1}
        failed = await fetch(JobRun, first.id)
        assert failed.status == RunStatus.FAILED
        assert failed.error_message == "boom"
        assert (await fetch(JobRun, second.id)).status == RunStatus.COMPLETED

    async def test_pending_runs_processed_oldest_first(
        self, worker, schedule_factory, run_factory, collection_service, minutes_ago
    ):
        newer = await schedule_factory(brand_id="brand-new")
        older = await schedule_factory(brand_id="brand-old")
        await run_factory(newer, scheduled_for=minutes_ago(1))
        await run_factory(older, scheduled_for=minutes_ago(10))

        await worker.tick()

        brands = [call.args[1] for call in collection_service.execute.call_args_list]
        assert brands == ["brand-old", "brand-new"]


class TestWorkerUnconfiguredCollaborators:
    """Runs dispatched while no collaborator URL is configured."""

    @pytest.fixture
    def unconfigured_worker(self, session_factory, test_settings, collectors_config):
        return Worker(
            session_factory=session_factory,
            settings=test_settings,
            collection_service=NullCollectionService(),
            scoring_service=NullScoringService(),
            collectors_config=collectors_config,
        )

    async def test_collection_run_fails(self, unconfigured_worker, schedule_factory, run_factory, fetch):
        run = await run_factory(await schedule_factory(job_type=JobType.COLLECTION))

        stats = await unconfigured_worker.tick()

        assert stats == {"pending": 1, "claimed": 1, "completed": 0, "failed": 1}
        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.FAILED
        assert stored.metrics == {}
        assert stored.error_message == "collection: Collection service not configured"

    async def test_combined_run_reports_both_operations(
        self, unconfigured_worker, schedule_factory, run_factory, fetch
    ):
        run = await run_factory(await schedule_factory(job_type=JobType.COLLECTION_AND_SCORING))

        await unconfigured_worker.tick()

        stored = await fetch(JobRun, run.id)
        assert stored.status == RunStatus.FAILED
        assert stored.error_message == (
            "collection: Collection service not configured; "
            "scoring: Scoring service not configured"
        )
