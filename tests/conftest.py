"""
Pytest configuration and fixtures for jobengine tests.

Provides:
- Async test database with SQLite (one file per test, so every session
  gets its own connection like replicas do against Postgres)
- Test client for API testing
- Factory fixtures for creating test data
- Fake collaborators
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jobengine.config import CollectorsConfig, Settings, get_settings
from jobengine.core.database import get_db
from jobengine.core.datetime_utils import utc_now
from jobengine.main import app
from jobengine.models import Base
from jobengine.models.execution import CollectorResult, Execution, ExecutionStatus
from jobengine.models.job_run import JobRun, RunStatus
from jobengine.models.schedule import JobType, Schedule
from jobengine.schemas.collaborators import CollectionResult, ScoringResult
from jobengine.services.collaborators import BaseCollectionService, BaseScoringService


# Override settings for testing
class TestSettings(Settings):
    database_url: str = "sqlite+aiosqlite://"
    debug: bool = True
    loops_enabled: bool = False
    collection_service_url: str = ""
    scoring_service_url: str = ""


@pytest.fixture
def test_settings() -> TestSettings:
    return TestSettings()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create async test database engine backed by a temporary file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'jobengine-test.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory handed to the loops under test."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_factory, test_settings) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database override."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def override_get_settings():
        return test_settings

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def fetch(session_factory):
    """Load a fresh copy of a row, bypassing any test session's identity map."""

    async def _fetch(model: type, row_id: uuid.UUID) -> Any:
        async with session_factory() as session:
            return await session.get(model, row_id)

    return _fetch


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest.fixture
def schedule_factory(session_factory):
    """Factory for creating committed schedules."""

    async def _create_schedule(
        job_type: JobType = JobType.COLLECTION,
        cron_expression: str = "*/5 * * * *",
        timezone: str = "UTC",
        is_active: bool = True,
        next_run_at: datetime | None = None,
        last_run_at: datetime | None = None,
        parameters: dict[str, Any] | None = None,
        owner_id: str = "owner-1",
        brand_id: str = "brand-1",
    ) -> Schedule:
        schedule = Schedule(
            owner_id=owner_id,
            brand_id=brand_id,
            job_type=job_type,
            cron_expression=cron_expression,
            timezone=timezone,
            is_active=is_active,
            next_run_at=next_run_at,
            last_run_at=last_run_at,
            parameters=parameters or {},
        )
        async with session_factory() as session:
            session.add(schedule)
            await session.commit()
        return schedule

    return _create_schedule


@pytest.fixture
def run_factory(session_factory):
    """Factory for creating committed job runs."""

    async def _create_run(
        schedule: Schedule,
        status: RunStatus = RunStatus.PENDING,
        scheduled_for: datetime | None = None,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> JobRun:
        run = JobRun(
            schedule_id=schedule.id,
            owner_id=schedule.owner_id,
            brand_id=schedule.brand_id,
            job_type=schedule.job_type,
            status=status,
            scheduled_for=scheduled_for or utc_now(),
            started_at=started_at,
            finished_at=finished_at,
            run_metadata=metadata if metadata is not None else {"trigger": "scheduler"},
        )
        async with session_factory() as session:
            session.add(run)
            await session.commit()
        return run

    return _create_run


@pytest.fixture
def execution_factory(session_factory):
    """Factory for creating collaborator execution rows."""

    async def _create_execution(
        status: ExecutionStatus = ExecutionStatus.RUNNING,
        work_item_id: str | None = None,
        collector_type: str | None = "chatgpt",
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        owner_id: str = "owner-1",
        brand_id: str = "brand-1",
        payload: str | None = None,
    ) -> Execution:
        now = utc_now()
        execution = Execution(
            owner_id=owner_id,
            brand_id=brand_id,
            work_item_id=work_item_id,
            collector_type=collector_type,
            status=status,
            created_at=created_at or now,
            updated_at=updated_at or now,
        )
        async with session_factory() as session:
            session.add(execution)
            await session.flush()
            if payload is not None:
                session.add(
                    CollectorResult(
                        execution_id=execution.id,
                        collector_type=collector_type,
                        payload=payload,
                    )
                )
            await session.commit()
        return execution

    return _create_execution


# ============================================================================
# Collaborator Fakes
# ============================================================================


@pytest.fixture
def collection_service():
    """Collection collaborator fake returning a successful result."""
    mock = AsyncMock(spec=BaseCollectionService)
    mock.execute.return_value = CollectionResult(
        items_processed=4,
        results_produced=8,
        succeeded=8,
        failed=0,
    )
    return mock


@pytest.fixture
def scoring_service():
    """Scoring collaborator fake returning a successful result."""
    mock = AsyncMock(spec=BaseScoringService)
    mock.score.return_value = ScoringResult(
        positions_processed=3,
        sentiments_processed=2,
        competitor_sentiments_processed=1,
        citations_processed=5,
    )
    return mock


@pytest.fixture
def collectors_config() -> CollectorsConfig:
    return CollectorsConfig({})


@pytest.fixture
def minutes_ago():
    """Naive UTC instant a number of minutes in the past."""

    def _minutes_ago(minutes: int) -> datetime:
        return utc_now() - timedelta(minutes=minutes)

    return _minutes_ago
