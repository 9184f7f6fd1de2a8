import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobengine.models.job_run import RunStatus
from jobengine.models.schedule import JobType


class ScheduleCreate(BaseModel):
    """Request body for creating a schedule."""

    owner_id: str
    brand_id: str
    job_type: JobType
    cron_expression: str
    timezone: str = "UTC"
    is_active: bool = True
    parameters: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = None
    # Explicit first fire time; computed from the cron expression when omitted
    next_run_at: datetime | None = None


class ScheduleUpdate(BaseModel):
    """Partial update of a schedule."""

    cron_expression: str | None = None
    timezone: str | None = None
    is_active: bool | None = None
    parameters: dict[str, Any] | None = None


class ScheduleOneOff(BaseModel):
    """Request body for a job that runs once at a given time."""

    owner_id: str
    brand_id: str
    job_type: JobType
    scheduled_for: datetime
    parameters: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = None


class FailureRetryRequest(BaseModel):
    """Request body for retrying recently failed work items of a brand."""

    owner_id: str
    brand_id: str
    lookback_minutes: int = Field(default=24 * 60, gt=0)


class ScheduleResponse(BaseModel):
    """Response model for a schedule."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: str
    brand_id: str
    job_type: JobType
    cron_expression: str
    timezone: str
    is_active: bool
    next_run_at: datetime | None
    last_run_at: datetime | None
    parameters: dict[str, Any]
    created_by: str | None


class JobRunResponse(BaseModel):
    """Response model for a job run."""

    id: uuid.UUID
    schedule_id: uuid.UUID
    owner_id: str
    brand_id: str
    job_type: JobType
    status: RunStatus
    scheduled_for: datetime
    started_at: datetime | None
    finished_at: datetime | None
    duration_seconds: float | None
    metrics: dict[str, Any] | None
    error_message: str | None
    metadata: dict[str, Any]


class EnqueuedRunResponse(BaseModel):
    """Response for endpoints that enqueue or schedule work."""

    message: str
    schedule_id: uuid.UUID
    run_id: uuid.UUID | None = None


class JobStatsResponse(BaseModel):
    """Response model for per-job-type run statistics."""

    job_type: JobType
    total_runs: int
    completed_runs: int
    failed_runs: int
    active_runs: int
    success_rate: float
    avg_duration_seconds: float | None
    last_run: datetime | None
    last_status: RunStatus | None


class StuckExecutionStatsResponse(BaseModel):
    """Response model for executions currently stuck in running."""

    total_stuck: int
    by_collector_type: dict[str, int]
    oldest_stuck: datetime | None


class LoopScheduleResponse(BaseModel):
    """Response model for a registered polling loop."""

    id: str
    task_id: str
    trigger: str
    next_fire_time: str | None
    last_fire_time: str | None
