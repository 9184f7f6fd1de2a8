"""Job run queue rows."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Enum, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from jobengine.models.base import Base, TimestampMixin
from jobengine.models.schedule import JobType, job_type_enum


class RunStatus(str, enum.Enum):
    """Run lifecycle: pending -> processing -> completed | failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_RUN_STATUSES = (RunStatus.PENDING, RunStatus.PROCESSING)
TERMINAL_RUN_STATUSES = (RunStatus.COMPLETED, RunStatus.FAILED)

_ACTIVE_RUN_WHERE = text("status IN ('pending', 'processing')")


class JobRun(Base, TimestampMixin):
    """One dispatch of a schedule.

    Rows are append-only: a run is created pending by the Scheduler, moved
    to processing only by the Worker's claim, and finished by the Worker
    (or failed by the Reconciler when its worker died). Nothing deletes runs.
    """

    __tablename__ = "job_runs"
    __table_args__ = (
        UniqueConstraint("schedule_id", "scheduled_for", name="uq_job_runs_schedule_scheduled_for"),
        # At most one non-terminal run per schedule
        Index(
            "uq_job_runs_active_schedule",
            "schedule_id",
            unique=True,
            postgresql_where=_ACTIVE_RUN_WHERE,
            sqlite_where=_ACTIVE_RUN_WHERE,
        ),
        Index("ix_job_runs_status_scheduled_for", "status", "scheduled_for"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    schedule_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("schedules.id"), index=True)
    owner_id: Mapped[str] = mapped_column(String(64))
    brand_id: Mapped[str] = mapped_column(String(64))
    job_type: Mapped[JobType] = mapped_column(job_type_enum)

    status: Mapped[RunStatus] = mapped_column(
        Enum(
            RunStatus,
            values_callable=lambda e: [x.value for x in e],
            name="runstatus",
            native_enum=False,
            length=16,
        ),
        default=RunStatus.PENDING,
    )

    scheduled_for: Mapped[datetime]
    started_at: Mapped[datetime | None]
    finished_at: Mapped[datetime | None]

    metrics: Mapped[dict[str, Any] | None]
    error_message: Mapped[str | None] = mapped_column(Text)
    # "metadata" is reserved on declarative classes
    run_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def __repr__(self) -> str:
        return f"<JobRun {self.id} schedule={self.schedule_id} status={self.status.value}>"
