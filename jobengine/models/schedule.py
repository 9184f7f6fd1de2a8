"""Recurring job schedules."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Enum, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from jobengine.models.base import Base, TimestampMixin


class JobType(str, enum.Enum):
    """Kinds of work a schedule dispatches."""

    COLLECTION = "collection"
    SCORING = "scoring"
    COLLECTION_AND_SCORING = "collection_and_scoring"
    COLLECTION_RETRY = "collection_retry"
    SCORING_RETRY = "scoring_retry"

    @property
    def runs_collection(self) -> bool:
        return self in (
            JobType.COLLECTION,
            JobType.COLLECTION_AND_SCORING,
            JobType.COLLECTION_RETRY,
        )

    @property
    def runs_scoring(self) -> bool:
        return self in (
            JobType.SCORING,
            JobType.COLLECTION_AND_SCORING,
            JobType.SCORING_RETRY,
        )


job_type_enum = Enum(
    JobType,
    values_callable=lambda e: [x.value for x in e],
    name="jobtype",
    native_enum=False,
    length=32,
)


class Schedule(Base, TimestampMixin):
    """Durable description of recurring work for one brand.

    The Scheduler owns next_run_at, the Worker owns last_run_at. Setting
    is_active to False freezes the schedule: nothing new is enqueued and
    runs already queued for it are failed when claimed.
    """

    __tablename__ = "schedules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    brand_id: Mapped[str] = mapped_column(String(64), index=True)
    job_type: Mapped[JobType] = mapped_column(job_type_enum)

    cron_expression: Mapped[str] = mapped_column(String(120))
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    is_active: Mapped[bool] = mapped_column(default=True, index=True)

    next_run_at: Mapped[datetime | None] = mapped_column(index=True)
    last_run_at: Mapped[datetime | None]

    # Opaque to the engine except for the keys the Worker forwards
    parameters: Mapped[dict[str, Any]] = mapped_column(default=dict)

    created_by: Mapped[str | None] = mapped_column(String(255))
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    @property
    def is_one_off(self) -> bool:
        return bool((self.parameters or {}).get("one_off"))

    def __repr__(self) -> str:
        return f"<Schedule {self.id} {self.job_type.value} '{self.cron_expression}' active={self.is_active}>"
