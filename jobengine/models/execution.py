"""Collaborator-owned execution and result rows.

The collection service writes these; the engine reads them to find work
items worth retrying and corrects the status of executions the service
abandoned mid-flight. Payloads are never interpreted here.
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Enum, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from jobengine.models.base import Base, TimestampMixin


class ExecutionStatus(str, enum.Enum):
    """Execution status as written by the collection service."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Execution(Base, TimestampMixin):
    """One work item executed against one collector."""

    __tablename__ = "executions"
    __table_args__ = (Index("ix_executions_status_updated_at", "status", "updated_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(64))
    brand_id: Mapped[str] = mapped_column(String(64), index=True)
    work_item_id: Mapped[str | None] = mapped_column(String(64))
    collector_type: Mapped[str | None] = mapped_column(String(64))

    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(
            ExecutionStatus,
            values_callable=lambda e: [x.value for x in e],
            name="executionstatus",
            native_enum=False,
            length=16,
        ),
        default=ExecutionStatus.PENDING,
    )
    error_message: Mapped[str | None] = mapped_column(Text)
    error_metadata: Mapped[dict[str, Any] | None]
    updated_at: Mapped[datetime] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<Execution {self.id} {self.collector_type} status={self.status.value}>"


class CollectorResult(Base, TimestampMixin):
    """Raw answer captured for an execution."""

    __tablename__ = "collector_results"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    execution_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("executions.id", ondelete="CASCADE"), index=True
    )
    collector_type: Mapped[str | None] = mapped_column(String(64))
    payload: Mapped[str | None] = mapped_column(Text)
