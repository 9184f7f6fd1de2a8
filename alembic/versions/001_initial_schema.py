"""Initial schema: schedules, job_runs, executions, collector_results

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JOB_TYPES = (
    "collection",
    "scoring",
    "collection_and_scoring",
    "collection_retry",
    "scoring_retry",
)
RUN_STATUSES = ("pending", "processing", "completed", "failed")
EXECUTION_STATUSES = ("pending", "running", "completed", "failed")

ACTIVE_RUN_WHERE = sa.text("status IN ('pending', 'processing')")


def upgrade() -> None:
    op.create_table(
        "schedules",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("brand_id", sa.String(64), nullable=False),
        sa.Column(
            "job_type",
            sa.Enum(*JOB_TYPES, name="jobtype", native_enum=False, length=32),
            nullable=False,
        ),
        sa.Column("cron_expression", sa.String(120), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("next_run_at", sa.DateTime(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(), nullable=True),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_schedules_owner_id", "schedules", ["owner_id"])
    op.create_index("ix_schedules_brand_id", "schedules", ["brand_id"])
    op.create_index("ix_schedules_is_active", "schedules", ["is_active"])
    op.create_index("ix_schedules_next_run_at", "schedules", ["next_run_at"])

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("schedule_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("brand_id", sa.String(64), nullable=False),
        sa.Column(
            "job_type",
            sa.Enum(*JOB_TYPES, name="jobtype", native_enum=False, length=32),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(*RUN_STATUSES, name="runstatus", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("scheduled_for", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("metrics", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["schedule_id"], ["schedules.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "schedule_id", "scheduled_for", name="uq_job_runs_schedule_scheduled_for"
        ),
    )
    op.create_index("ix_job_runs_schedule_id", "job_runs", ["schedule_id"])
    op.create_index("ix_job_runs_status_scheduled_for", "job_runs", ["status", "scheduled_for"])
    # At most one pending/processing run per schedule
    op.create_index(
        "uq_job_runs_active_schedule",
        "job_runs",
        ["schedule_id"],
        unique=True,
        postgresql_where=ACTIVE_RUN_WHERE,
        sqlite_where=ACTIVE_RUN_WHERE,
    )

    op.create_table(
        "executions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("brand_id", sa.String(64), nullable=False),
        sa.Column("work_item_id", sa.String(64), nullable=True),
        sa.Column("collector_type", sa.String(64), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*EXECUTION_STATUSES, name="executionstatus", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_executions_brand_id", "executions", ["brand_id"])
    op.create_index("ix_executions_status_updated_at", "executions", ["status", "updated_at"])

    op.create_table(
        "collector_results",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("execution_id", sa.Uuid(), nullable=False),
        sa.Column("collector_type", sa.String(64), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["execution_id"], ["executions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_collector_results_execution_id", "collector_results", ["execution_id"])


def downgrade() -> None:
    op.drop_index("ix_collector_results_execution_id", table_name="collector_results")
    op.drop_table("collector_results")
    op.drop_index("ix_executions_status_updated_at", table_name="executions")
    op.drop_index("ix_executions_brand_id", table_name="executions")
    op.drop_table("executions")
    op.drop_index("uq_job_runs_active_schedule", table_name="job_runs")
    op.drop_index("ix_job_runs_status_scheduled_for", table_name="job_runs")
    op.drop_index("ix_job_runs_schedule_id", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_index("ix_schedules_next_run_at", table_name="schedules")
    op.drop_index("ix_schedules_is_active", table_name="schedules")
    op.drop_index("ix_schedules_brand_id", table_name="schedules")
    op.drop_index("ix_schedules_owner_id", table_name="schedules")
    op.drop_table("schedules")
