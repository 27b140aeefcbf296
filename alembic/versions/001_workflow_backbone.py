"""Workflow backbone: events, jobs, dead letters, schedules, system log.

Revision ID: 001_workflow_backbone
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_workflow_backbone"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_EMPTY_JSON = sa.text("'{}'")


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("tenant_id", sa.Text, nullable=False),
        sa.Column("event_type", sa.Text, nullable=False),
        sa.Column("entity_type", sa.Text, nullable=True),
        sa.Column("entity_id", sa.Text, nullable=True),
        sa.Column("payload", sa.JSON, nullable=False, server_default=_EMPTY_JSON),
        sa.Column("metadata", sa.JSON, nullable=False, server_default=_EMPTY_JSON),
        sa.Column("idempotency_key", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    # Postgres allows multiple NULLs under a unique constraint.
    op.create_unique_constraint("events_idempotency_key_key", "events", ["idempotency_key"])
    op.create_index("events_tenant_created_idx", "events", ["tenant_id", "created_at"])
    op.create_index("events_type_idx", "events", ["event_type"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("tenant_id", sa.Text, nullable=False),
        sa.Column("source_event_id", sa.Text, nullable=True),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),  # pending, running, completed, failed
        sa.Column("idempotency_key", sa.Text, nullable=True),
        sa.Column("payload", sa.JSON, nullable=False, server_default=_EMPTY_JSON),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.Text, nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_unique_constraint("jobs_idempotency_key_key", "jobs", ["idempotency_key"])
    op.create_index("jobs_status_scheduled_idx", "jobs", ["status", "scheduled_for"])
    op.create_index("jobs_status_locked_idx", "jobs", ["status", "locked_at"])
    op.create_index("jobs_tenant_idx", "jobs", ["tenant_id"])
    op.create_index("jobs_source_event_idx", "jobs", ["source_event_id"])

    op.create_table(
        "dead_letter_jobs",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("tenant_id", sa.Text, nullable=False),
        sa.Column("original_job_id", sa.Text, nullable=False),
        sa.Column("source_event_id", sa.Text, nullable=True),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column("idempotency_key", sa.Text, nullable=True),
        sa.Column("payload", sa.JSON, nullable=False, server_default=_EMPTY_JSON),
        sa.Column("attempts", sa.Integer, nullable=False),
        sa.Column("max_attempts", sa.Integer, nullable=False),
        sa.Column("last_error", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("dead_letter_jobs_tenant_idx", "dead_letter_jobs", ["tenant_id"])
    op.create_index("dead_letter_jobs_original_job_idx", "dead_letter_jobs", ["original_job_id"])

    op.create_table(
        "cron_tasks",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("tenant_id", sa.Text, nullable=True),
        sa.Column("task_type", sa.Text, nullable=False),
        sa.Column("cron_expression", sa.Text, nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("config", sa.JSON, nullable=False, server_default=_EMPTY_JSON),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("cron_tasks_enabled_next_run_idx", "cron_tasks", ["enabled", "next_run_at"])
    op.create_index("cron_tasks_type_tenant_idx", "cron_tasks", ["task_type", "tenant_id"])

    op.create_table(
        "scheduled_tasks",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("tenant_id", sa.Text, nullable=True),
        sa.Column("task_type", sa.Text, nullable=False),
        sa.Column("execute_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("executed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("config", sa.JSON, nullable=False, server_default=_EMPTY_JSON),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "scheduled_tasks_executed_execute_at_idx",
        "scheduled_tasks",
        ["executed", "execute_at"],
    )

    op.create_table(
        "system_logs",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("level", sa.Text, nullable=False),  # debug, info, warn, error
        sa.Column("source", sa.Text, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("context", sa.JSON, nullable=False, server_default=_EMPTY_JSON),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("system_logs_level_idx", "system_logs", ["level"])
    op.create_index("system_logs_created_idx", "system_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("system_logs_created_idx", table_name="system_logs")
    op.drop_index("system_logs_level_idx", table_name="system_logs")
    op.drop_table("system_logs")

    op.drop_index("scheduled_tasks_executed_execute_at_idx", table_name="scheduled_tasks")
    op.drop_table("scheduled_tasks")

    op.drop_index("cron_tasks_type_tenant_idx", table_name="cron_tasks")
    op.drop_index("cron_tasks_enabled_next_run_idx", table_name="cron_tasks")
    op.drop_table("cron_tasks")

    op.drop_index("dead_letter_jobs_original_job_idx", table_name="dead_letter_jobs")
    op.drop_index("dead_letter_jobs_tenant_idx", table_name="dead_letter_jobs")
    op.drop_table("dead_letter_jobs")

    op.drop_index("jobs_source_event_idx", table_name="jobs")
    op.drop_index("jobs_tenant_idx", table_name="jobs")
    op.drop_index("jobs_status_locked_idx", table_name="jobs")
    op.drop_index("jobs_status_scheduled_idx", table_name="jobs")
    op.drop_constraint("jobs_idempotency_key_key", "jobs", type_="unique")
    op.drop_table("jobs")

    op.drop_index("events_type_idx", table_name="events")
    op.drop_index("events_tenant_created_idx", table_name="events")
    op.drop_constraint("events_idempotency_key_key", "events", type_="unique")
    op.drop_table("events")
