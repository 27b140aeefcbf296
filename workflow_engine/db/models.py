"""SQLAlchemy models for the workflow tables.

The engine itself talks to Postgres through asyncpg; these models describe the
schema for Alembic and for anyone inspecting the tables with an ORM session.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Event(Base):
    __tablename__ = "events"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()))
    tenant_id = Column(Text, nullable=False, index=True)
    event_type = Column(Text, nullable=False, index=True)
    entity_type = Column(Text, nullable=True)
    entity_id = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    # Postgres allows multiple NULLs under a unique constraint.
    idempotency_key = Column(Text, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()))
    tenant_id = Column(Text, nullable=False, index=True)
    source_event_id = Column(Text, nullable=True, index=True)
    job_type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")  # pending, running, completed, failed
    idempotency_key = Column(Text, nullable=True, unique=True)
    payload = Column(JSON, nullable=False, default=dict)

    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    scheduled_for = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    locked_by = Column(Text, nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("jobs_status_scheduled_idx", "status", "scheduled_for"),
        Index("jobs_status_locked_idx", "status", "locked_at"),
    )


class DeadLetterJob(Base):
    __tablename__ = "dead_letter_jobs"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()))
    tenant_id = Column(Text, nullable=False, index=True)
    original_job_id = Column(Text, nullable=False, index=True)
    source_event_id = Column(Text, nullable=True)
    job_type = Column(Text, nullable=False)
    idempotency_key = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    attempts = Column(Integer, nullable=False)
    max_attempts = Column(Integer, nullable=False)
    last_error = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class CronTask(Base):
    __tablename__ = "cron_tasks"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()))
    tenant_id = Column(Text, nullable=True)
    task_type = Column(Text, nullable=False)
    cron_expression = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    next_run_at = Column(DateTime(timezone=True), nullable=True)
    config = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("cron_tasks_enabled_next_run_idx", "enabled", "next_run_at"),
        Index("cron_tasks_type_tenant_idx", "task_type", "tenant_id"),
    )


class ScheduledTask(Base):
    __tablename__ = "scheduled_tasks"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()))
    tenant_id = Column(Text, nullable=True)
    task_type = Column(Text, nullable=False)
    execute_at = Column(DateTime(timezone=True), nullable=False)
    executed = Column(Boolean, nullable=False, default=False)
    config = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("scheduled_tasks_executed_execute_at_idx", "executed", "execute_at"),
    )


class SystemLogEntry(Base):
    __tablename__ = "system_logs"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()))
    level = Column(Text, nullable=False, index=True)  # debug, info, warn, error
    source = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    context = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)


__all__ = [
    "Base",
    "Event",
    "Job",
    "DeadLetterJob",
    "CronTask",
    "ScheduledTask",
    "SystemLogEntry",
]
