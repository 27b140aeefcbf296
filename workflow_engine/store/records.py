"""Row shapes exchanged between the engine and a `WorkflowStore`."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class NewEvent:
    tenant_id: str
    event_type: str
    entity_type: str | None = None
    entity_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str | None = None


@dataclass(frozen=True)
class EventRecord:
    id: str
    tenant_id: str
    event_type: str
    entity_type: str | None
    entity_id: str | None
    payload: dict[str, Any]
    metadata: dict[str, Any]
    idempotency_key: str | None
    created_at: datetime


@dataclass(frozen=True)
class NewJob:
    tenant_id: str
    job_type: str
    scheduled_for: datetime
    max_attempts: int
    payload: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str | None = None
    source_event_id: str | None = None


@dataclass(frozen=True)
class JobRecord:
    id: str
    tenant_id: str
    job_type: str
    status: str
    payload: dict[str, Any]
    attempts: int
    max_attempts: int
    scheduled_for: datetime
    source_event_id: str | None = None
    idempotency_key: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    locked_by: str | None = None
    locked_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class DeadLetterJobRecord:
    id: str
    tenant_id: str
    original_job_id: str
    job_type: str
    payload: dict[str, Any]
    attempts: int
    max_attempts: int
    last_error: str
    source_event_id: str | None = None
    idempotency_key: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class CronTaskRecord:
    id: str
    task_type: str
    cron_expression: str
    enabled: bool
    tenant_id: str | None = None
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScheduledTaskRecord:
    id: str
    task_type: str
    execute_at: datetime
    executed: bool
    tenant_id: str | None = None
    config: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(frozen=True)
class SystemLogRecord:
    id: str
    level: str
    source: str
    message: str
    context: dict[str, Any]
    created_at: datetime
