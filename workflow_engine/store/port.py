"""Store port for the workflow engine.

The emitter, queue, scheduler and system log only talk to the durable store
through this protocol. `PostgresWorkflowStore` is the production
implementation; `InMemoryWorkflowStore` backs tests and local runs.

Idempotent inserts never raise on a duplicate key: they return `None` and
leave the existing row untouched.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol

from workflow_engine.store.records import (
    CronTaskRecord,
    DeadLetterJobRecord,
    EventRecord,
    JobRecord,
    NewEvent,
    NewJob,
    ScheduledTaskRecord,
    SystemLogRecord,
)


class StoreTransaction(Protocol):
    """Statements that must commit or roll back together."""

    async def find_event_id(self, idempotency_key: str) -> str | None:
        ...

    async def insert_event(self, event: NewEvent, *, now: datetime) -> str | None:
        ...

    async def insert_job(self, job: NewJob, *, now: datetime) -> str | None:
        ...


class WorkflowStore(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]:
        ...

    # Jobs
    async def insert_job(self, job: NewJob, *, now: datetime) -> str | None:
        ...

    async def claim_one_eligible_job(self, *, worker_id: str, now: datetime) -> JobRecord | None:
        ...

    async def get_job(self, job_id: str) -> JobRecord | None:
        ...

    async def mark_job_completed(self, *, job_id: str, now: datetime, locked_by: str | None = None) -> bool:
        """Complete a running job. False when it is no longer running (or no longer held by `locked_by`)."""
        ...

    async def reschedule_job(
        self,
        *,
        job_id: str,
        attempts: int,
        scheduled_for: datetime,
        error: str,
        now: datetime,
        locked_by: str | None = None,
    ) -> bool:
        ...

    async def dead_letter_job(
        self,
        *,
        job: JobRecord,
        attempts: int,
        error: str,
        now: datetime,
        locked_by: str | None = None,
    ) -> str | None:
        """Archive and fail a running job atomically. None when the running guard does not match."""
        ...

    async def release_stale_jobs(self, *, locked_before: datetime, now: datetime) -> int:
        ...

    async def list_jobs(
        self,
        *,
        status: str | None = None,
        tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[JobRecord]:
        ...

    async def count_jobs_by_status(self, *, tenant_id: str | None = None) -> dict[str, int]:
        ...

    async def list_dead_letter_jobs(
        self,
        *,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterJobRecord]:
        ...

    # Events
    async def list_recent_events(
        self,
        *,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[EventRecord]:
        ...

    # Cron tasks
    async def list_due_cron_tasks(self, *, now: datetime) -> list[CronTaskRecord]:
        ...

    async def mark_cron_task_fired(
        self,
        *,
        task_id: str,
        last_run_at: datetime,
        next_run_at: datetime,
    ) -> None:
        ...

    async def upsert_cron_task(
        self,
        *,
        task_type: str,
        cron_expression: str,
        tenant_id: str | None = None,
        enabled: bool = True,
        next_run_at: datetime | None = None,
        config: dict[str, Any] | None = None,
    ) -> str:
        ...

    async def list_cron_tasks(self) -> list[CronTaskRecord]:
        ...

    # One-off tasks
    async def insert_scheduled_task(
        self,
        *,
        task_type: str,
        execute_at: datetime,
        tenant_id: str | None,
        config: dict[str, Any] | None,
        now: datetime,
    ) -> str:
        ...

    async def list_due_scheduled_tasks(self, *, now: datetime) -> list[ScheduledTaskRecord]:
        ...

    async def set_scheduled_task_executed(self, *, task_id: str, executed: bool) -> None:
        ...

    async def list_pending_scheduled_tasks(self, *, limit: int = 50) -> list[ScheduledTaskRecord]:
        ...

    # System log
    async def append_system_log(
        self,
        *,
        level: str,
        source: str,
        message: str,
        context: dict[str, Any] | None,
        now: datetime,
    ) -> None:
        ...

    async def list_system_logs(
        self,
        *,
        level: str | None = None,
        limit: int = 100,
    ) -> list[SystemLogRecord]:
        ...
