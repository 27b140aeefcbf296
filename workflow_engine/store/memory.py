"""In-memory `WorkflowStore`.

Used by the test suite and for local runs without Postgres. A single
`asyncio.Lock` stands in for row locks: every statement and every
transaction runs while holding it, so claims are exclusive in the same way
`FOR UPDATE SKIP LOCKED` makes them exclusive in Postgres.
"""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, AsyncIterator

from workflow_engine.jobs.types import JobStatus
from workflow_engine.kernel.errors import NotFoundError
from workflow_engine.kernel.ids import new_prefixed_id
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


@dataclass
class _Tables:
    events: dict[str, EventRecord] = field(default_factory=dict)
    jobs: dict[str, JobRecord] = field(default_factory=dict)
    dead_letter_jobs: dict[str, DeadLetterJobRecord] = field(default_factory=dict)
    cron_tasks: dict[str, CronTaskRecord] = field(default_factory=dict)
    scheduled_tasks: dict[str, ScheduledTaskRecord] = field(default_factory=dict)
    system_logs: list[SystemLogRecord] = field(default_factory=list)
    # insertion order, used as the final claim tie-breaker
    job_seq: dict[str, int] = field(default_factory=dict)


class _MemoryTransaction:
    """Stages writes and applies them on commit."""

    def __init__(self, tables: _Tables, next_seq) -> None:
        self._tables = tables
        self._next_seq = next_seq
        self._events: dict[str, EventRecord] = {}
        self._jobs: dict[str, JobRecord] = {}

    async def find_event_id(self, idempotency_key: str) -> str | None:
        for source in (self._tables.events, self._events):
            for event in source.values():
                if event.idempotency_key == idempotency_key:
                    return event.id
        return None

    async def insert_event(self, event: NewEvent, *, now: datetime) -> str | None:
        if event.idempotency_key and await self.find_event_id(event.idempotency_key):
            return None
        event_id = new_prefixed_id("evt")
        self._events[event_id] = EventRecord(
            id=event_id,
            tenant_id=event.tenant_id,
            event_type=event.event_type,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            payload=copy.deepcopy(event.payload),
            metadata=copy.deepcopy(event.metadata),
            idempotency_key=event.idempotency_key,
            created_at=now,
        )
        return event_id

    async def insert_job(self, job: NewJob, *, now: datetime) -> str | None:
        if job.idempotency_key:
            for source in (self._tables.jobs, self._jobs):
                if any(j.idempotency_key == job.idempotency_key for j in source.values()):
                    return None
        job_id = new_prefixed_id("job")
        self._jobs[job_id] = _job_from_new(job_id, job, now)
        return job_id

    def commit(self) -> None:
        self._tables.events.update(self._events)
        for job_id, job in self._jobs.items():
            self._tables.jobs[job_id] = job
            self._tables.job_seq[job_id] = self._next_seq()


def _job_from_new(job_id: str, job: NewJob, now: datetime) -> JobRecord:
    return JobRecord(
        id=job_id,
        tenant_id=job.tenant_id,
        job_type=job.job_type,
        status=JobStatus.PENDING.value,
        payload=copy.deepcopy(job.payload),
        attempts=0,
        max_attempts=job.max_attempts,
        scheduled_for=job.scheduled_for,
        source_event_id=job.source_event_id,
        idempotency_key=job.idempotency_key,
        created_at=now,
        updated_at=now,
    )


class InMemoryWorkflowStore:
    def __init__(self) -> None:
        self._tables = _Tables()
        self._lock = asyncio.Lock()
        self._seq = 0

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_MemoryTransaction]:
        async with self._lock:
            tx = _MemoryTransaction(self._tables, self._next_seq)
            yield tx
            tx.commit()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def insert_job(self, job: NewJob, *, now: datetime) -> str | None:
        async with self.transaction() as tx:
            return await tx.insert_job(job, now=now)

    async def claim_one_eligible_job(self, *, worker_id: str, now: datetime) -> JobRecord | None:
        async with self._lock:
            eligible = [
                job
                for job in self._tables.jobs.values()
                if job.status == JobStatus.PENDING.value and job.scheduled_for <= now
            ]
            if not eligible:
                return None
            job = min(
                eligible,
                key=lambda j: (j.scheduled_for, self._tables.job_seq.get(j.id, 0)),
            )
            claimed = replace(
                job,
                status=JobStatus.RUNNING.value,
                locked_by=worker_id,
                locked_at=now,
                started_at=now,
                updated_at=now,
            )
            self._tables.jobs[job.id] = claimed
            return claimed

    async def get_job(self, job_id: str) -> JobRecord | None:
        async with self._lock:
            return self._tables.jobs.get(job_id)

    def _running_job(self, job_id: str, locked_by: str | None) -> JobRecord | None:
        job = self._require_job(job_id)
        if job.status != JobStatus.RUNNING.value:
            return None
        if locked_by is not None and job.locked_by != locked_by:
            return None
        return job

    async def mark_job_completed(self, *, job_id: str, now: datetime, locked_by: str | None = None) -> bool:
        async with self._lock:
            job = self._running_job(job_id, locked_by)
            if job is None:
                return False
            self._tables.jobs[job_id] = replace(
                job,
                status=JobStatus.COMPLETED.value,
                completed_at=now,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            return True

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
        async with self._lock:
            job = self._running_job(job_id, locked_by)
            if job is None:
                return False
            self._tables.jobs[job_id] = replace(
                job,
                status=JobStatus.PENDING.value,
                attempts=max(job.attempts, attempts),
                scheduled_for=scheduled_for,
                last_error=error,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            return True

    async def dead_letter_job(
        self,
        *,
        job: JobRecord,
        attempts: int,
        error: str,
        now: datetime,
        locked_by: str | None = None,
    ) -> str | None:
        async with self._lock:
            current = self._running_job(job.id, locked_by)
            if current is None:
                return None
            dead_letter_id = new_prefixed_id("dlq")
            self._tables.dead_letter_jobs[dead_letter_id] = DeadLetterJobRecord(
                id=dead_letter_id,
                tenant_id=current.tenant_id,
                original_job_id=current.id,
                job_type=current.job_type,
                payload=copy.deepcopy(current.payload),
                attempts=attempts,
                max_attempts=current.max_attempts,
                last_error=error,
                source_event_id=current.source_event_id,
                idempotency_key=current.idempotency_key,
                created_at=now,
            )
            self._tables.jobs[current.id] = replace(
                current,
                status=JobStatus.FAILED.value,
                attempts=max(current.attempts, attempts),
                last_error=error,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            return dead_letter_id

    async def release_stale_jobs(self, *, locked_before: datetime, now: datetime) -> int:
        async with self._lock:
            released = 0
            for job in list(self._tables.jobs.values()):
                if (
                    job.status == JobStatus.RUNNING.value
                    and job.locked_at is not None
                    and job.locked_at < locked_before
                ):
                    self._tables.jobs[job.id] = replace(
                        job,
                        status=JobStatus.PENDING.value,
                        locked_by=None,
                        locked_at=None,
                        updated_at=now,
                    )
                    released += 1
            return released

    async def list_jobs(
        self,
        *,
        status: str | None = None,
        tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[JobRecord]:
        async with self._lock:
            rows = [
                job
                for job in self._tables.jobs.values()
                if (status is None or job.status == status)
                and (tenant_id is None or job.tenant_id == tenant_id)
            ]
        rows.sort(key=lambda j: (j.scheduled_for, self._tables.job_seq.get(j.id, 0)))
        return rows[:limit]

    async def count_jobs_by_status(self, *, tenant_id: str | None = None) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        async with self._lock:
            for job in self._tables.jobs.values():
                if tenant_id is None or job.tenant_id == tenant_id:
                    counts[job.status] = counts.get(job.status, 0) + 1
        return counts

    async def list_dead_letter_jobs(
        self,
        *,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterJobRecord]:
        async with self._lock:
            rows = [
                row
                for row in self._tables.dead_letter_jobs.values()
                if tenant_id is None or row.tenant_id == tenant_id
            ]
        return list(reversed(rows))[:limit]

    def _require_job(self, job_id: str) -> JobRecord:
        job = self._tables.jobs.get(job_id)
        if job is None:
            raise NotFoundError(code="job.not_found", message=f"Job not found: {job_id}")
        return job

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def list_recent_events(
        self,
        *,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[EventRecord]:
        async with self._lock:
            rows = [
                event
                for event in self._tables.events.values()
                if tenant_id is None or event.tenant_id == tenant_id
            ]
        return list(reversed(rows))[:limit]

    # ------------------------------------------------------------------
    # Cron tasks
    # ------------------------------------------------------------------

    async def list_due_cron_tasks(self, *, now: datetime) -> list[CronTaskRecord]:
        async with self._lock:
            return [
                task
                for task in self._tables.cron_tasks.values()
                if task.enabled and (task.next_run_at is None or task.next_run_at <= now)
            ]

    async def mark_cron_task_fired(
        self,
        *,
        task_id: str,
        last_run_at: datetime,
        next_run_at: datetime,
    ) -> None:
        async with self._lock:
            task = self._tables.cron_tasks.get(task_id)
            if task is None:
                raise NotFoundError(code="cron_task.not_found", message=f"Cron task not found: {task_id}")
            self._tables.cron_tasks[task_id] = replace(
                task,
                last_run_at=last_run_at,
                next_run_at=next_run_at,
            )

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
        async with self._lock:
            for task in self._tables.cron_tasks.values():
                if task.task_type == task_type and task.tenant_id == tenant_id:
                    self._tables.cron_tasks[task.id] = replace(
                        task,
                        cron_expression=cron_expression,
                        enabled=enabled,
                        next_run_at=next_run_at,
                        config=dict(config or {}),
                    )
                    return task.id

            task_id = new_prefixed_id("cron")
            self._tables.cron_tasks[task_id] = CronTaskRecord(
                id=task_id,
                task_type=task_type,
                cron_expression=cron_expression,
                enabled=enabled,
                tenant_id=tenant_id,
                next_run_at=next_run_at,
                config=dict(config or {}),
            )
            return task_id

    async def list_cron_tasks(self) -> list[CronTaskRecord]:
        async with self._lock:
            rows = list(self._tables.cron_tasks.values())
        # nulls first: a null next_run_at means "due now"
        return sorted(rows, key=lambda t: (t.next_run_at is not None, t.next_run_at or datetime.min))

    # ------------------------------------------------------------------
    # One-off tasks
    # ------------------------------------------------------------------

    async def insert_scheduled_task(
        self,
        *,
        task_type: str,
        execute_at: datetime,
        tenant_id: str | None,
        config: dict[str, Any] | None,
        now: datetime,
    ) -> str:
        async with self._lock:
            task_id = new_prefixed_id("task")
            self._tables.scheduled_tasks[task_id] = ScheduledTaskRecord(
                id=task_id,
                task_type=task_type,
                execute_at=execute_at,
                executed=False,
                tenant_id=tenant_id,
                config=copy.deepcopy(config or {}),
                created_at=now,
            )
            return task_id

    async def list_due_scheduled_tasks(self, *, now: datetime) -> list[ScheduledTaskRecord]:
        async with self._lock:
            rows = [
                task
                for task in self._tables.scheduled_tasks.values()
                if not task.executed and task.execute_at <= now
            ]
        return sorted(rows, key=lambda t: t.execute_at)

    async def set_scheduled_task_executed(self, *, task_id: str, executed: bool) -> None:
        async with self._lock:
            task = self._tables.scheduled_tasks.get(task_id)
            if task is None:
                raise NotFoundError(code="scheduled_task.not_found", message=f"Scheduled task not found: {task_id}")
            self._tables.scheduled_tasks[task_id] = replace(task, executed=executed)

    async def list_pending_scheduled_tasks(self, *, limit: int = 50) -> list[ScheduledTaskRecord]:
        async with self._lock:
            rows = [task for task in self._tables.scheduled_tasks.values() if not task.executed]
        return sorted(rows, key=lambda t: t.execute_at)[:limit]

    # ------------------------------------------------------------------
    # System log
    # ------------------------------------------------------------------

    async def append_system_log(
        self,
        *,
        level: str,
        source: str,
        message: str,
        context: dict[str, Any] | None,
        now: datetime,
    ) -> None:
        async with self._lock:
            self._tables.system_logs.append(
                SystemLogRecord(
                    id=new_prefixed_id("log"),
                    level=level,
                    source=source,
                    message=message,
                    context=copy.deepcopy(context or {}),
                    created_at=now,
                )
            )

    async def list_system_logs(
        self,
        *,
        level: str | None = None,
        limit: int = 100,
    ) -> list[SystemLogRecord]:
        async with self._lock:
            rows = [log for log in self._tables.system_logs if level is None or log.level == level]
        return list(reversed(rows))[:limit]
