"""Postgres-backed `WorkflowStore` (asyncpg, raw SQL).

Claim strategies:

- ``skip_locked`` (default): a single ``UPDATE ... WHERE id = (SELECT ...
  FOR UPDATE SKIP LOCKED LIMIT 1)``. Concurrent workers lock disjoint rows
  and never block each other.
- ``optimistic``: for stores/proxies without ``SKIP LOCKED``. Read a small
  candidate batch, then flip one with ``UPDATE ... WHERE status = 'pending'
  RETURNING``; the claim only counts if the returned ``locked_by`` is this
  worker. Losing a race just moves on to the next candidate.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Literal, Mapping
from uuid import uuid4

import asyncpg
import structlog

from workflow_engine.jobs.types import JobStatus
from workflow_engine.kernel.time import coerce_utc
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

logger = structlog.get_logger()

ClaimStrategy = Literal["skip_locked", "optimistic"]

_OPTIMISTIC_CANDIDATES = 5

# Outcome writes only land on a job that is still running (and, when given, still ours).
_RUNNING_GUARD = "status = 'running' AND (${n}::text IS NULL OR locked_by = ${n})"


def _updated_one(result: str) -> bool:
    # asyncpg returns command tags like "UPDATE 1"
    return str(result).endswith(" 1")

_JOB_COLUMNS = """
    id::text, tenant_id, source_event_id::text, job_type, status, idempotency_key,
    payload, attempts, max_attempts, scheduled_for, started_at, completed_at,
    locked_by, locked_at, last_error, created_at, updated_at
"""

_EVENT_COLUMNS = """
    id::text, tenant_id, event_type, entity_type, entity_id, payload, metadata,
    idempotency_key, created_at
"""

_DEAD_LETTER_COLUMNS = """
    id::text, tenant_id, original_job_id::text, source_event_id::text, job_type,
    idempotency_key, payload, attempts, max_attempts, last_error, created_at
"""

_CRON_COLUMNS = """
    id::text, tenant_id, task_type, cron_expression, enabled, last_run_at,
    next_run_at, config
"""

_SCHEDULED_COLUMNS = """
    id::text, tenant_id, task_type, execute_at, executed, config, created_at
"""


def _ts(value: datetime | None) -> datetime | None:
    return coerce_utc(value) if value is not None else None


def _job_from_row(row: Mapping[str, Any]) -> JobRecord:
    return JobRecord(
        id=str(row["id"]),
        tenant_id=row["tenant_id"],
        job_type=row["job_type"],
        status=row["status"],
        payload=row["payload"] or {},
        attempts=int(row["attempts"] or 0),
        max_attempts=int(row["max_attempts"] or 1),
        scheduled_for=coerce_utc(row["scheduled_for"]),
        source_event_id=row.get("source_event_id"),
        idempotency_key=row.get("idempotency_key"),
        started_at=_ts(row.get("started_at")),
        completed_at=_ts(row.get("completed_at")),
        locked_by=row.get("locked_by"),
        locked_at=_ts(row.get("locked_at")),
        last_error=row.get("last_error"),
        created_at=_ts(row.get("created_at")),
        updated_at=_ts(row.get("updated_at")),
    )


def _event_from_row(row: Mapping[str, Any]) -> EventRecord:
    return EventRecord(
        id=str(row["id"]),
        tenant_id=row["tenant_id"],
        event_type=row["event_type"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        payload=row["payload"] or {},
        metadata=row["metadata"] or {},
        idempotency_key=row["idempotency_key"],
        created_at=coerce_utc(row["created_at"]),
    )


def _dead_letter_from_row(row: Mapping[str, Any]) -> DeadLetterJobRecord:
    return DeadLetterJobRecord(
        id=str(row["id"]),
        tenant_id=row["tenant_id"],
        original_job_id=str(row["original_job_id"]),
        job_type=row["job_type"],
        payload=row["payload"] or {},
        attempts=int(row["attempts"]),
        max_attempts=int(row["max_attempts"]),
        last_error=row["last_error"],
        source_event_id=row["source_event_id"],
        idempotency_key=row["idempotency_key"],
        created_at=_ts(row["created_at"]),
    )


def _cron_from_row(row: Mapping[str, Any]) -> CronTaskRecord:
    return CronTaskRecord(
        id=str(row["id"]),
        task_type=row["task_type"],
        cron_expression=row["cron_expression"],
        enabled=bool(row["enabled"]),
        tenant_id=row["tenant_id"],
        last_run_at=_ts(row["last_run_at"]),
        next_run_at=_ts(row["next_run_at"]),
        config=row["config"] or {},
    )


def _scheduled_from_row(row: Mapping[str, Any]) -> ScheduledTaskRecord:
    return ScheduledTaskRecord(
        id=str(row["id"]),
        task_type=row["task_type"],
        execute_at=coerce_utc(row["execute_at"]),
        executed=bool(row["executed"]),
        tenant_id=row["tenant_id"],
        config=row["config"] or {},
        created_at=_ts(row["created_at"]),
    )


async def _insert_job(conn: asyncpg.Connection, job: NewJob, now: datetime) -> str | None:
    row = await conn.fetchrow(
        """
        INSERT INTO jobs (
            id, tenant_id, source_event_id, job_type, status, idempotency_key,
            payload, attempts, max_attempts, scheduled_for, created_at, updated_at
        )
        VALUES ($1, $2, $3, $4, 'pending', $5, $6, 0, $7, $8, $9, $9)
        ON CONFLICT (idempotency_key) DO NOTHING
        RETURNING id::text
        """,
        str(uuid4()),
        job.tenant_id,
        job.source_event_id,
        job.job_type,
        job.idempotency_key,
        job.payload,
        int(max(1, job.max_attempts)),
        job.scheduled_for,
        now,
    )
    return str(row["id"]) if row else None


class _PostgresTransaction:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def find_event_id(self, idempotency_key: str) -> str | None:
        value = await self._conn.fetchval(
            "SELECT id::text FROM events WHERE idempotency_key = $1",
            idempotency_key,
        )
        return str(value) if value else None

    async def insert_event(self, event: NewEvent, *, now: datetime) -> str | None:
        row = await self._conn.fetchrow(
            """
            INSERT INTO events (
                id, tenant_id, event_type, entity_type, entity_id,
                payload, metadata, idempotency_key, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (idempotency_key) DO NOTHING
            RETURNING id::text
            """,
            str(uuid4()),
            event.tenant_id,
            event.event_type,
            event.entity_type,
            event.entity_id,
            event.payload,
            event.metadata,
            event.idempotency_key,
            now,
        )
        return str(row["id"]) if row else None

    async def insert_job(self, job: NewJob, *, now: datetime) -> str | None:
        return await _insert_job(self._conn, job, now)


class PostgresWorkflowStore:
    def __init__(self, pool: Any, *, claim_strategy: ClaimStrategy = "skip_locked") -> None:
        if claim_strategy not in ("skip_locked", "optimistic"):
            raise ValueError(f"Unknown claim strategy: {claim_strategy!r}")
        self._pool = pool
        self._claim_strategy = claim_strategy

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_PostgresTransaction]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                yield _PostgresTransaction(conn)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def insert_job(self, job: NewJob, *, now: datetime) -> str | None:
        async with self._pool.acquire() as conn:
            return await _insert_job(conn, job, now)

    async def claim_one_eligible_job(self, *, worker_id: str, now: datetime) -> JobRecord | None:
        if self._claim_strategy == "optimistic":
            return await self._claim_optimistic(worker_id=worker_id, now=now)
        return await self._claim_skip_locked(worker_id=worker_id, now=now)

    async def _claim_skip_locked(self, *, worker_id: str, now: datetime) -> JobRecord | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE jobs
                SET status = 'running',
                    locked_by = $1,
                    locked_at = $2,
                    started_at = $2,
                    updated_at = $2
                WHERE id = (
                    SELECT j.id
                    FROM jobs j
                    WHERE j.status = 'pending'
                      AND j.scheduled_for <= $2
                    ORDER BY j.scheduled_for ASC, j.created_at ASC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING {_JOB_COLUMNS}
                """,
                worker_id,
                now,
            )
        return _job_from_row(row) if row else None

    async def _claim_optimistic(self, *, worker_id: str, now: datetime) -> JobRecord | None:
        async with self._pool.acquire() as conn:
            candidates = await conn.fetch(
                """
                SELECT id
                FROM jobs
                WHERE status = 'pending'
                  AND scheduled_for <= $1
                ORDER BY scheduled_for ASC, created_at ASC
                LIMIT $2
                """,
                now,
                _OPTIMISTIC_CANDIDATES,
            )
            for candidate in candidates or []:
                row = await conn.fetchrow(
                    f"""
                    UPDATE jobs
                    SET status = 'running',
                        locked_by = $2,
                        locked_at = $3,
                        started_at = $3,
                        updated_at = $3
                    WHERE id = $1
                      AND status = 'pending'
                    RETURNING {_JOB_COLUMNS}
                    """,
                    candidate["id"],
                    worker_id,
                    now,
                )
                if row and row["locked_by"] == worker_id:
                    return _job_from_row(row)
        return None

    async def get_job(self, job_id: str) -> JobRecord | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = $1",
                job_id,
            )
        return _job_from_row(row) if row else None

    async def mark_job_completed(self, *, job_id: str, now: datetime, locked_by: str | None = None) -> bool:
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                f"""
                UPDATE jobs
                SET status = 'completed',
                    completed_at = $2,
                    locked_by = NULL,
                    locked_at = NULL,
                    updated_at = $2
                WHERE id = $1 AND {_RUNNING_GUARD.format(n=3)}
                """,
                job_id,
                now,
                locked_by,
            )
        return _updated_one(result)

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
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                f"""
                UPDATE jobs
                SET status = 'pending',
                    attempts = GREATEST(attempts, $2),
                    scheduled_for = $3,
                    last_error = $4,
                    locked_by = NULL,
                    locked_at = NULL,
                    updated_at = $5
                WHERE id = $1 AND {_RUNNING_GUARD.format(n=6)}
                """,
                job_id,
                attempts,
                scheduled_for,
                error,
                now,
                locked_by,
            )
        return _updated_one(result)

    async def dead_letter_job(
        self,
        *,
        job: JobRecord,
        attempts: int,
        error: str,
        now: datetime,
        locked_by: str | None = None,
    ) -> str | None:
        dead_letter_id = str(uuid4())
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                # Fail the job first; the archive row is only written by the caller that wins.
                updated = await conn.execute(
                    f"""
                    UPDATE jobs
                    SET status = 'failed',
                        attempts = GREATEST(attempts, $2),
                        last_error = $3,
                        locked_by = NULL,
                        locked_at = NULL,
                        updated_at = $4
                    WHERE id = $1 AND {_RUNNING_GUARD.format(n=5)}
                    """,
                    job.id,
                    attempts,
                    error,
                    now,
                    locked_by,
                )
                if not _updated_one(updated):
                    return None
                await conn.execute(
                    """
                    INSERT INTO dead_letter_jobs (
                        id, tenant_id, original_job_id, source_event_id, job_type,
                        idempotency_key, payload, attempts, max_attempts, last_error, created_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    """,
                    dead_letter_id,
                    job.tenant_id,
                    job.id,
                    job.source_event_id,
                    job.job_type,
                    job.idempotency_key,
                    job.payload,
                    attempts,
                    job.max_attempts,
                    error,
                    now,
                )
        return dead_letter_id

    async def release_stale_jobs(self, *, locked_before: datetime, now: datetime) -> int:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                UPDATE jobs
                SET status = 'pending',
                    locked_by = NULL,
                    locked_at = NULL,
                    updated_at = $2
                WHERE status = 'running'
                  AND locked_at < $1
                RETURNING id::text
                """,
                locked_before,
                now,
            )
        return len(rows or [])

    async def list_jobs(
        self,
        *,
        status: str | None = None,
        tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[JobRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM jobs
                WHERE ($1::text IS NULL OR status = $1)
                  AND ($2::text IS NULL OR tenant_id = $2)
                ORDER BY scheduled_for ASC, created_at ASC
                LIMIT $3
                """,
                status,
                tenant_id,
                int(max(1, limit)),
            )
        return [_job_from_row(row) for row in rows or []]

    async def count_jobs_by_status(self, *, tenant_id: str | None = None) -> dict[str, int]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT status, COUNT(*) AS count
                FROM jobs
                WHERE ($1::text IS NULL OR tenant_id = $1)
                GROUP BY status
                """,
                tenant_id,
            )
        counts = {status.value: 0 for status in JobStatus}
        for row in rows or []:
            counts[row["status"]] = int(row["count"])
        return counts

    async def list_dead_letter_jobs(
        self,
        *,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterJobRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_DEAD_LETTER_COLUMNS}
                FROM dead_letter_jobs
                WHERE ($1::text IS NULL OR tenant_id = $1)
                ORDER BY created_at DESC
                LIMIT $2
                """,
                tenant_id,
                int(max(1, limit)),
            )
        return [_dead_letter_from_row(row) for row in rows or []]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def list_recent_events(
        self,
        *,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[EventRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_EVENT_COLUMNS}
                FROM events
                WHERE ($1::text IS NULL OR tenant_id = $1)
                ORDER BY created_at DESC
                LIMIT $2
                """,
                tenant_id,
                int(max(1, min(limit, 200))),
            )
        return [_event_from_row(row) for row in rows or []]

    # ------------------------------------------------------------------
    # Cron tasks
    # ------------------------------------------------------------------

    async def list_due_cron_tasks(self, *, now: datetime) -> list[CronTaskRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_CRON_COLUMNS}
                FROM cron_tasks
                WHERE enabled = TRUE
                  AND (next_run_at IS NULL OR next_run_at <= $1)
                ORDER BY next_run_at ASC NULLS FIRST
                """,
                now,
            )
        return [_cron_from_row(row) for row in rows or []]

    async def mark_cron_task_fired(
        self,
        *,
        task_id: str,
        last_run_at: datetime,
        next_run_at: datetime,
    ) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE cron_tasks
                SET last_run_at = $2,
                    next_run_at = $3,
                    updated_at = $2
                WHERE id = $1
                """,
                task_id,
                last_run_at,
                next_run_at,
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
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                existing = await conn.fetchval(
                    """
                    SELECT id::text
                    FROM cron_tasks
                    WHERE task_type = $1
                      AND tenant_id IS NOT DISTINCT FROM $2
                    FOR UPDATE
                    """,
                    task_type,
                    tenant_id,
                )
                if existing:
                    await conn.execute(
                        """
                        UPDATE cron_tasks
                        SET cron_expression = $2,
                            enabled = $3,
                            next_run_at = $4,
                            config = $5,
                            updated_at = NOW()
                        WHERE id = $1
                        """,
                        existing,
                        cron_expression,
                        enabled,
                        next_run_at,
                        config or {},
                    )
                    return str(existing)

                task_id = str(uuid4())
                await conn.execute(
                    """
                    INSERT INTO cron_tasks (
                        id, tenant_id, task_type, cron_expression, enabled,
                        next_run_at, config, created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, NOW(), NOW())
                    """,
                    task_id,
                    tenant_id,
                    task_type,
                    cron_expression,
                    enabled,
                    next_run_at,
                    config or {},
                )
                return task_id

    async def list_cron_tasks(self) -> list[CronTaskRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_CRON_COLUMNS} FROM cron_tasks ORDER BY next_run_at ASC NULLS FIRST"
            )
        return [_cron_from_row(row) for row in rows or []]

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
        task_id = str(uuid4())
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO scheduled_tasks (
                    id, tenant_id, task_type, execute_at, executed, config, created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, FALSE, $5, $6, $6)
                """,
                task_id,
                tenant_id,
                task_type,
                execute_at,
                config or {},
                now,
            )
        return task_id

    async def list_due_scheduled_tasks(self, *, now: datetime) -> list[ScheduledTaskRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_SCHEDULED_COLUMNS}
                FROM scheduled_tasks
                WHERE executed = FALSE
                  AND execute_at <= $1
                ORDER BY execute_at ASC
                """,
                now,
            )
        return [_scheduled_from_row(row) for row in rows or []]

    async def set_scheduled_task_executed(self, *, task_id: str, executed: bool) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE scheduled_tasks
                SET executed = $2,
                    updated_at = NOW()
                WHERE id = $1
                """,
                task_id,
                executed,
            )

    async def list_pending_scheduled_tasks(self, *, limit: int = 50) -> list[ScheduledTaskRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_SCHEDULED_COLUMNS}
                FROM scheduled_tasks
                WHERE executed = FALSE
                ORDER BY execute_at ASC
                LIMIT $1
                """,
                int(max(1, limit)),
            )
        return [_scheduled_from_row(row) for row in rows or []]

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
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO system_logs (id, level, source, message, context, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                str(uuid4()),
                level,
                source,
                message,
                context or {},
                now,
            )

    async def list_system_logs(
        self,
        *,
        level: str | None = None,
        limit: int = 100,
    ) -> list[SystemLogRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id::text, level, source, message, context, created_at
                FROM system_logs
                WHERE ($1::text IS NULL OR level = $1)
                ORDER BY created_at DESC
                LIMIT $2
                """,
                level,
                int(max(1, limit)),
            )
        return [
            SystemLogRecord(
                id=str(row["id"]),
                level=row["level"],
                source=row["source"],
                message=row["message"],
                context=row["context"] or {},
                created_at=coerce_utc(row["created_at"]),
            )
            for row in rows or []
        ]
