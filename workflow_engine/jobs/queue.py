"""
Durable job queue.

Jobs live in the `jobs` table and move `pending -> running -> completed`, or
back to `pending` with an exponential backoff after a failure. A job that
exhausts `max_attempts` is archived to `dead_letter_jobs` and marked `failed`
in the same store transaction. Workers claim with `claim_next()`; the reaper
returns jobs abandoned by a crashed worker to `pending`.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from workflow_engine.config import Settings
from workflow_engine.events.types import EventType
from workflow_engine.jobs.types import JobStatus, JobType
from workflow_engine.kernel.errors import NotFoundError, ValidationError
from workflow_engine.kernel.time import Clock, SystemClock, millis
from workflow_engine.monitoring.metrics import get_metrics
from workflow_engine.store.port import WorkflowStore
from workflow_engine.store.records import DeadLetterJobRecord, JobRecord, NewJob

if TYPE_CHECKING:
    from workflow_engine.events.emitter import EventEmitter
    from workflow_engine.system_log import SystemLog

logger = structlog.get_logger()

SOURCE = "job_queue"


def compute_backoff_ms(attempts: int, *, base_delay_ms: int, max_delay_ms: int | None = None) -> int:
    """Delay before the next try after the `attempts`-th failure.

    attempt=1 -> 2x base, attempt=2 -> 4x base, attempt=3 -> 8x base
    """
    delay = (2 ** max(0, attempts)) * base_delay_ms
    if max_delay_ms is not None:
        delay = min(delay, max_delay_ms)
    return delay


def _coerce_job_type(value: JobType | str) -> JobType:
    try:
        return JobType(value)
    except ValueError as exc:
        raise ValidationError(
            code="job.unknown_type",
            message=f"Unknown job type: {value}",
            meta={"job_type": str(value)},
        ) from exc


class JobQueue:
    def __init__(
        self,
        store: WorkflowStore,
        settings: Settings,
        system_log: "SystemLog",
        clock: Clock | None = None,
        alerts: "EventEmitter | None" = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._system_log = system_log
        self._clock = clock or SystemClock()
        self._alerts = alerts

    @property
    def lock_timeout(self) -> timedelta:
        return timedelta(minutes=self._settings.worker_lock_timeout_minutes)

    def compute_backoff(self, attempts: int) -> timedelta:
        return millis(
            compute_backoff_ms(
                attempts,
                base_delay_ms=self._settings.job_base_delay_ms,
                max_delay_ms=self._settings.job_backoff_max_ms,
            )
        )

    async def enqueue(
        self,
        tenant_id: str,
        job_type: JobType | str,
        *,
        payload: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        source_event_id: str | None = None,
        scheduled_for: datetime | None = None,
        max_attempts: int | None = None,
    ) -> str | None:
        """Insert a pending job. Returns `None` when the idempotency key already exists."""
        if not tenant_id:
            raise ValidationError(code="job.tenant_required", message="tenant_id is required")
        job_type = _coerce_job_type(job_type)
        now = self._clock.now()
        attempts_budget = max_attempts if max_attempts is not None else self._settings.job_max_attempts
        if attempts_budget < 1:
            raise ValidationError(code="job.invalid_max_attempts", message="max_attempts must be >= 1")

        job_id = await self._store.insert_job(
            NewJob(
                tenant_id=tenant_id,
                job_type=job_type.value,
                scheduled_for=scheduled_for or now,
                max_attempts=attempts_budget,
                payload=dict(payload or {}),
                idempotency_key=idempotency_key,
                source_event_id=source_event_id,
            ),
            now=now,
        )
        get_metrics().track_enqueue(job_type.value, deduplicated=job_id is None)
        if job_id is None:
            logger.debug(
                "Job already enqueued",
                job_type=job_type.value,
                idempotency_key=idempotency_key,
            )
            return None

        logger.info(
            "Job enqueued",
            job_id=job_id,
            job_type=job_type.value,
            tenant_id=tenant_id,
            source_event_id=source_event_id,
        )
        return job_id

    async def claim_next(self, worker_id: str) -> JobRecord | None:
        job = await self._store.claim_one_eligible_job(worker_id=worker_id, now=self._clock.now())
        if job is not None:
            get_metrics().track_claim(job.job_type)
        return job

    async def complete(self, job_id: str, *, worker_id: str | None = None) -> bool:
        """Mark a running job completed. Returns False (and changes nothing) once the job has moved on."""
        job = await self._require(job_id)
        if not await self._store.mark_job_completed(job_id=job_id, now=self._clock.now(), locked_by=worker_id):
            self._log_stale_outcome(job, "complete", worker_id)
            return False
        get_metrics().track_completion(job.job_type)
        return True

    async def fail(self, job_id: str, error_message: str, *, worker_id: str | None = None) -> bool:
        """Record a failed attempt: retry with backoff, or dead-letter once attempts run out.

        Only a running job is affected. A late report from a worker whose lock
        was reclaimed is ignored and returns False.
        """
        job = await self._require(job_id)
        now = self._clock.now()
        attempts = job.attempts + 1

        if attempts >= job.max_attempts:
            dead_letter_id = await self._store.dead_letter_job(
                job=job,
                attempts=attempts,
                error=error_message,
                now=now,
                locked_by=worker_id,
            )
            if dead_letter_id is None:
                self._log_stale_outcome(job, "fail", worker_id)
                return False
            get_metrics().track_failure(job.job_type, dead_lettered=True)
            await self._system_log.error(
                SOURCE,
                f"Job {job_id} moved to dead letter after {attempts} attempts",
                {
                    "job_id": job_id,
                    "job_type": job.job_type,
                    "tenant_id": job.tenant_id,
                    "dead_letter_id": dead_letter_id,
                    "attempts": attempts,
                    "error": error_message,
                },
            )
            await self._raise_dead_letter_alert(job, dead_letter_id, attempts, error_message)
            return True

        delay = self.compute_backoff(attempts)
        rescheduled = await self._store.reschedule_job(
            job_id=job_id,
            attempts=attempts,
            scheduled_for=now + delay,
            error=error_message,
            now=now,
            locked_by=worker_id,
        )
        if not rescheduled:
            self._log_stale_outcome(job, "fail", worker_id)
            return False
        get_metrics().track_failure(job.job_type, dead_lettered=False)
        logger.warning(
            "Job failed, retry scheduled",
            job_id=job_id,
            job_type=job.job_type,
            attempts=attempts,
            max_attempts=job.max_attempts,
            backoff_ms=int(delay.total_seconds() * 1000),
            error=error_message,
        )
        return True

    async def reaper_sweep(self) -> int:
        """Return `running` jobs whose lock is older than the lock timeout to `pending`."""
        now = self._clock.now()
        released = await self._store.release_stale_jobs(locked_before=now - self.lock_timeout, now=now)
        get_metrics().track_reaped(released)
        if released > 0:
            await self._system_log.warn(
                SOURCE,
                f"Reaper released {released} stuck job(s)",
                {
                    "count": released,
                    "lock_timeout_minutes": self._settings.worker_lock_timeout_minutes,
                },
            )
        return released

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    async def status_counts(self, tenant_id: str | None = None) -> dict[str, int]:
        return await self._store.count_jobs_by_status(tenant_id=tenant_id)

    async def pending_count(self, tenant_id: str | None = None) -> int:
        counts = await self.status_counts(tenant_id)
        return counts.get(JobStatus.PENDING.value, 0)

    async def failed_jobs(self, tenant_id: str | None = None, limit: int = 50) -> list[JobRecord]:
        return await self._store.list_jobs(
            status=JobStatus.FAILED.value,
            tenant_id=tenant_id,
            limit=limit,
        )

    async def dead_letter_jobs(
        self,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterJobRecord]:
        return await self._store.list_dead_letter_jobs(tenant_id=tenant_id, limit=limit)

    async def _require(self, job_id: str) -> JobRecord:
        job = await self._store.get_job(job_id)
        if job is None:
            raise NotFoundError(code="job.not_found", message=f"Job not found: {job_id}")
        return job

    def _log_stale_outcome(self, job: JobRecord, outcome: str, worker_id: str | None) -> None:
        logger.warning(
            "Ignoring outcome for job that is no longer running",
            job_id=job.id,
            job_type=job.job_type,
            outcome=outcome,
            worker_id=worker_id,
        )

    async def _raise_dead_letter_alert(
        self,
        job: JobRecord,
        dead_letter_id: str,
        attempts: int,
        error_message: str,
    ) -> None:
        if self._alerts is None:
            return
        try:
            await self._alerts.emit(
                job.tenant_id,
                EventType.SYSTEM_JOB_DEAD_LETTERED,
                entity_type="job",
                entity_id=job.id,
                payload={
                    "jobId": job.id,
                    "jobType": job.job_type,
                    "deadLetterId": dead_letter_id,
                    "attempts": attempts,
                    "lastError": error_message,
                },
                idempotency_key=f"dead_letter:{job.id}",
            )
        except Exception as exc:
            logger.error(
                "Failed to raise dead letter alert",
                job_id=job.id,
                dead_letter_id=dead_letter_id,
                error=str(exc),
            )
