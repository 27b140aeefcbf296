"""
Worker pool

Runs `concurrency` polling loops that claim jobs from the durable queue and
dispatch them to registered handlers, plus one reaper loop that returns jobs
abandoned by crashed workers to `pending`.

Handlers run outside any store transaction. A handler that raises, or a job
with no registered handler, goes through `JobQueue.fail()` so it is retried
with backoff and eventually dead-lettered rather than crashing the worker.
"""

from __future__ import annotations

import time

import structlog

from workflow_engine.config import Settings
from workflow_engine.jobs.handlers import HandlerRegistry
from workflow_engine.jobs.queue import JobQueue
from workflow_engine.kernel.ids import new_worker_id
from workflow_engine.kernel.loop import PollingLoop
from workflow_engine.monitoring.metrics import get_metrics
from workflow_engine.store.records import JobRecord
from workflow_engine.system_log import SystemLog

logger = structlog.get_logger()

SOURCE = "worker"


class WorkerPool:
    def __init__(
        self,
        queue: JobQueue,
        registry: HandlerRegistry,
        system_log: SystemLog,
        settings: Settings,
    ) -> None:
        self._queue = queue
        self._registry = registry
        self._system_log = system_log
        self._settings = settings

        self.worker_ids = [new_worker_id() for _ in range(settings.worker_concurrency)]
        poll_seconds = settings.worker_poll_interval_ms / 1000
        self._loops = [
            PollingLoop(worker_id, self._make_body(worker_id), interval_seconds=poll_seconds)
            for worker_id in self.worker_ids
        ]
        self._reaper = PollingLoop(
            "reaper",
            self._reap,
            interval_seconds=settings.worker_reaper_interval_ms / 1000,
        )

    @property
    def running(self) -> bool:
        return any(loop.running for loop in self._loops) or self._reaper.running

    def start(self) -> None:
        logger.info(
            "Worker pool starting",
            workers=self.worker_ids,
            poll_interval_ms=self._settings.worker_poll_interval_ms,
            lock_timeout_minutes=self._settings.worker_lock_timeout_minutes,
        )
        self._reaper.start()
        for loop in self._loops:
            loop.start()

    async def stop(self) -> None:
        for loop in [*self._loops, self._reaper]:
            await loop.stop()
        logger.info("Worker pool stopped", workers=self.worker_ids)

    def _make_body(self, worker_id: str):
        async def body() -> bool:
            return await self.work_once(worker_id)

        return body

    async def _reap(self) -> bool:
        await self._queue.reaper_sweep()
        return False

    async def work_once(self, worker_id: str) -> bool:
        """Claim and process at most one job. Returns True if a job was claimed."""
        job = await self._queue.claim_next(worker_id)
        if job is None:
            return False
        with structlog.contextvars.bound_contextvars(
            job_id=job.id,
            job_type=job.job_type,
            tenant_id=job.tenant_id,
            worker_id=worker_id,
        ):
            await self.process(job)
        return True

    async def process(self, job: JobRecord) -> None:
        handler = self._registry.get(job.job_type)
        if handler is None:
            message = f"No handler registered for job type: {job.job_type}"
            await self._system_log.warn(SOURCE, message, {"job_id": job.id, "job_type": job.job_type})
            await self._fail(job, message)
            return

        logger.info(
            "Executing job",
            attempts=job.attempts,
            max_attempts=job.max_attempts,
        )
        started = time.perf_counter()
        try:
            await handler.handle(job)
        except Exception as exc:
            duration = time.perf_counter() - started
            get_metrics().observe_job_duration(job.job_type, "failed", duration)
            message = str(exc) or exc.__class__.__name__
            await self._system_log.error(
                SOURCE,
                f"Job {job.id} ({job.job_type}) failed: {message}",
                {
                    "job_id": job.id,
                    "job_type": job.job_type,
                    "tenant_id": job.tenant_id,
                    "attempts": job.attempts,
                    "error": message,
                },
            )
            await self._fail(job, message)
            return

        duration = time.perf_counter() - started
        get_metrics().observe_job_duration(job.job_type, "completed", duration)
        try:
            completed = await self._queue.complete(job.id, worker_id=job.locked_by)
        except Exception as exc:
            # The reaper makes the job runnable again once its lock expires.
            logger.error("Failed to mark job completed", error=str(exc))
            return
        if completed:
            logger.info("Job completed", duration_seconds=round(duration, 3))

    async def _fail(self, job: JobRecord, message: str) -> None:
        try:
            await self._queue.fail(job.id, message, worker_id=job.locked_by)
        except Exception as exc:
            logger.error("Failed to mark job failed", error=str(exc), job_error=message)
