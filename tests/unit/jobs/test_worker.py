import asyncio
from datetime import timedelta

import pytest

from workflow_engine.jobs.handlers import HandlerRegistry
from workflow_engine.jobs.types import JobType
from workflow_engine.jobs.worker import WorkerPool
from tests.support.handlers import FailingHandler, RecordingHandler


def _pool(queue, system_log, settings, *handlers):
    return WorkerPool(queue, HandlerRegistry(handlers), system_log, settings)


@pytest.mark.asyncio
async def test_successful_handler_completes_job(queue, system_log, settings, memory_store):
    handler = RecordingHandler(JobType.ENRICH_LEAD)
    pool = _pool(queue, system_log, settings, handler)
    job_id = await queue.enqueue("t1", JobType.ENRICH_LEAD, payload={"leadId": "l1"})

    assert await pool.work_once(pool.worker_ids[0]) is True

    assert [job.id for job in handler.seen] == [job_id]
    assert handler.seen[0].payload == {"leadId": "l1"}
    assert (await memory_store.get_job(job_id)).status == "completed"


@pytest.mark.asyncio
async def test_idle_worker_reports_no_work(queue, system_log, settings):
    pool = _pool(queue, system_log, settings)
    assert await pool.work_once(pool.worker_ids[0]) is False


@pytest.mark.asyncio
async def test_missing_handler_goes_through_retry_path(queue, system_log, settings, memory_store):
    pool = _pool(queue, system_log, settings)
    job_id = await queue.enqueue("t1", JobType.CREATE_INVOICE)

    await pool.work_once(pool.worker_ids[0])

    job = await memory_store.get_job(job_id)
    assert job.status == "pending"
    assert job.attempts == 1
    assert job.last_error == "No handler registered for job type: create_invoice"
    assert len(await memory_store.list_system_logs(level="warn")) == 1


@pytest.mark.asyncio
async def test_handler_error_is_logged_and_retried(queue, system_log, settings, memory_store):
    handler = FailingHandler(JobType.ENRICH_LEAD, message="crm api 503")
    pool = _pool(queue, system_log, settings, handler)
    job_id = await queue.enqueue("t1", JobType.ENRICH_LEAD)

    await pool.work_once(pool.worker_ids[0])

    job = await memory_store.get_job(job_id)
    assert job.status == "pending"
    assert job.attempts == 1
    assert job.last_error == "crm api 503 #1"
    errors = await memory_store.list_system_logs(level="error")
    assert len(errors) == 1
    assert errors[0].context["job_id"] == job_id


def test_pool_uses_distinct_worker_ids(queue, system_log, settings):
    pool = _pool(queue, system_log, settings)
    assert len(set(pool.worker_ids)) == settings.worker_concurrency


@pytest.mark.asyncio
async def test_started_pool_drains_queue_and_stops(queue, system_log, settings, memory_store):
    handler = RecordingHandler(JobType.ENRICH_LEAD)
    pool = _pool(queue, system_log, settings, handler)
    job_ids = [await queue.enqueue("t1", JobType.ENRICH_LEAD) for _ in range(5)]

    pool.start()
    try:
        for _ in range(200):
            if len(handler.seen) == len(job_ids):
                break
            await asyncio.sleep(0.01)
    finally:
        await pool.stop()

    assert sorted(job.id for job in handler.seen) == sorted(job_ids)
    assert not pool.running
    counts = await memory_store.count_jobs_by_status()
    assert counts["completed"] == 5


@pytest.mark.asyncio
async def test_slow_handler_does_not_complete_a_reclaimed_job(queue, system_log, settings, memory_store, fake_clock):
    class SlowHandler:
        job_type = JobType.ENRICH_LEAD

        async def handle(self, job):
            # lock expires and another worker picks the job up mid-run
            fake_clock.advance(timedelta(minutes=11))
            assert await queue.reaper_sweep() == 1
            assert (await queue.claim_next("worker-other000")).id == job.id

    pool = _pool(queue, system_log, settings, SlowHandler())
    job_id = await queue.enqueue("t1", JobType.ENRICH_LEAD)

    assert await pool.work_once(pool.worker_ids[0]) is True

    job = await memory_store.get_job(job_id)
    assert job.status == "running"
    assert job.locked_by == "worker-other000"
