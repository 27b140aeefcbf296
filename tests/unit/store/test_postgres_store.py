from datetime import datetime, timedelta, timezone

import pytest

from workflow_engine.store.postgres import PostgresWorkflowStore
from workflow_engine.store.records import NewEvent, NewJob

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _job_row(**overrides):
    row = {
        "id": "job_1",
        "tenant_id": "t1",
        "source_event_id": None,
        "job_type": "enrich_lead",
        "status": "running",
        "idempotency_key": None,
        "payload": {"leadId": "l1"},
        "attempts": 0,
        "max_attempts": 3,
        "scheduled_for": NOW.replace(tzinfo=None),
        "started_at": NOW,
        "completed_at": None,
        "locked_by": "worker-aaaaaaaa",
        "locked_at": NOW,
        "last_error": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def _conn(pool):
    return pool.acquire.return_value.__aenter__.return_value


def test_unknown_claim_strategy_is_rejected(mock_db_pool):
    with pytest.raises(ValueError):
        PostgresWorkflowStore(mock_db_pool, claim_strategy="pessimistic")


@pytest.mark.asyncio
async def test_insert_job_reports_duplicates_as_none(mock_db_pool):
    conn = _conn(mock_db_pool)
    store = PostgresWorkflowStore(mock_db_pool)
    job = NewJob(tenant_id="t1", job_type="enrich_lead", scheduled_for=NOW, max_attempts=3, idempotency_key="k1")

    conn.fetchrow.return_value = None
    assert await store.insert_job(job, now=NOW) is None

    conn.fetchrow.return_value = {"id": "job_1"}
    assert await store.insert_job(job, now=NOW) == "job_1"

    sql = conn.fetchrow.call_args.args[0]
    assert "ON CONFLICT (idempotency_key) DO NOTHING" in sql


@pytest.mark.asyncio
async def test_skip_locked_claim_maps_row(mock_db_pool):
    conn = _conn(mock_db_pool)
    conn.fetchrow.return_value = _job_row()
    store = PostgresWorkflowStore(mock_db_pool)

    job = await store.claim_one_eligible_job(worker_id="worker-aaaaaaaa", now=NOW)

    assert job.id == "job_1"
    assert job.status == "running"
    assert job.payload == {"leadId": "l1"}
    # naive timestamps come back as UTC
    assert job.scheduled_for == NOW
    sql = conn.fetchrow.call_args.args[0]
    assert "FOR UPDATE SKIP LOCKED" in sql
    assert conn.fetchrow.call_args.args[1:] == ("worker-aaaaaaaa", NOW)


@pytest.mark.asyncio
async def test_optimistic_claim_moves_past_lost_races(mock_db_pool):
    conn = _conn(mock_db_pool)
    conn.fetch.return_value = [{"id": "job_1"}, {"id": "job_2"}, {"id": "job_3"}]
    conn.fetchrow.side_effect = [
        None,
        _job_row(id="job_2", locked_by="worker-bbbbbbbb"),
        _job_row(id="job_3"),
    ]
    store = PostgresWorkflowStore(mock_db_pool, claim_strategy="optimistic")

    job = await store.claim_one_eligible_job(worker_id="worker-aaaaaaaa", now=NOW)

    assert job.id == "job_3"
    sql = conn.fetchrow.call_args.args[0]
    assert "AND status = 'pending'" in sql
    assert "SKIP LOCKED" not in sql


@pytest.mark.asyncio
async def test_optimistic_claim_with_no_candidates(mock_db_pool):
    store = PostgresWorkflowStore(mock_db_pool, claim_strategy="optimistic")
    assert await store.claim_one_eligible_job(worker_id="w", now=NOW) is None


@pytest.mark.asyncio
async def test_release_stale_jobs_counts_returned_rows(mock_db_pool):
    conn = _conn(mock_db_pool)
    conn.fetch.return_value = [{"id": "job_1"}, {"id": "job_2"}]
    store = PostgresWorkflowStore(mock_db_pool)

    count = await store.release_stale_jobs(locked_before=NOW - timedelta(minutes=10), now=NOW)

    assert count == 2
    assert "status = 'running'" in conn.fetch.call_args.args[0]


@pytest.mark.asyncio
async def test_dead_letter_archives_and_fails_in_one_transaction(mock_db_pool):
    from workflow_engine.store.postgres import _job_from_row

    conn = _conn(mock_db_pool)
    store = PostgresWorkflowStore(mock_db_pool)
    job = _job_from_row(_job_row(attempts=2))

    dead_letter_id = await store.dead_letter_job(
        job=job, attempts=3, error="third", now=NOW, locked_by="worker-aaaaaaaa"
    )

    assert dead_letter_id
    assert conn.transaction.called
    update_call, insert_call = conn.execute.call_args_list
    assert "status = 'failed'" in update_call.args[0]
    assert "status = 'running'" in update_call.args[0]
    assert update_call.args[-1] == "worker-aaaaaaaa"
    assert "INSERT INTO dead_letter_jobs" in insert_call.args[0]


@pytest.mark.asyncio
async def test_dead_letter_of_job_no_longer_running_writes_nothing(mock_db_pool):
    from workflow_engine.store.postgres import _job_from_row

    conn = _conn(mock_db_pool)
    conn.execute.return_value = "UPDATE 0"
    store = PostgresWorkflowStore(mock_db_pool)

    assert await store.dead_letter_job(job=_job_from_row(_job_row()), attempts=3, error="x", now=NOW) is None
    assert conn.execute.call_count == 1
    assert "INSERT INTO dead_letter_jobs" not in conn.execute.call_args.args[0]


@pytest.mark.asyncio
async def test_outcome_updates_only_touch_running_jobs(mock_db_pool):
    conn = _conn(mock_db_pool)
    store = PostgresWorkflowStore(mock_db_pool)

    assert await store.mark_job_completed(job_id="job_1", now=NOW, locked_by="worker-aaaaaaaa") is True
    complete_sql = conn.execute.call_args.args[0]
    assert "status = 'running'" in complete_sql
    assert "locked_by = $3" in complete_sql

    conn.execute.return_value = "UPDATE 0"
    assert (
        await store.reschedule_job(job_id="job_1", attempts=1, scheduled_for=NOW, error="x", now=NOW)
        is False
    )
    assert "status = 'running'" in conn.execute.call_args.args[0]
    assert conn.execute.call_args.args[-1] is None


@pytest.mark.asyncio
async def test_count_jobs_by_status_fills_missing_statuses(mock_db_pool):
    conn = _conn(mock_db_pool)
    conn.fetch.return_value = [{"status": "pending", "count": 4}, {"status": "failed", "count": 1}]
    store = PostgresWorkflowStore(mock_db_pool)

    assert await store.count_jobs_by_status(tenant_id="t1") == {
        "pending": 4,
        "running": 0,
        "completed": 0,
        "failed": 1,
    }


@pytest.mark.asyncio
async def test_transaction_wraps_event_and_job_inserts(mock_db_pool):
    conn = _conn(mock_db_pool)
    conn.fetchrow.side_effect = [{"id": "evt_1"}, None]
    conn.fetchval.return_value = "evt_1"
    store = PostgresWorkflowStore(mock_db_pool)

    async with store.transaction() as tx:
        event_id = await tx.insert_event(NewEvent(tenant_id="t1", event_type="lead.created", idempotency_key="k"), now=NOW)
        job_id = await tx.insert_job(
            NewJob(tenant_id="t1", job_type="enrich_lead", scheduled_for=NOW, max_attempts=3, idempotency_key="enrich_lead:evt_1"),
            now=NOW,
        )
        existing = await tx.find_event_id("k")

    assert (event_id, job_id, existing) == ("evt_1", None, "evt_1")
    assert conn.transaction.called


@pytest.mark.asyncio
async def test_upsert_cron_task_updates_existing_row(mock_db_pool):
    conn = _conn(mock_db_pool)
    conn.fetchval.return_value = "cron_1"
    store = PostgresWorkflowStore(mock_db_pool)

    task_id = await store.upsert_cron_task(task_type="deal_decay_check", cron_expression="0 8 * * *")

    assert task_id == "cron_1"
    assert "UPDATE cron_tasks" in conn.execute.call_args.args[0]


@pytest.mark.asyncio
async def test_upsert_cron_task_inserts_new_row(mock_db_pool):
    conn = _conn(mock_db_pool)
    conn.fetchval.return_value = None
    store = PostgresWorkflowStore(mock_db_pool)

    task_id = await store.upsert_cron_task(task_type="deal_decay_check", cron_expression="0 8 * * *", tenant_id="t1")

    assert task_id
    assert "INSERT INTO cron_tasks" in conn.execute.call_args.args[0]


@pytest.mark.asyncio
async def test_due_scheduled_tasks_are_mapped(mock_db_pool):
    conn = _conn(mock_db_pool)
    conn.fetch.return_value = [
        {
            "id": "task_1",
            "tenant_id": None,
            "task_type": "referral_due",
            "execute_at": NOW,
            "executed": False,
            "config": None,
            "created_at": NOW,
        }
    ]
    store = PostgresWorkflowStore(mock_db_pool)

    [task] = await store.list_due_scheduled_tasks(now=NOW)

    assert task.id == "task_1"
    assert task.config == {}
    assert task.executed is False
