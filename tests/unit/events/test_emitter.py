from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from workflow_engine.events.emitter import EventEmitter
from workflow_engine.events.types import EventType
from workflow_engine.kernel.errors import ConflictError, ValidationError


@pytest.mark.asyncio
async def test_emit_twice_with_same_key_returns_same_id(emitter, memory_store):
    first = await emitter.emit("t1", EventType.LEAD_CREATED, payload={"leadId": "l1"}, idempotency_key="lead:l1")
    second = await emitter.emit("t1", EventType.LEAD_CREATED, payload={"leadId": "l1"}, idempotency_key="lead:l1")

    assert first == second
    assert len(await memory_store.list_recent_events()) == 1
    jobs = await memory_store.list_jobs()
    assert [job.job_type for job in jobs] == ["enrich_lead"]


@pytest.mark.asyncio
async def test_fan_out_creates_one_job_per_route(emitter, memory_store, fake_clock):
    event_id = await emitter.emit(
        "t1",
        EventType.DEAL_WON,
        entity_type="deal",
        entity_id="d1",
        payload={"dealId": "d1"},
    )

    jobs = await memory_store.list_jobs()
    assert sorted(job.job_type for job in jobs) == ["create_invoice", "generate_contract"]
    for job in jobs:
        assert job.source_event_id == event_id
        assert job.idempotency_key == f"{job.job_type}:{event_id}"
        assert job.payload == {"dealId": "d1"}
        assert job.status == "pending"
        assert job.max_attempts == 3
        assert job.scheduled_for == fake_clock.now()


@pytest.mark.asyncio
async def test_event_without_routes_is_recorded_without_jobs(emitter, memory_store):
    await emitter.emit("t1", EventType.LEAD_REACTIVATED)

    assert len(await memory_store.list_recent_events()) == 1
    assert await memory_store.list_jobs() == []


@pytest.mark.asyncio
async def test_unknown_event_type_is_rejected(emitter):
    with pytest.raises(ValidationError) as exc_info:
        await emitter.emit("t1", "lead.exploded")
    assert exc_info.value.code == "event.unknown_type"


@pytest.mark.asyncio
async def test_lost_insert_race_returns_existing_event_without_fan_out(settings, fake_clock):
    tx = AsyncMock()
    tx.find_event_id.side_effect = [None, "evt_winner"]
    tx.insert_event.return_value = None

    class RacingStore:
        @asynccontextmanager
        async def transaction(self):
            yield tx

    emitter = EventEmitter(RacingStore(), settings, fake_clock)
    event_id = await emitter.emit("t1", EventType.DEAL_WON, idempotency_key="deal:d1:won")

    assert event_id == "evt_winner"
    tx.insert_job.assert_not_called()


@pytest.mark.asyncio
async def test_job_insert_failure_rolls_back_the_event(emitter, memory_store, monkeypatch):
    from workflow_engine.store import memory

    async def broken_insert_job(self, job, *, now):
        raise RuntimeError("disk full")

    monkeypatch.setattr(memory._MemoryTransaction, "insert_job", broken_insert_job)

    with pytest.raises(RuntimeError):
        await emitter.emit("t1", EventType.LEAD_CREATED, idempotency_key="lead:l2")

    assert await memory_store.list_recent_events() == []


@pytest.mark.asyncio
async def test_conflict_without_a_winning_row_is_an_error(settings, fake_clock):
    tx = AsyncMock()
    tx.find_event_id.return_value = None
    tx.insert_event.return_value = None

    class VanishingStore:
        @asynccontextmanager
        async def transaction(self):
            yield tx

    emitter = EventEmitter(VanishingStore(), settings, fake_clock)

    with pytest.raises(ConflictError) as exc_info:
        await emitter.emit("t1", EventType.DEAL_WON, idempotency_key="deal:d1:won")

    assert exc_info.value.code == "event.insert_conflict"
    tx.insert_job.assert_not_called()
