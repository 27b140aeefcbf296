"""Event emitter.

`emit()` records a domain event and fans it out into jobs in one store
transaction. Re-emitting with a known idempotency key returns the existing
event id and creates nothing.
"""

from __future__ import annotations

from typing import Any

import structlog

from workflow_engine.config import Settings
from workflow_engine.events.routing import job_types_for
from workflow_engine.events.types import EventType
from workflow_engine.kernel.errors import ConflictError, ValidationError
from workflow_engine.kernel.time import Clock, SystemClock
from workflow_engine.monitoring.metrics import get_metrics
from workflow_engine.store.port import WorkflowStore
from workflow_engine.store.records import NewEvent, NewJob

logger = structlog.get_logger()


def fanout_idempotency_key(job_type: str, event_id: str) -> str:
    return f"{job_type}:{event_id}"


def _coerce_event_type(value: EventType | str) -> EventType:
    try:
        return EventType(value)
    except ValueError as exc:
        raise ValidationError(
            code="event.unknown_type",
            message=f"Unknown event type: {value}",
            meta={"event_type": str(value)},
        ) from exc


class EventEmitter:
    def __init__(
        self,
        store: WorkflowStore,
        settings: Settings,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock or SystemClock()

    async def emit(
        self,
        tenant_id: str,
        event_type: EventType | str,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        payload: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> str:
        if not tenant_id:
            raise ValidationError(code="event.tenant_required", message="tenant_id is required")
        event_type = _coerce_event_type(event_type)
        payload = dict(payload or {})
        now = self._clock.now()
        metrics = get_metrics()

        async with self._store.transaction() as tx:
            if idempotency_key:
                existing_id = await tx.find_event_id(idempotency_key)
                if existing_id:
                    logger.debug(
                        "Event already emitted",
                        event_id=existing_id,
                        event_type=event_type.value,
                        idempotency_key=idempotency_key,
                    )
                    metrics.track_event(event_type.value, deduplicated=True)
                    return existing_id

            event_id = await tx.insert_event(
                NewEvent(
                    tenant_id=tenant_id,
                    event_type=event_type.value,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    payload=payload,
                    metadata=dict(metadata or {}),
                    idempotency_key=idempotency_key,
                ),
                now=now,
            )
            if event_id is None:
                # Lost an insert race on the same idempotency key.
                existing_id = await tx.find_event_id(idempotency_key) if idempotency_key else None
                if existing_id is None:
                    raise ConflictError(
                        code="event.insert_conflict",
                        message="Event insert conflicted but no existing event was found",
                        meta={"idempotency_key": idempotency_key},
                    )
                metrics.track_event(event_type.value, deduplicated=True)
                return existing_id

            job_types = job_types_for(event_type)
            for job_type in job_types:
                job_id = await tx.insert_job(
                    NewJob(
                        tenant_id=tenant_id,
                        job_type=job_type.value,
                        scheduled_for=now,
                        max_attempts=self._settings.job_max_attempts,
                        payload=dict(payload),
                        idempotency_key=fanout_idempotency_key(job_type.value, event_id),
                        source_event_id=event_id,
                    ),
                    now=now,
                )
                metrics.track_enqueue(job_type.value, deduplicated=job_id is None)

        metrics.track_event(event_type.value, deduplicated=False)
        logger.info(
            "Event emitted",
            event_id=event_id,
            event_type=event_type.value,
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            jobs=[job_type.value for job_type in job_types],
        )
        return event_id
