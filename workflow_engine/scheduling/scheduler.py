"""
Scheduler

Each tick runs two passes over the store:

1. Cron pass: every enabled cron task whose `next_run_at` is null or due emits
   its synthetic event, then gets `last_run_at = now` and the next cron slot
   strictly after `now`. A failed fire leaves `next_run_at` alone so the task
   stays due and is retried on the next tick.
2. One-off pass: every unexecuted scheduled task whose `execute_at` is due is
   marked executed, then its event is emitted with the idempotency key
   `scheduled_task:{id}`. If emission raises, `executed` is reverted.

A crash between marking a one-off task executed and emitting its event loses
that event; this at-most-once window is accepted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from apscheduler.triggers.cron import CronTrigger

from workflow_engine.config import Settings
from workflow_engine.events.emitter import EventEmitter
from workflow_engine.kernel.errors import ValidationError
from workflow_engine.kernel.loop import PollingLoop
from workflow_engine.kernel.time import UTC, Clock, SystemClock, coerce_utc
from workflow_engine.monitoring.metrics import get_metrics
from workflow_engine.scheduling.scope import TenantScope
from workflow_engine.scheduling.tasks import (
    CRON_TASK_EVENTS,
    ONE_OFF_TASK_EVENTS,
    SYSTEM_CRON_TASKS,
)
from workflow_engine.store.port import WorkflowStore
from workflow_engine.store.records import CronTaskRecord, ScheduledTaskRecord
from workflow_engine.system_log import SystemLog

logger = structlog.get_logger()

SOURCE = "scheduler"


_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _day_number(token: str) -> int:
    token = token.strip().lower()
    if token in _DAY_NAMES:
        return _DAY_NAMES.index(token)
    value = int(token)
    if not 0 <= value <= 7:
        raise ValueError(f"day of week out of range: {token}")
    return value


def _crontab_day_of_week(field: str) -> str:
    """Rewrite a crontab day-of-week field (0 and 7 are Sunday) as day names.

    APScheduler numbers days from Monday, so numeric fields cannot be passed through.
    """
    if field == "*":
        return field
    days: set[int] = set()
    for part in field.split(","):
        base, _, step = part.partition("/")
        stride = int(step) if step else 1
        if base == "*":
            low, high = 0, 6
        elif "-" in base:
            first, last = base.split("-", 1)
            low, high = _day_number(first), _day_number(last)
        else:
            low = high = _day_number(base)
            if step:
                high = 6
        if stride < 1 or low > high:
            raise ValueError(f"invalid day of week: {part}")
        days.update(day % 7 for day in range(low, high + 1, stride))
    return ",".join(_DAY_NAMES[day] for day in sorted(days))


def crontab_trigger(expression: str) -> CronTrigger:
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"expected 5 fields, got {len(fields)}")
    minute, hour, day, month, day_of_week = fields
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_crontab_day_of_week(day_of_week),
        timezone=UTC,
    )


def compute_next_run(expression: str, now: datetime) -> datetime:
    """Next slot of a 5-field crontab expression strictly after `now` (UTC)."""
    try:
        trigger = crontab_trigger(expression)
    except ValueError as exc:
        raise ValidationError(
            code="cron.expression_invalid",
            message=f"Invalid cron expression: {expression!r}",
            meta={"expression": expression, "error": str(exc)},
        ) from exc

    # CronTrigger returns the first slot >= the given time; nudge past `now`.
    next_run = trigger.get_next_fire_time(None, coerce_utc(now) + timedelta(microseconds=1))
    if next_run is None:
        raise ValidationError(
            code="cron.expression_exhausted",
            message=f"Cron expression has no future run: {expression!r}",
            meta={"expression": expression},
        )
    return coerce_utc(next_run)


@dataclass(frozen=True)
class TickReport:
    cron_fired: int = 0
    one_off_fired: int = 0
    errors: int = 0


class Scheduler:
    def __init__(
        self,
        store: WorkflowStore,
        emitter: EventEmitter,
        system_log: SystemLog,
        settings: Settings,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._emitter = emitter
        self._system_log = system_log
        self._settings = settings
        self._clock = clock or SystemClock()
        self._loop = PollingLoop(
            "scheduler",
            self._tick_body,
            interval_seconds=settings.scheduler_poll_interval_ms / 1000,
        )

    @property
    def running(self) -> bool:
        return self._loop.running

    def start(self) -> None:
        logger.info("Scheduler starting", poll_interval_ms=self._settings.scheduler_poll_interval_ms)
        self._loop.start()

    async def stop(self) -> None:
        await self._loop.stop()

    async def _tick_body(self) -> bool:
        await self.tick()
        return False

    async def tick(self) -> TickReport:
        cron_fired = one_off_fired = errors = 0

        try:
            cron_fired, cron_errors = await self.run_cron_pass()
            errors += cron_errors
        except Exception as exc:
            errors += 1
            await self._system_log.error(SOURCE, f"Scheduler error: {exc}", {"pass": "cron"})

        try:
            one_off_fired, one_off_errors = await self.run_one_off_pass()
            errors += one_off_errors
        except Exception as exc:
            errors += 1
            await self._system_log.error(SOURCE, f"Scheduler error: {exc}", {"pass": "one_off"})

        return TickReport(cron_fired=cron_fired, one_off_fired=one_off_fired, errors=errors)

    # ------------------------------------------------------------------
    # Cron
    # ------------------------------------------------------------------

    async def run_cron_pass(self) -> tuple[int, int]:
        fired = errors = 0
        for task in await self._store.list_due_cron_tasks(now=self._clock.now()):
            event_type = CRON_TASK_EVENTS.get(task.task_type)
            if event_type is None:
                logger.warning("Unknown cron task type", task_id=task.id, task_type=task.task_type)
                get_metrics().track_scheduler_fire("cron", "skipped")
                continue

            if await self._fire_cron_task(task):
                fired += 1
            else:
                errors += 1
        return fired, errors

    async def _fire_cron_task(self, task: CronTaskRecord) -> bool:
        scope = TenantScope.resolve(task.tenant_id, task.config)
        try:
            await self._emitter.emit(
                scope.tenant_id,
                CRON_TASK_EVENTS[task.task_type],
                payload={"taskType": task.task_type, "taskId": task.id},
            )
            now = self._clock.now()
            await self._store.mark_cron_task_fired(
                task_id=task.id,
                last_run_at=now,
                next_run_at=compute_next_run(task.cron_expression, now),
            )
        except Exception as exc:
            get_metrics().track_scheduler_fire("cron", "error")
            await self._system_log.error(
                SOURCE,
                f"Cron task failed: {task.task_type}",
                {"task_id": task.id, "error": str(exc)},
            )
            return False

        get_metrics().track_scheduler_fire("cron", "fired")
        logger.debug(
            "Cron task fired",
            task_id=task.id,
            task_type=task.task_type,
            tenant_id=scope.tenant_id,
        )
        return True

    async def upsert_cron_task(
        self,
        task_type: str,
        cron_expression: str,
        *,
        tenant_id: str | None = None,
        enabled: bool = True,
        next_run_at: datetime | None = None,
        config: dict[str, Any] | None = None,
    ) -> str:
        if task_type not in CRON_TASK_EVENTS:
            raise ValidationError(
                code="cron.task_type_invalid",
                message=f"Unknown cron task type: {task_type}",
                meta={"valid_types": sorted(CRON_TASK_EVENTS)},
            )
        compute_next_run(cron_expression, self._clock.now())
        return await self._store.upsert_cron_task(
            task_type=task_type,
            cron_expression=cron_expression,
            tenant_id=tenant_id,
            enabled=enabled,
            next_run_at=coerce_utc(next_run_at) if next_run_at else None,
            config=config,
        )

    async def seed_system_cron_tasks(self) -> list[str]:
        """Install the default all-tenant cron schedule, due immediately."""
        now = self._clock.now()
        task_ids = []
        for seed in SYSTEM_CRON_TASKS:
            task_ids.append(
                await self.upsert_cron_task(seed.task_type, seed.cron_expression, next_run_at=now)
            )
        logger.info("Seeded system cron tasks", count=len(task_ids))
        return task_ids

    # ------------------------------------------------------------------
    # One-off
    # ------------------------------------------------------------------

    async def run_one_off_pass(self) -> tuple[int, int]:
        fired = errors = 0
        for task in await self._store.list_due_scheduled_tasks(now=self._clock.now()):
            if task.task_type not in ONE_OFF_TASK_EVENTS:
                logger.warning("Unknown scheduled task type", task_id=task.id, task_type=task.task_type)
                try:
                    await self._store.set_scheduled_task_executed(task_id=task.id, executed=True)
                except Exception as exc:
                    errors += 1
                    await self._system_log.error(
                        SOURCE,
                        f"One-off task {task.id} could not be skipped",
                        {"task_id": task.id, "task_type": task.task_type, "error": str(exc)},
                    )
                    continue
                get_metrics().track_scheduler_fire("one_off", "skipped")
                continue

            if await self._fire_one_off_task(task):
                fired += 1
            else:
                errors += 1
        return fired, errors

    async def _fire_one_off_task(self, task: ScheduledTaskRecord) -> bool:
        scope = TenantScope.resolve(task.tenant_id, task.config)
        marked = False
        try:
            await self._store.set_scheduled_task_executed(task_id=task.id, executed=True)
            marked = True
            await self._emitter.emit(
                scope.tenant_id,
                ONE_OFF_TASK_EVENTS[task.task_type],
                payload={"taskType": task.task_type, "taskId": task.id, "config": task.config},
                idempotency_key=f"scheduled_task:{task.id}",
            )
        except Exception as exc:
            get_metrics().track_scheduler_fire("one_off", "error")
            await self._system_log.error(
                SOURCE,
                f"One-off task {task.id} failed",
                {"task_id": task.id, "task_type": task.task_type, "error": str(exc)},
            )
            if marked:
                await self._unmark_one_off_task(task)
            return False

        get_metrics().track_scheduler_fire("one_off", "fired")
        logger.debug(
            "One-off task fired",
            task_id=task.id,
            task_type=task.task_type,
            tenant_id=scope.tenant_id,
        )
        return True

    async def _unmark_one_off_task(self, task: ScheduledTaskRecord) -> None:
        try:
            await self._store.set_scheduled_task_executed(task_id=task.id, executed=False)
        except Exception as exc:
            # The task stays executed; its event was not emitted.
            logger.error("Could not revert one-off task", task_id=task.id, error=str(exc))

    async def schedule_one_off(
        self,
        task_type: str,
        execute_at: datetime,
        config: dict[str, Any] | None = None,
        tenant_id: str | None = None,
    ) -> str:
        if task_type not in ONE_OFF_TASK_EVENTS:
            raise ValidationError(
                code="scheduled_task.type_invalid",
                message=f"Unknown scheduled task type: {task_type}",
                meta={"valid_types": sorted(ONE_OFF_TASK_EVENTS)},
            )
        task_id = await self._store.insert_scheduled_task(
            task_type=task_type,
            execute_at=coerce_utc(execute_at),
            tenant_id=tenant_id,
            config=dict(config or {}),
            now=self._clock.now(),
        )
        logger.info(
            "One-off task scheduled",
            task_id=task_id,
            task_type=task_type,
            execute_at=execute_at.isoformat(),
            tenant_id=tenant_id,
        )
        return task_id
