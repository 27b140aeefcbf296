"""
Composition root.

`build_engine()` wires the store, system log, emitter, queue, handler registry,
worker pool and scheduler together. `run()` is the process entrypoint: it uses
the Postgres store, installs SIGINT/SIGTERM handlers and stops every loop
gracefully on shutdown.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Iterable
from dataclasses import dataclass

import asyncpg
import structlog

from workflow_engine.config import Settings, get_settings
from workflow_engine.db.client import close_db_pool, get_db_pool
from workflow_engine.events.emitter import EventEmitter
from workflow_engine.events.routing import validate_routes
from workflow_engine.jobs.handlers import HandlerRegistry, JobHandler, load_handlers
from workflow_engine.jobs.queue import JobQueue
from workflow_engine.jobs.worker import WorkerPool
from workflow_engine.kernel.errors import StoreError
from workflow_engine.kernel.time import Clock, SystemClock
from workflow_engine.logging import configure_logging
from workflow_engine.monitoring.metrics import maybe_start_metrics_server
from workflow_engine.scheduling.scheduler import Scheduler
from workflow_engine.store.port import WorkflowStore
from workflow_engine.store.postgres import PostgresWorkflowStore
from workflow_engine.system_log import SystemLog

logger = structlog.get_logger()

# Fail fast on an incomplete routing table.
validate_routes()


@dataclass
class WorkflowEngine:
    settings: Settings
    store: WorkflowStore
    system_log: SystemLog
    emitter: EventEmitter
    queue: JobQueue
    registry: HandlerRegistry
    workers: WorkerPool
    scheduler: Scheduler

    def start(self) -> None:
        if self.settings.worker_enabled:
            self.workers.start()
        else:
            logger.warning("Worker pool disabled via WORKER_ENABLED=false")

        if self.settings.scheduler_enabled:
            self.scheduler.start()
        else:
            logger.warning("Scheduler disabled via SCHEDULER_ENABLED=false")

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.workers.stop()
        logger.info("Workflow engine stopped")


def build_engine(
    settings: Settings,
    store: WorkflowStore,
    handlers: Iterable[JobHandler] | None = None,
    clock: Clock | None = None,
) -> WorkflowEngine:
    clock = clock or SystemClock()
    if handlers is None:
        handlers = load_handlers(settings.job_handler_modules)
    registry = HandlerRegistry(handlers)

    missing = registry.missing_job_types()
    if missing:
        logger.warning(
            "Job types without a handler will be retried and dead-lettered",
            job_types=[job_type.value for job_type in missing],
        )

    system_log = SystemLog(store, clock)
    emitter = EventEmitter(store, settings, clock)
    queue = JobQueue(store, settings, system_log, clock, alerts=emitter)
    workers = WorkerPool(queue, registry, system_log, settings)
    scheduler = Scheduler(store, emitter, system_log, settings, clock)

    return WorkflowEngine(
        settings=settings,
        store=store,
        system_log=system_log,
        emitter=emitter,
        queue=queue,
        registry=registry,
        workers=workers,
        scheduler=scheduler,
    )


async def open_postgres_store(settings: Settings) -> PostgresWorkflowStore:
    try:
        pool = await get_db_pool(settings)
    except (OSError, asyncpg.PostgresError) as exc:
        raise StoreError(
            code="store.unavailable",
            message=f"Could not connect to the workflow database: {exc}",
        ) from exc
    return PostgresWorkflowStore(pool, claim_strategy=settings.job_claim_strategy)


async def run(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    configure_logging(settings)
    maybe_start_metrics_server(settings.metrics_port, component="workflow-engine")

    store = await open_postgres_store(settings)
    engine = build_engine(settings, store)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(shutdown.set))

    logger.info(
        "Workflow engine starting",
        worker_enabled=settings.worker_enabled,
        scheduler_enabled=settings.scheduler_enabled,
        claim_strategy=settings.job_claim_strategy,
    )
    engine.start()
    try:
        await shutdown.wait()
        logger.info("Shutdown signal received")
    finally:
        await engine.stop()
        await close_db_pool()
