"""
Operator CLI for the workflow engine.

  workflow-engine run
  workflow-engine seed-cron
  workflow-engine stats --tenant t_123
  workflow-engine jobs --status pending --limit 20
  workflow-engine dead-letters --limit 10
  workflow-engine schedules
  workflow-engine events --tenant t_123
  workflow-engine logs --level error
  workflow-engine schedule referral_due --at 2026-11-01T09:00:00Z --tenant t_123

Every command except `run` prints one JSON object per line.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from datetime import datetime
from typing import Any

import structlog

from workflow_engine.config import get_settings
from workflow_engine.db.client import close_db_pool
from workflow_engine.jobs.types import JobStatus
from workflow_engine.kernel.errors import ValidationError, WorkflowError
from workflow_engine.kernel.time import isoformat_z, parse_iso8601
from workflow_engine.logging import configure_logging
from workflow_engine.runtime import build_engine, open_postgres_store, run
from workflow_engine.store.port import WorkflowStore

logger = structlog.get_logger()


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return isoformat_z(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {k: _jsonable(v) for k, v in dataclasses.asdict(value).items()}
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _print_json(obj: Any) -> None:
    sys.stdout.write(json.dumps(_jsonable(obj), sort_keys=True) + "\n")
    sys.stdout.flush()


async def cmd_run(args: argparse.Namespace, store: WorkflowStore | None) -> int:
    await run(get_settings())
    return 0


async def cmd_seed_cron(args: argparse.Namespace, store: WorkflowStore) -> int:
    engine = build_engine(get_settings(), store, handlers=[])
    for task_id in await engine.scheduler.seed_system_cron_tasks():
        _print_json({"seeded": task_id})
    return 0


async def cmd_stats(args: argparse.Namespace, store: WorkflowStore) -> int:
    counts = await store.count_jobs_by_status(tenant_id=args.tenant)
    _print_json({"tenant_id": args.tenant, "jobs": counts})
    return 0


async def cmd_jobs(args: argparse.Namespace, store: WorkflowStore) -> int:
    for job in await store.list_jobs(status=args.status, tenant_id=args.tenant, limit=args.limit):
        _print_json(job)
    return 0


async def cmd_dead_letters(args: argparse.Namespace, store: WorkflowStore) -> int:
    for row in await store.list_dead_letter_jobs(tenant_id=args.tenant, limit=args.limit):
        _print_json(row)
    return 0


async def cmd_schedules(args: argparse.Namespace, store: WorkflowStore) -> int:
    for task in await store.list_cron_tasks():
        _print_json({"kind": "cron", **_jsonable(task)})
    for task in await store.list_pending_scheduled_tasks(limit=args.limit):
        _print_json({"kind": "one_off", **_jsonable(task)})
    return 0


async def cmd_events(args: argparse.Namespace, store: WorkflowStore) -> int:
    for event in await store.list_recent_events(tenant_id=args.tenant, limit=min(args.limit, 200)):
        _print_json(event)
    return 0


async def cmd_logs(args: argparse.Namespace, store: WorkflowStore) -> int:
    for entry in await store.list_system_logs(level=args.level, limit=min(args.limit, 200)):
        _print_json(entry)
    return 0


async def cmd_schedule(args: argparse.Namespace, store: WorkflowStore) -> int:
    try:
        config = json.loads(args.config) if args.config else {}
    except json.JSONDecodeError as exc:
        raise SystemExit(f"--config must be a JSON object: {exc}")
    if not isinstance(config, dict):
        raise SystemExit("--config must be a JSON object")

    try:
        execute_at = parse_iso8601(args.at)
    except ValueError as exc:
        raise ValidationError(
            code="scheduled_task.execute_at_invalid",
            message=f"--at must be an ISO-8601 timestamp: {args.at!r}",
        ) from exc

    engine = build_engine(get_settings(), store, handlers=[])
    task_id = await engine.scheduler.schedule_one_off(
        args.task_type,
        execute_at,
        config=config,
        tenant_id=args.tenant,
    )
    _print_json({"scheduled": task_id, "task_type": args.task_type, "execute_at": execute_at})
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="workflow-engine", description="CRM workflow engine")
    sub = parser.add_subparsers(dest="cmd", required=True)

    run_p = sub.add_parser("run", help="Run the worker pool and scheduler until SIGINT/SIGTERM")
    run_p.set_defaults(func=cmd_run)

    seed_p = sub.add_parser("seed-cron", help="Install the default system cron schedule")
    seed_p.set_defaults(func=cmd_seed_cron)

    stats_p = sub.add_parser("stats", help="Job counts by status")
    stats_p.add_argument("--tenant", default=None)
    stats_p.set_defaults(func=cmd_stats)

    jobs_p = sub.add_parser("jobs", help="List jobs")
    jobs_p.add_argument("--status", choices=[s.value for s in JobStatus], default=None)
    jobs_p.add_argument("--tenant", default=None)
    jobs_p.add_argument("--limit", type=int, default=100)
    jobs_p.set_defaults(func=cmd_jobs)

    dead_p = sub.add_parser("dead-letters", help="List dead-lettered jobs")
    dead_p.add_argument("--tenant", default=None)
    dead_p.add_argument("--limit", type=int, default=50)
    dead_p.set_defaults(func=cmd_dead_letters)

    schedules_p = sub.add_parser("schedules", help="List cron tasks and pending one-off tasks")
    schedules_p.add_argument("--limit", type=int, default=50)
    schedules_p.set_defaults(func=cmd_schedules)

    events_p = sub.add_parser("events", help="List recent events")
    events_p.add_argument("--tenant", default=None)
    events_p.add_argument("--limit", type=int, default=50)
    events_p.set_defaults(func=cmd_events)

    logs_p = sub.add_parser("logs", help="List durable system log entries")
    logs_p.add_argument("--level", choices=["debug", "info", "warn", "error"], default=None)
    logs_p.add_argument("--limit", type=int, default=50)
    logs_p.set_defaults(func=cmd_logs)

    schedule_p = sub.add_parser("schedule", help="Schedule a one-off task")
    schedule_p.add_argument("task_type")
    schedule_p.add_argument("--at", required=True, help="ISO-8601 execution time (naive means UTC)")
    schedule_p.add_argument("--tenant", default=None)
    schedule_p.add_argument("--config", default=None, help="JSON object passed to the task")
    schedule_p.set_defaults(func=cmd_schedule)

    return parser


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "run":
        return asyncio.run(cmd_run(args, None))

    configure_logging(get_settings())

    async def _run() -> int:
        try:
            store = await open_postgres_store(get_settings())
            return await args.func(args, store)
        except WorkflowError as exc:
            logger.error("Command failed", cmd=args.cmd, **exc.to_dict())
            _print_json({"error": exc.to_dict()})
            return 1
        finally:
            await close_db_pool()

    return asyncio.run(_run())


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
