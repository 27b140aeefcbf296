"""Durable operational log.

Every entry is written to the `system_logs` table through the store and
mirrored to structlog. Persisting is best-effort: a store failure is reported
on structlog and never propagates into job or scheduler bookkeeping.
"""

from __future__ import annotations

from typing import Any, Literal

import structlog

from workflow_engine.kernel.time import Clock, SystemClock
from workflow_engine.store.port import WorkflowStore

logger = structlog.get_logger()

LogLevel = Literal["debug", "info", "warn", "error"]

_STRUCTLOG_METHODS = {
    "debug": "debug",
    "info": "info",
    "warn": "warning",
    "error": "error",
}


class SystemLog:
    def __init__(self, store: WorkflowStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    async def log(
        self,
        level: LogLevel,
        source: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        if level not in _STRUCTLOG_METHODS:
            raise ValueError(f"Unknown system log level: {level!r}")

        context = dict(context or {})
        emit = getattr(logger, _STRUCTLOG_METHODS[level])
        emit(message, source=source, context=context)

        try:
            await self._store.append_system_log(
                level=level,
                source=source,
                message=message,
                context=context,
                now=self._clock.now(),
            )
        except Exception as exc:
            logger.warning(
                "Failed to persist system log entry",
                source=source,
                level=level,
                error=str(exc),
            )

    async def debug(self, source: str, message: str, context: dict[str, Any] | None = None) -> None:
        await self.log("debug", source, message, context)

    async def info(self, source: str, message: str, context: dict[str, Any] | None = None) -> None:
        await self.log("info", source, message, context)

    async def warn(self, source: str, message: str, context: dict[str, Any] | None = None) -> None:
        await self.log("warn", source, message, context)

    async def error(self, source: str, message: str, context: dict[str, Any] | None = None) -> None:
        await self.log("error", source, message, context)
