"""Start/stop lifecycle for the engine's polling loops.

A `PollingLoop` repeatedly awaits one unit of work. When the unit reports that
it did something the next unit starts right away; otherwise the loop sleeps for
`interval_seconds`. `stop()` lets the in-flight unit finish and then the loop
exits; sleeps are interrupted immediately.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()

LoopBody = Callable[[], Awaitable[bool | None]]


class PollingLoop:
    def __init__(self, name: str, body: LoopBody, *, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self._body = body
        self._interval = interval_seconds
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        self._stop.set()
        task = self._task
        if task is None:
            return
        await asyncio.gather(task, return_exceptions=True)
        self._task = None

    async def run_once(self) -> bool:
        """Run a single unit of work, logging instead of raising."""
        try:
            return bool(await self._body())
        except Exception as exc:
            logger.error(
                "Polling loop iteration failed",
                loop=self.name,
                error=str(exc),
                exc_info=True,
            )
            return False

    async def _run(self) -> None:
        logger.info("Polling loop started", loop=self.name, interval_seconds=self._interval)
        try:
            while not self._stop.is_set():
                busy = await self.run_once()
                if busy:
                    # Yield so a tight loop cannot starve other tasks.
                    await asyncio.sleep(0)
                    continue
                await self._sleep()
        finally:
            logger.info("Polling loop stopped", loop=self.name)

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            pass
