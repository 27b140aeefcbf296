"""Job handler contract and registry.

A handler owns exactly one `JobType` and signals failure by raising. Handler
modules are plain Python modules exposing `get_handlers()`; the composition
root imports the modules listed in `JOB_HANDLER_MODULES`.
"""

from __future__ import annotations

import importlib
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from workflow_engine.jobs.types import JobType
from workflow_engine.kernel.errors import RegistryError
from workflow_engine.store.records import JobRecord


@runtime_checkable
class JobHandler(Protocol):
    job_type: JobType

    async def handle(self, job: JobRecord) -> None:
        ...


class HandlerRegistry:
    def __init__(self, handlers: Iterable[JobHandler] = ()) -> None:
        self._handlers: dict[JobType, JobHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: JobHandler) -> None:
        try:
            job_type = JobType(handler.job_type)
        except (AttributeError, ValueError) as exc:
            raise RegistryError(
                code="registry.handler_invalid",
                message=f"Handler {handler!r} does not declare a known job type",
            ) from exc

        if job_type in self._handlers:
            raise RegistryError(
                code="registry.handler_duplicate",
                message=f"Handler already registered for job type: {job_type.value}",
                meta={"job_type": job_type.value},
            )
        self._handlers[job_type] = handler

    def get(self, job_type: JobType | str) -> JobHandler | None:
        try:
            return self._handlers.get(JobType(job_type))
        except ValueError:
            return None

    def job_types(self) -> list[JobType]:
        return sorted(self._handlers, key=lambda t: t.value)

    def missing_job_types(self) -> list[JobType]:
        return [job_type for job_type in JobType if job_type not in self._handlers]

    def require_complete(self) -> None:
        missing = self.missing_job_types()
        if missing:
            raise RegistryError(
                code="registry.handlers_missing",
                message="No handler registered for job types: " + ", ".join(t.value for t in missing),
                meta={"missing": [t.value for t in missing]},
            )

    def __len__(self) -> int:
        return len(self._handlers)


def load_handlers(modules: Iterable[str]) -> list[JobHandler]:
    """Import each dotted module and collect the handlers from its `get_handlers()`."""
    handlers: list[JobHandler] = []
    for module_name in modules:
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            raise RegistryError(
                code="registry.module_import_failed",
                message=f"Could not import handler module: {module_name}",
                meta={"module": module_name, "error": str(exc)},
            ) from exc

        factory = getattr(module, "get_handlers", None)
        if not callable(factory):
            raise RegistryError(
                code="registry.module_invalid",
                message=f"Handler module {module_name} does not define get_handlers()",
                meta={"module": module_name},
            )
        handlers.extend(factory())
    return handlers
