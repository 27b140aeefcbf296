"""Job handlers used by the worker and runtime tests."""

from __future__ import annotations

from dataclasses import dataclass, field

from workflow_engine.jobs.types import JobType
from workflow_engine.store.records import JobRecord


@dataclass
class RecordingHandler:
    job_type: JobType
    seen: list[JobRecord] = field(default_factory=list)

    async def handle(self, job: JobRecord) -> None:
        self.seen.append(job)


@dataclass
class FailingHandler:
    """Raises for the first `failures` calls, then succeeds."""

    job_type: JobType
    failures: int = 1_000_000
    message: str = "downstream unavailable"
    calls: int = 0

    async def handle(self, job: JobRecord) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"{self.message} #{self.calls}")


def get_handlers() -> list[RecordingHandler]:
    return [RecordingHandler(JobType.ENRICH_LEAD)]
