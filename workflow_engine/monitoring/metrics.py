"""
Prometheus Metrics

Counters and histograms for the event emitter, job queue, worker pool and
scheduler. Workers and the scheduler run as standalone processes, so the
exporter is an optional HTTP server started by the CLI.
"""

from __future__ import annotations

import structlog
from prometheus_client import Counter, Histogram, start_http_server

logger = structlog.get_logger()

# Singleton metrics instance
_metrics: "Metrics | None" = None
_server_started = False


class Metrics:
    """
    Prometheus metrics for the workflow engine.

    Tracks:
    - Events emitted (and deduplicated re-emits)
    - Job lifecycle transitions
    - Job handler duration
    - Scheduler fires
    """

    def __init__(self) -> None:
        self.events_emitted_total = Counter(
            "workflow_events_emitted_total",
            "Total events emitted",
            ["event_type", "outcome"],  # outcome: created | deduplicated
        )

        self.jobs_enqueued_total = Counter(
            "workflow_jobs_enqueued_total",
            "Total jobs enqueued",
            ["job_type", "outcome"],  # outcome: created | deduplicated
        )

        self.jobs_claimed_total = Counter(
            "workflow_jobs_claimed_total",
            "Total jobs claimed by workers",
            ["job_type"],
        )

        self.jobs_completed_total = Counter(
            "workflow_jobs_completed_total",
            "Total jobs completed",
            ["job_type"],
        )

        self.jobs_failed_total = Counter(
            "workflow_jobs_failed_total",
            "Total job failures (retried or dead-lettered)",
            ["job_type", "outcome"],  # outcome: retried | dead_lettered
        )

        self.jobs_reaped_total = Counter(
            "workflow_jobs_reaped_total",
            "Total stuck jobs returned to pending by the reaper",
        )

        self.job_duration_seconds = Histogram(
            "workflow_job_duration_seconds",
            "Job handler duration in seconds",
            ["job_type", "status"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0],
        )

        self.scheduler_fires_total = Counter(
            "workflow_scheduler_fires_total",
            "Total scheduler fires",
            ["kind", "outcome"],  # kind: cron | one_off; outcome: fired | skipped | error
        )

    def track_event(self, event_type: str, *, deduplicated: bool) -> None:
        self.events_emitted_total.labels(
            event_type=event_type,
            outcome="deduplicated" if deduplicated else "created",
        ).inc()

    def track_enqueue(self, job_type: str, *, deduplicated: bool) -> None:
        self.jobs_enqueued_total.labels(
            job_type=job_type,
            outcome="deduplicated" if deduplicated else "created",
        ).inc()

    def track_claim(self, job_type: str) -> None:
        self.jobs_claimed_total.labels(job_type=job_type).inc()

    def track_completion(self, job_type: str) -> None:
        self.jobs_completed_total.labels(job_type=job_type).inc()

    def track_failure(self, job_type: str, *, dead_lettered: bool) -> None:
        self.jobs_failed_total.labels(
            job_type=job_type,
            outcome="dead_lettered" if dead_lettered else "retried",
        ).inc()

    def track_reaped(self, count: int) -> None:
        if count > 0:
            self.jobs_reaped_total.inc(count)

    def observe_job_duration(self, job_type: str, status: str, seconds: float) -> None:
        self.job_duration_seconds.labels(job_type=job_type, status=status).observe(seconds)

    def track_scheduler_fire(self, kind: str, outcome: str) -> None:
        self.scheduler_fires_total.labels(kind=kind, outcome=outcome).inc()


def get_metrics() -> Metrics:
    """Get or create the singleton metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = Metrics()
    return _metrics


def maybe_start_metrics_server(port: int | None, *, component: str) -> bool:
    """Start the Prometheus exporter if a port is configured."""
    global _server_started
    if _server_started or not port:
        return False

    if port <= 0 or port > 65535:
        logger.warning(
            "Invalid METRICS_PORT (metrics server disabled)",
            component=component,
            value=port,
        )
        return False

    # Listen on all interfaces so Prometheus can scrape from another container.
    start_http_server(port, addr="0.0.0.0")
    _server_started = True
    logger.info("Prometheus metrics server started", component=component, port=port)
    return True
