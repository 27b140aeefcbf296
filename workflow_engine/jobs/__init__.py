"""Durable jobs: types, queue, handler registry and worker pool."""

from workflow_engine.jobs.types import JobStatus, JobType

__all__ = ["JobStatus", "JobType"]
