"""Durable store port and its implementations."""

from workflow_engine.store.memory import InMemoryWorkflowStore
from workflow_engine.store.port import StoreTransaction, WorkflowStore
from workflow_engine.store.postgres import PostgresWorkflowStore
from workflow_engine.store.records import (
    CronTaskRecord,
    DeadLetterJobRecord,
    EventRecord,
    JobRecord,
    NewEvent,
    NewJob,
    ScheduledTaskRecord,
    SystemLogRecord,
)

__all__ = [
    "CronTaskRecord",
    "DeadLetterJobRecord",
    "EventRecord",
    "InMemoryWorkflowStore",
    "JobRecord",
    "NewEvent",
    "NewJob",
    "PostgresWorkflowStore",
    "ScheduledTaskRecord",
    "StoreTransaction",
    "SystemLogRecord",
    "WorkflowStore",
]
