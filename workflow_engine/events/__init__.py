"""Domain events: types, routing to jobs, and the emitter."""

from workflow_engine.events.types import EventType

__all__ = ["EventType"]
