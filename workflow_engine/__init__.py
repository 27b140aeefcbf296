"""CRM workflow backbone: events, durable jobs, workers and schedules."""

__version__ = "0.1.0"
