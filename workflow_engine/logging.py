"""structlog configuration shared by the worker, scheduler and CLI."""

from __future__ import annotations

import logging
import sys

import structlog

from workflow_engine.config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure structlog. Logs go to stderr so CLI output on stdout stays machine-readable."""
    level = getattr(logging, settings.log_level, logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
