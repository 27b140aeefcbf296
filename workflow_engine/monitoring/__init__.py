"""Monitoring: Prometheus metrics for the workflow engine."""

from workflow_engine.monitoring.metrics import Metrics, get_metrics, maybe_start_metrics_server

__all__ = ["Metrics", "get_metrics", "maybe_start_metrics_server"]
