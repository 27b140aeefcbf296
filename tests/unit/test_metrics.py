from unittest.mock import patch

from workflow_engine.monitoring import metrics as metrics_module
from workflow_engine.monitoring.metrics import get_metrics, maybe_start_metrics_server


def test_metrics_singleton_tracks_job_outcomes():
    metrics = get_metrics()
    assert get_metrics() is metrics

    before = metrics.jobs_failed_total.labels(job_type="enrich_lead", outcome="dead_lettered")._value.get()
    metrics.track_failure("enrich_lead", dead_lettered=True)
    after = metrics.jobs_failed_total.labels(job_type="enrich_lead", outcome="dead_lettered")._value.get()

    assert after == before + 1


def test_metrics_server_only_starts_with_a_valid_port(monkeypatch):
    monkeypatch.setattr(metrics_module, "_server_started", False)
    with patch.object(metrics_module, "start_http_server") as start:
        assert maybe_start_metrics_server(None, component="test") is False
        assert maybe_start_metrics_server(70000, component="test") is False
        assert maybe_start_metrics_server(9464, component="test") is True
        assert maybe_start_metrics_server(9464, component="test") is False

    start.assert_called_once_with(9464, addr="0.0.0.0")
