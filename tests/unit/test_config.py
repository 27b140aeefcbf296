import pytest
from pydantic import ValidationError

from workflow_engine.config import Settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.worker_concurrency == 2
    assert settings.worker_poll_interval_ms == 1000
    assert settings.worker_lock_timeout_minutes == 10
    assert settings.job_base_delay_ms == 5000
    assert settings.job_max_attempts == 3
    assert settings.job_backoff_max_ms is None
    assert settings.job_claim_strategy == "skip_locked"
    assert settings.scheduler_poll_interval_ms == 60_000


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("WORKER_CONCURRENCY", "4")
    monkeypatch.setenv("JOB_CLAIM_STRATEGY", "optimistic")
    monkeypatch.setenv("JOB_HANDLER_MODULES", '["tests.support.handlers"]')

    settings = Settings(_env_file=None)

    assert settings.worker_concurrency == 4
    assert settings.job_claim_strategy == "optimistic"
    assert settings.job_handler_modules == ["tests.support.handlers"]


@pytest.mark.parametrize(
    "field,value",
    [("worker_concurrency", 0), ("worker_poll_interval_ms", 0), ("job_max_attempts", 0)],
)
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})
