import json
from unittest.mock import AsyncMock, patch

import pytest

from workflow_engine import cli
from workflow_engine.store.memory import InMemoryWorkflowStore


@pytest.fixture
def cli_store():
    store = InMemoryWorkflowStore()
    with patch.object(cli, "open_postgres_store", AsyncMock(return_value=store)), patch.object(
        cli, "close_db_pool", AsyncMock()
    ), patch.object(cli, "configure_logging"):
        yield store


def _lines(capsys):
    return [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]


def test_seed_cron_then_list_schedules(cli_store, capsys):
    assert cli.main(["seed-cron"]) == 0
    assert len(_lines(capsys)) == 7

    assert cli.main(["schedules"]) == 0
    rows = _lines(capsys)
    assert {row["kind"] for row in rows} == {"cron"}
    assert {row["task_type"] for row in rows} >= {"deal_decay_check", "integrity_watchdog"}


def test_schedule_one_off(cli_store, capsys):
    code = cli.main(
        ["schedule", "referral_due", "--at", "2026-11-01T09:00:00Z", "--tenant", "t1", "--config", '{"clientId": "c1"}']
    )

    assert code == 0
    [row] = _lines(capsys)
    assert row["task_type"] == "referral_due"
    assert row["execute_at"] == "2026-11-01T09:00:00Z"


def test_schedule_unknown_type_reports_error(cli_store, capsys):
    assert cli.main(["schedule", "mystery", "--at", "2026-11-01T09:00:00Z"]) == 1
    [row] = _lines(capsys)
    assert row["error"]["code"] == "scheduled_task.type_invalid"


def test_stats_prints_counts(cli_store, capsys):
    assert cli.main(["stats", "--tenant", "t1"]) == 0
    [row] = _lines(capsys)
    assert row == {"tenant_id": "t1", "jobs": {"pending": 0, "running": 0, "completed": 0, "failed": 0}}


def test_dead_letters_empty(cli_store, capsys):
    assert cli.main(["dead-letters", "--limit", "5"]) == 0
    assert _lines(capsys) == []


def test_unreachable_database_is_reported(capsys):
    from workflow_engine.kernel.errors import StoreError

    failing = AsyncMock(side_effect=StoreError(code="store.unavailable", message="connection refused"))
    with patch.object(cli, "open_postgres_store", failing), patch.object(cli, "close_db_pool", AsyncMock()), patch.object(
        cli, "configure_logging"
    ):
        assert cli.main(["stats"]) == 1

    [row] = _lines(capsys)
    assert row["error"]["code"] == "store.unavailable"


def test_schedule_with_malformed_time_reports_error(cli_store, capsys):
    assert cli.main(["schedule", "referral_due", "--at", "next tuesday", "--tenant", "t1"]) == 1

    [row] = _lines(capsys)
    assert row["error"]["code"] == "scheduled_task.execute_at_invalid"
