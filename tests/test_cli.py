"""Tests for myamori.cli."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

from myamori import __version__
from myamori.approval import DecisionResult, ResolveOutcome
from myamori.cli.commands import app
from myamori.core.config import Config
from myamori.memory.store import SQLiteStore

runner = CliRunner()

_PATCH_CONFIG = "myamori.core.config.loader.load_config"
_PATCH_SERVICES = "myamori.cli.commands._build_services"


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in ("run", "tick", "jobs", "approvals", "cron"):
        assert name in result.output


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


# --- cron next ---

def test_cron_next():
    result = runner.invoke(
        app, ["cron", "next", "*/5 * * * *", "--after", "2025-06-15T10:03:00Z", "-n", "2"]
    )
    assert result.exit_code == 0
    assert result.output.split() == ["2025-06-15T10:05:00.000Z", "2025-06-15T10:10:00.000Z"]


def test_cron_next_invalid():
    result = runner.invoke(app, ["cron", "next", "* * *"])
    assert result.exit_code == 1
    assert "InvalidFieldCountError" in result.output


def test_cron_next_bad_after():
    result = runner.invoke(app, ["cron", "next", "*/5 * * * *", "--after", "garbage"])
    assert result.exit_code == 1
    assert "Invalid --after timestamp" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)


# --- jobs ---

def test_jobs_list_and_remove(tmp_path):
    db_path = str(tmp_path / "test.db")
    store = SQLiteStore(db_path)
    store.add_scheduled_job("j1", "Morning", "0 9 * * *", "Plan", "c1",
                            next_run_at=datetime(2025, 6, 16, 9, tzinfo=timezone.utc))
    config = Config(database={"path": db_path})

    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["jobs", "list"])
        assert result.exit_code == 0
        assert "Morning" in result.output

        result = runner.invoke(app, ["jobs", "remove", "j1"])
        assert result.exit_code == 0
        assert store.get_scheduled_job("j1") is None

        result = runner.invoke(app, ["jobs", "remove", "j1"])
        assert result.exit_code == 1


def test_jobs_list_empty(tmp_path):
    config = Config(database={"path": str(tmp_path / "test.db")})
    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["jobs", "list"])
    assert "No scheduled jobs found" in result.output


# --- approvals ---

def test_approvals_resolve():
    approvals = MagicMock()
    approvals.handle_decision = AsyncMock(
        return_value=DecisionResult(ResolveOutcome.RESOLVED, "done", executed=True)
    )
    with patch(_PATCH_SERVICES, return_value=(None, None, approvals, None)):
        result = runner.invoke(app, ["approvals", "resolve", "a1", "approve"])
    assert result.exit_code == 0
    assert "resolved" in result.output
    approvals.handle_decision.assert_awaited_once()
    assert approvals.handle_decision.await_args.args[0] == "a1"


def test_approvals_resolve_bad_decision():
    result = runner.invoke(app, ["approvals", "resolve", "a1", "maybe"])
    assert result.exit_code == 2


def test_approvals_resolve_not_found():
    approvals = MagicMock()
    approvals.handle_decision = AsyncMock(
        return_value=DecisionResult(ResolveOutcome.NOT_FOUND, "Approval request not found.")
    )
    with patch(_PATCH_SERVICES, return_value=(None, None, approvals, None)):
        result = runner.invoke(app, ["approvals", "resolve", "nope", "reject"])
    assert result.exit_code == 1


# --- tick ---

def test_tick_runs_due_jobs(tmp_path):
    store = SQLiteStore(str(tmp_path / "test.db"))
    now = datetime.now(timezone.utc)
    store.add_scheduled_job("j1", "a", "0 9 * * *", "Plan", "c1",
                            next_run_at=now - timedelta(minutes=1))
    turn_runner = MagicMock()
    turn_runner.run = AsyncMock(return_value="ok")

    with patch(_PATCH_SERVICES, return_value=(Config(), store, None, turn_runner)):
        result = runner.invoke(app, ["tick", "--dry-run"])
        assert "j1" in result.output
        turn_runner.run.assert_not_awaited()

        result = runner.invoke(app, ["tick"])
    assert result.exit_code == 0
    assert "Dispatched 1 job(s), 1 completed" in result.output
    assert turn_runner.run.await_args.args[0].user_message == "Plan"
