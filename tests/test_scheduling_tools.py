"""Tests for myamori.agent.tools.scheduling."""

from datetime import datetime, timezone

import pytest

from myamori.agent.tools import ToolRegistry, ToolValidationError
from myamori.agent.tools.scheduling import JobNotFoundError, make_scheduling_tools
from myamori.core.cron.expr import InvalidFieldCountError
from myamori.memory.store import SQLiteStore

NOW = datetime(2025, 6, 15, 10, 3, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def registry(store):
    return ToolRegistry(make_scheduling_tools(store, "c1", thread_id=42, clock=lambda: NOW))


async def run(registry, name, args):
    definition = registry.get_by_name(name)
    return await definition.execute(registry.validate(definition, args))


@pytest.mark.asyncio
async def test_create_and_list(registry, store):
    created = await run(
        registry,
        "create_scheduled_job",
        {"name": "Standup", "cron_expr": "*/5 * * * *", "prompt": "Remind me"},
    )
    assert created["created"] is True
    assert created["nextRunAt"] == "2025-06-15T10:05:00.000Z"

    job = store.get_scheduled_job(created["id"])
    assert job["chat_id"] == "c1"
    assert job["thread_id"] == 42

    listed = await run(registry, "list_scheduled_jobs", {})
    assert [j["name"] for j in listed["jobs"]] == ["Standup"]
    assert listed["jobs"][0]["cronExpr"] == "*/5 * * * *"
    assert listed["jobs"][0]["enabled"] is True


@pytest.mark.asyncio
async def test_list_only_own_chat(store, registry):
    other = ToolRegistry(make_scheduling_tools(store, "c2", clock=lambda: NOW))
    await run(other, "create_scheduled_job", {"name": "x", "cron_expr": "0 9 * * *", "prompt": "p"})
    listed = await run(registry, "list_scheduled_jobs", {})
    assert listed["jobs"] == []


@pytest.mark.asyncio
async def test_create_rejects_bad_cron(registry, store):
    with pytest.raises(InvalidFieldCountError):
        await run(registry, "create_scheduled_job", {"name": "x", "cron_expr": "* *", "prompt": "p"})
    assert store.list_scheduled_jobs() == []


def test_create_requires_fields(registry):
    definition = registry.get_by_name("create_scheduled_job")
    with pytest.raises(ToolValidationError):
        registry.validate(definition, {"name": "x"})


@pytest.mark.asyncio
async def test_update_cron_recomputes_next_run(registry, store):
    created = await run(
        registry, "create_scheduled_job", {"name": "a", "cron_expr": "0 9 * * *", "prompt": "p"}
    )
    result = await run(
        registry,
        "update_scheduled_job",
        {"job_id": created["id"], "cron_expr": "30 10 * * *", "enabled": False},
    )
    assert result == {"jobId": created["id"], "updated": True}
    job = store.get_scheduled_job(created["id"])
    assert job["cron_expr"] == "30 10 * * *"
    assert job["next_run_at"] == "2025-06-15T10:30:00.000Z"
    assert job["enabled"] == 0


@pytest.mark.asyncio
async def test_update_and_delete_unknown_job(registry):
    with pytest.raises(JobNotFoundError):
        await run(registry, "update_scheduled_job", {"job_id": "nope", "name": "x"})
    with pytest.raises(JobNotFoundError):
        await run(registry, "delete_scheduled_job", {"job_id": "nope"})


@pytest.mark.asyncio
async def test_delete(registry, store):
    created = await run(
        registry, "create_scheduled_job", {"name": "a", "cron_expr": "0 9 * * *", "prompt": "p"}
    )
    assert await run(registry, "delete_scheduled_job", {"job_id": created["id"]}) == {
        "jobId": created["id"],
        "deleted": True,
    }
    assert store.get_scheduled_job(created["id"]) is None


@pytest.mark.asyncio
async def test_update_and_delete_other_chat_job(registry, store):
    other = ToolRegistry(make_scheduling_tools(store, "c2", clock=lambda: NOW))
    created = await run(
        other, "create_scheduled_job", {"name": "theirs", "cron_expr": "0 9 * * *", "prompt": "p"}
    )

    with pytest.raises(JobNotFoundError):
        await run(registry, "update_scheduled_job", {"job_id": created["id"], "name": "mine"})
    with pytest.raises(JobNotFoundError):
        await run(registry, "delete_scheduled_job", {"job_id": created["id"]})

    job = store.get_scheduled_job(created["id"])
    assert job["name"] == "theirs"
    assert job["chat_id"] == "c2"
