"""Tests for myamori.memory.store."""

from datetime import datetime, timedelta, timezone

import pytest

from myamori.memory.store import SQLiteStore


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "test.db"))


NOW = datetime(2025, 6, 15, 10, 0, tzinfo=timezone.utc)


# --- Messages ---

def test_messages_chronological(store):
    store.save_messages("c1", "hello", "hi")
    store.save_messages("c1", "how are you", "fine")
    msgs = store.get_recent_messages("c1")
    assert [m["content"] for m in msgs] == ["hello", "hi", "how are you", "fine"]
    assert msgs[0]["role"] == "user"
    assert msgs[1]["role"] == "assistant"


def test_messages_limit_keeps_latest(store):
    for i in range(15):
        store.save_messages("c1", f"q{i}", f"a{i}")
    msgs = store.get_recent_messages("c1", limit=20)
    assert len(msgs) == 20
    assert msgs[0]["content"] == "q5"
    assert msgs[-1]["content"] == "a14"


def test_messages_per_chat(store):
    store.save_messages("c1", "one", "1")
    store.save_messages("c2", "two", "2")
    assert [m["content"] for m in store.get_recent_messages("c2")] == ["two", "2"]


# --- Audit ---

def test_log_tool_execution(store):
    store.log_tool_execution("c1", "list_scheduled_jobs", "success", {"a": 1}, 12)
    logs = store.get_audit_logs("c1", "tool_execution")
    assert len(logs) == 1
    meta = logs[0]["metadata"]
    assert meta["toolName"] == "list_scheduled_jobs"
    assert meta["status"] == "success"
    assert meta["inputSummary"] == '{"a": 1}'
    assert meta["durationMs"] == 12


def test_tool_input_summary_truncated(store):
    store.log_tool_execution("c1", "t", "error", {"text": "x" * 500}, 1)
    summary = store.get_audit_logs("c1")[0]["metadata"]["inputSummary"]
    assert len(summary) == 200
    assert summary.endswith("...")


def test_log_llm_call(store):
    store.log_llm_call("c1", "anthropic/claude-haiku-4-5", 100, 20, 350)
    store.log_tool_execution("c1", "t", "success", {}, 1)
    logs = store.get_audit_logs("c1", "llm_call")
    assert len(logs) == 1
    assert logs[0]["metadata"] == {
        "model": "anthropic/claude-haiku-4-5",
        "promptTokens": 100,
        "completionTokens": 20,
        "durationMs": 350,
    }


def test_audit_failure_does_not_raise(store):
    with store._get_conn() as conn:
        conn.execute("DROP TABLE audit_logs")
        conn.commit()
    store.log_tool_execution("c1", "t", "success", {}, 1)


# --- Approvals ---

def test_approval_transition_is_compare_and_set(store):
    store.add_approval("a1", "c1", None, "delete_scheduled_job", '{"job_id": "j"}',
                       created_at=NOW, expires_at=NOW + timedelta(minutes=10))
    assert store.get_approval("a1")["status"] == "pending"
    assert store.transition_approval("a1", "pending", "approved") is True
    assert store.transition_approval("a1", "pending", "rejected") is False
    assert store.get_approval("a1")["status"] == "approved"


def test_list_approvals_filters(store):
    for i, chat in enumerate(["c1", "c1", "c2"]):
        store.add_approval(f"a{i}", chat, None, "t", "{}",
                           created_at=NOW, expires_at=NOW + timedelta(minutes=10))
    store.transition_approval("a0", "pending", "rejected")
    assert len(store.list_approvals("c1")) == 2
    assert [a["id"] for a in store.list_approvals("c1", "pending")] == ["a1"]


# --- Scheduled jobs ---

def test_scheduled_job_crud(store):
    store.add_scheduled_job("j1", "Morning", "0 9 * * *", "Plan my day", "c1",
                            next_run_at=NOW, thread_id=7, now=NOW)
    job = store.get_scheduled_job("j1")
    assert job["thread_id"] == 7
    assert job["enabled"] == 1
    assert job["next_run_at"] == "2025-06-15T10:00:00.000Z"

    assert store.update_scheduled_job("j1", name="Evening", enabled=False)
    job = store.get_scheduled_job("j1")
    assert job["name"] == "Evening"
    assert job["enabled"] == 0

    assert store.delete_scheduled_job("j1") is True
    assert store.delete_scheduled_job("j1") is False
    assert store.update_scheduled_job("j1", name="x") is False


def test_delete_scoped_to_chat(store):
    store.add_scheduled_job("j1", "a", "0 9 * * *", "p", "c1", next_run_at=NOW)
    assert store.delete_scheduled_job("j1", chat_id="c2") is False
    assert store.get_scheduled_job("j1") is not None
    assert store.delete_scheduled_job("j1", chat_id="c1") is True


def test_update_rejects_unknown_column(store):
    with pytest.raises(ValueError):
        store.update_scheduled_job("j1", chat_id="other")


def test_due_jobs(store):
    store.add_scheduled_job("due", "a", "* * * * *", "p", "c1", next_run_at=NOW, now=NOW)
    store.add_scheduled_job("past", "b", "* * * * *", "p", "c1",
                            next_run_at=NOW - timedelta(hours=1), now=NOW)
    store.add_scheduled_job("future", "c", "* * * * *", "p", "c1",
                            next_run_at=NOW + timedelta(minutes=1), now=NOW)
    store.add_scheduled_job("off", "d", "* * * * *", "p", "c1",
                            next_run_at=NOW - timedelta(days=1), now=NOW)
    store.update_scheduled_job("off", enabled=False)

    ids = {j["id"] for j in store.get_due_jobs(NOW)}
    assert ids == {"due", "past"}
