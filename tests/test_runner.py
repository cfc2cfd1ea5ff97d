"""Tests for myamori.agent.runner (TurnRunner) and the job consumer."""

from unittest.mock import AsyncMock

import pytest

from myamori.agent.reply import ModelReply
from myamori.agent.runner import TurnParams, TurnRunner
from myamori.agent.steps import StepFailedError
from myamori.approval import ApprovalHandler, ApprovalLedger, ApprovalStatus
from myamori.core.background.queue import InMemoryJobQueue
from myamori.core.background.worker import JobConsumer
from myamori.core.config import Config
from myamori.core.cron.types import DispatchMessage
from myamori.memory.store import SQLiteStore


async def no_sleep(_delay):
    return None


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def cfg():
    return Config()


@pytest.fixture
def channel():
    ch = AsyncMock()
    ch.send = AsyncMock()
    ch.send_approval_prompt = AsyncMock()
    return ch


@pytest.fixture
def model():
    m = AsyncMock()
    m.generate = AsyncMock(
        return_value=ModelReply(
            text="Hello there", model="test/model", prompt_tokens=12, completion_tokens=3,
            duration_ms=40,
        )
    )
    return m


@pytest.fixture
def runner(cfg, store, model, channel):
    return TurnRunner(cfg, store, model, channel, sleep=no_sleep)


# --- Happy path ---

@pytest.mark.asyncio
async def test_turn_sends_and_saves(runner, store, channel, model):
    store.save_messages("c1", "earlier", "reply")
    text = await runner.run(TurnParams(chat_id="c1", user_message="hi", thread_id=4))

    assert text == "Hello there"
    channel.send.assert_awaited_once_with("c1", "Hello there", 4)

    system_prompt, history, user_message, tools = model.generate.await_args.args
    assert "create_scheduled_job" in system_prompt
    assert [m["content"] for m in history] == ["earlier", "reply"]
    assert user_message == "hi"
    assert len(tools) == 4

    contents = [m["content"] for m in store.get_recent_messages("c1")]
    assert contents == ["earlier", "reply", "hi", "Hello there"]

    llm_logs = store.get_audit_logs("c1", "llm_call")
    assert llm_logs[0]["metadata"]["model"] == "test/model"
    assert llm_logs[0]["metadata"]["promptTokens"] == 12


@pytest.mark.asyncio
async def test_history_limit_applied(cfg, store, model, channel):
    cfg.history.limit = 2
    for i in range(3):
        store.save_messages("c1", f"q{i}", f"a{i}")
    runner = TurnRunner(cfg, store, model, channel, sleep=no_sleep)
    await runner.run(TurnParams(chat_id="c1", user_message="hi"))
    history = model.generate.await_args.args[1]
    assert [m["content"] for m in history] == ["q2", "a2"]


# --- Fallback ---

@pytest.mark.asyncio
async def test_model_failure_uses_fallback(runner, model, channel, store, cfg):
    model.generate.side_effect = RuntimeError("provider down")
    text = await runner.run(TurnParams(chat_id="c1", user_message="hi"))

    assert text == cfg.assistant.fallback_reply
    assert model.generate.await_count == 4
    channel.send.assert_awaited_once_with("c1", cfg.assistant.fallback_reply, None)
    assert store.get_recent_messages("c1")[-1]["content"] == cfg.assistant.fallback_reply


@pytest.mark.asyncio
async def test_empty_reply_uses_fallback(runner, model, channel, cfg):
    model.generate.return_value = ModelReply(text="  ")
    text = await runner.run(TurnParams(chat_id="c1", user_message="hi"))
    assert text == cfg.assistant.fallback_reply


@pytest.mark.asyncio
async def test_send_failure_fails_turn(runner, channel, store):
    channel.send.side_effect = RuntimeError("telegram down")
    with pytest.raises(StepFailedError) as exc:
        await runner.run(TurnParams(chat_id="c1", user_message="hi"))
    assert exc.value.step == "send-reply"
    assert store.get_recent_messages("c1") == []


@pytest.mark.asyncio
async def test_replay_skips_completed_steps(cfg, store, model, channel):
    journal = {}
    channel.send.side_effect = [RuntimeError("down"), None]
    runner = TurnRunner(cfg, store, model, channel, journal=journal, sleep=no_sleep)

    with pytest.raises(StepFailedError):
        await runner.run(TurnParams(chat_id="c1", user_message="hi", run_id="r1"))
    await runner.run(TurnParams(chat_id="c1", user_message="hi", run_id="r1"))

    model.generate.assert_awaited_once()
    assert channel.send.await_count == 2
    assert len(store.get_recent_messages("c1")) == 2


# --- High-risk tools inside a turn ---

@pytest.mark.asyncio
async def test_high_risk_tool_creates_approval(cfg, store, channel):
    ledger = ApprovalLedger(store)
    async def generate(system_prompt, history, user_message, tools):
        result = await tools.ainvoke(
            "create_scheduled_job",
            {"name": "Daily", "cron_expr": "0 9 * * *", "prompt": "Plan"},
        )
        return ModelReply(text=f"Model saw: {result}")

    model = AsyncMock()
    model.generate = AsyncMock(side_effect=generate)
    approvals = ApprovalHandler(ledger, channel, lambda c, t: None, store)
    runner = TurnRunner(cfg, store, model, channel, approvals=approvals, sleep=no_sleep)

    text = await runner.run(TurnParams(chat_id="c1", user_message="every day at 9"))

    assert "Approval requested for create_scheduled_job" in text
    assert store.list_scheduled_jobs() == []
    pending = ledger.list_requests("c1", ApprovalStatus.PENDING)
    assert len(pending) == 1
    assert pending[0].parsed_input()["cron_expr"] == "0 9 * * *"
    channel.send_approval_prompt.assert_awaited_once()


@pytest.mark.asyncio
async def test_low_risk_tool_audited(cfg, store, channel):
    async def generate(system_prompt, history, user_message, tools):
        await tools.ainvoke("list_scheduled_jobs", {})
        return ModelReply(text="No jobs yet.")

    model = AsyncMock()
    model.generate = AsyncMock(side_effect=generate)
    runner = TurnRunner(cfg, store, model, channel, sleep=no_sleep)
    await runner.run(TurnParams(chat_id="c1", user_message="list"))

    logs = store.get_audit_logs("c1", "tool_execution")
    assert logs[0]["metadata"]["toolName"] == "list_scheduled_jobs"
    assert logs[0]["metadata"]["status"] == "success"


# --- JobConsumer ---

@pytest.mark.asyncio
async def test_consumer_runs_turn_and_acks(runner, channel):
    queue = InMemoryJobQueue()
    await queue.send_batch(
        [DispatchMessage(job_id="j1", chat_id="c1", prompt="Daily plan", thread_id=2)]
    )

    consumer = JobConsumer(queue, runner)
    assert await consumer.process_one() is True
    channel.send.assert_awaited_once_with("c1", "Hello there", 2)
    assert await queue.requeue_unacked() == 0


@pytest.mark.asyncio
async def test_consumer_failure_requeues_message(channel):
    queue = InMemoryJobQueue()
    await queue.send_batch([DispatchMessage(job_id="j1", chat_id="c1", prompt="p")])
    runner = AsyncMock()
    runner.run = AsyncMock(side_effect=RuntimeError("boom"))

    consumer = JobConsumer(queue, runner)
    assert await consumer.process_one() is False
    assert queue.qsize() == 1
    assert queue.in_flight() == 0

    # Handed out again on the next receive
    assert await consumer.process_one() is False
    assert runner.run.await_count == 2


@pytest.mark.asyncio
async def test_consumer_failure_then_success(runner, channel):
    queue = InMemoryJobQueue()
    await queue.send_batch([DispatchMessage(job_id="j1", chat_id="c1", prompt="p")])
    flaky = AsyncMock()
    flaky.run = AsyncMock(side_effect=[RuntimeError("boom"), None])

    consumer = JobConsumer(queue, flaky)
    assert await consumer.process_one() is False
    assert await consumer.process_one() is True
    assert queue.qsize() == 0
    assert queue.in_flight() == 0


@pytest.mark.asyncio
async def test_consumer_drops_after_max_attempts(channel):
    queue = InMemoryJobQueue(max_attempts=2)
    await queue.send_batch([DispatchMessage(job_id="j1", chat_id="c1", prompt="p")])
    runner = AsyncMock()
    runner.run = AsyncMock(side_effect=RuntimeError("boom"))

    consumer = JobConsumer(queue, runner)
    assert await consumer.process_one() is False
    assert await consumer.process_one() is False
    assert queue.qsize() == 0
    assert queue.in_flight() == 0
    assert runner.run.await_count == 2


@pytest.mark.asyncio
async def test_requeue_unacked_after_crash():
    queue = InMemoryJobQueue()
    await queue.send_batch([DispatchMessage(job_id="j1", chat_id="c1", prompt="p")])
    await queue.receive()
    assert await queue.requeue_unacked() == 1
    assert queue.qsize() == 1


@pytest.mark.asyncio
async def test_consumer_start_stop(runner):
    consumer = JobConsumer(InMemoryJobQueue(), runner)
    consumer.start()
    await consumer.stop()
    assert consumer._task is None
