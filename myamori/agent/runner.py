"""TurnRunner: four-step durable pipeline from trigger to persisted reply."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, MutableMapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from myamori.agent.prompt import build_system_prompt
from myamori.agent.steps import StepFailedError, StepRunner
from myamori.agent.tools import ToolRegistry, build_registry
from myamori.agent.tools.types import OnExecuted, ToolExecutionLog
from myamori.core.config.schema import Config
from myamori.memory.store import SQLiteStore

if TYPE_CHECKING:
    from myamori.agent.reply import ReplyModel
    from myamori.approval.handler import ApprovalHandler
    from myamori.core.channels.base import Channel


@dataclass
class TurnParams:
    chat_id: str
    user_message: str
    thread_id: int | None = None
    run_id: str | None = None


@dataclass
class TurnContext:
    """State of one turn; lives only while the turn runs."""

    chat_id: str
    user_message: str
    thread_id: int | None = None
    history: list[dict[str, str]] = field(default_factory=list)


class TurnRunner:
    """
    Request-scoped orchestrator.

    Flow:
        1. load-history: last N messages of the chat
        2. call-llm:     model + gated tools; fallback reply on exhaustion
        3. send-reply:   deliver to the channel
        4. save-history: persist user + assistant messages

    A high-risk tool call inside step 2 only creates an approval request;
    the step finishes with the model's "approval requested" answer and the
    decision is handled later by ApprovalHandler.handle_decision.
    """

    def __init__(
        self,
        config: Config,
        db: SQLiteStore,
        model: ReplyModel,
        channel: Channel,
        approvals: ApprovalHandler | None = None,
        registry_factory: Callable[[str, int | None], ToolRegistry] | None = None,
        journal: MutableMapping[tuple[str, str], Any] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.db = db
        self.model = model
        self.channel = channel
        self.approvals = approvals
        self.registry_factory = registry_factory or (
            lambda chat_id, thread_id: build_registry(db, chat_id, thread_id)
        )
        self.journal = journal
        self._sleep = sleep

    async def run(self, params: TurnParams) -> str:
        """Run one turn and return the delivered reply text."""
        run_id = params.run_id or uuid.uuid4().hex
        steps = StepRunner(run_id, self.journal, sleep=self._sleep)
        policies = self.config.turn
        logger.info(f"Turn {run_id} started for chat {params.chat_id}")

        async def load_history() -> list[dict[str, str]]:
            return self.db.get_recent_messages(params.chat_id, self.config.history.limit)

        history = await steps.do(
            "load-history", load_history, policies.load_history.to_policy()
        )
        ctx = TurnContext(
            chat_id=params.chat_id,
            user_message=params.user_message,
            thread_id=params.thread_id,
            history=history,
        )

        try:
            reply_text = await steps.do(
                "call-llm", lambda: self._call_llm(ctx), policies.call_llm.to_policy()
            )
        except StepFailedError as e:
            logger.warning(f"Turn {run_id}: reply generation failed, using fallback ({e})")
            reply_text = self.config.assistant.fallback_reply

        await steps.do(
            "send-reply",
            lambda: self.channel.send(ctx.chat_id, reply_text, ctx.thread_id),
            policies.send_reply.to_policy(),
        )

        async def save_history() -> None:
            self.db.save_messages(ctx.chat_id, ctx.user_message, reply_text)

        await steps.do("save-history", save_history, policies.save_history.to_policy())
        logger.info(f"Turn {run_id} completed")
        return reply_text

    async def _call_llm(self, ctx: TurnContext) -> str:
        registry = self.registry_factory(ctx.chat_id, ctx.thread_id)
        on_high_risk = (
            self.approvals.on_high_risk(ctx.chat_id, ctx.thread_id)
            if self.approvals
            else None
        )
        tools = registry.gated_tools(
            on_high_risk=on_high_risk, on_executed=self._audit_callback(ctx.chat_id)
        )
        system_prompt = build_system_prompt(
            registry.get_all(), name=self.config.assistant.name
        )

        reply = await self.model.generate(
            system_prompt, ctx.history, ctx.user_message, tools
        )
        self.db.log_llm_call(
            ctx.chat_id,
            reply.model,
            reply.prompt_tokens,
            reply.completion_tokens,
            reply.duration_ms,
        )
        if not reply.text.strip():
            logger.warning(f"Empty reply for chat {ctx.chat_id}, using fallback")
            return self.config.assistant.fallback_reply
        return reply.text

    def _audit_callback(self, chat_id: str) -> OnExecuted:
        async def _on_executed(log: ToolExecutionLog) -> None:
            self.db.log_tool_execution(
                chat_id, log.tool_name, log.status, log.input, log.duration_ms
            )

        return _on_executed
