"""ApprovalHandler: both phases of a risk-gated tool call.

Phase 1 (``request``) runs inside a turn as the ``on_high_risk`` callback:
it records a pending approval and asks the human. Phase 2
(``handle_decision``) runs later, possibly in another process, when the
decision arrives. The two phases share nothing but the approval id.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from myamori.agent.tools import ToolRegistry
from myamori.agent.tools.types import OnHighRisk, ToolValidationError
from myamori.approval.ledger import (
    ApprovalLedger,
    ApprovalRequest,
    Decision,
    ResolveOutcome,
)
from myamori.core.channels.base import Channel, DeliveryError
from myamori.memory.store import SQLiteStore

RegistryFactory = Callable[[str, int | None], ToolRegistry]

_RESULT_PREVIEW_LENGTH = 1000


@dataclass
class DecisionResult:
    outcome: ResolveOutcome
    message: str
    executed: bool = False


def _preview(value: Any) -> str:
    text = json.dumps(value, indent=2, default=str, ensure_ascii=False)
    if len(text) > _RESULT_PREVIEW_LENGTH:
        text = text[: _RESULT_PREVIEW_LENGTH - 3] + "..."
    return text


class ApprovalHandler:
    def __init__(
        self,
        ledger: ApprovalLedger,
        channel: Channel,
        registry_factory: RegistryFactory,
        db: SQLiteStore,
    ):
        self.ledger = ledger
        self.channel = channel
        self.registry_factory = registry_factory
        self.db = db

    # ── Phase 1: request ──────────────────────────────────────

    async def request(
        self,
        chat_id: str,
        tool_name: str,
        tool_input: Any,
        thread_id: int | None = None,
    ) -> str:
        """Create a pending approval, prompt the user, return the model notice."""
        approval_id = self.ledger.create(chat_id, tool_name, tool_input, thread_id)
        preview = f"🔒 Approval required: {tool_name}\n\nInput: {_preview(tool_input)}"
        await self.channel.send_approval_prompt(chat_id, preview, approval_id, thread_id)
        return (
            f"Approval requested for {tool_name}. The user will see an "
            "Approve/Reject prompt; the action runs only after approval."
        )

    def on_high_risk(self, chat_id: str, thread_id: int | None = None) -> OnHighRisk:
        """Bind ``request`` to one conversation for use as a gate callback."""

        async def _on_high_risk(tool_name: str, tool_input: Any) -> str:
            return await self.request(chat_id, tool_name, tool_input, thread_id)

        return _on_high_risk

    # ── Phase 2: decision ─────────────────────────────────────

    async def handle_decision(
        self, approval_id: str, decision: Decision | str
    ) -> DecisionResult:
        """Resolve an approval and, when approved, execute the tool once."""
        decision = Decision(decision)
        outcome = self.ledger.resolve(approval_id, decision)
        approval = self.ledger.get(approval_id)

        if outcome is ResolveOutcome.NOT_FOUND or approval is None:
            logger.warning(f"Approval decision for unknown id {approval_id}")
            return DecisionResult(ResolveOutcome.NOT_FOUND, "Approval request not found.")

        if outcome is ResolveOutcome.ALREADY_RESOLVED:
            message = (
                f"This request for {approval.tool_name} was already "
                f"{approval.status.value}."
            )
            await self._notify(approval, message)
            return DecisionResult(outcome, message)

        if outcome is ResolveOutcome.EXPIRED:
            message = (
                f"⌛ Approval for {approval.tool_name} expired. "
                "Nothing was executed; please ask again."
            )
            await self._notify(approval, message)
            return DecisionResult(outcome, message)

        if decision is Decision.REJECTED:
            message = f"❌ Rejected: {approval.tool_name} was not executed."
            await self._notify(approval, message)
            return DecisionResult(outcome, message)

        message, executed = await self._execute(approval)
        await self._notify(approval, message)
        return DecisionResult(outcome, message, executed=executed)

    async def _execute(self, approval: ApprovalRequest) -> tuple[str, bool]:
        registry = self.registry_factory(approval.chat_id, approval.thread_id)
        definition = registry.get_by_name(approval.tool_name)
        if definition is None:
            logger.error(f"Approved tool {approval.tool_name} is no longer registered")
            return f"⚠️ {approval.tool_name} is no longer available; nothing was executed.", False

        # The validator may have changed since the request was made
        try:
            validated = registry.validate(definition, approval.parsed_input())
        except ToolValidationError as e:
            logger.warning(f"Stored input for approval {approval.id} no longer valid: {e}")
            return (
                f"⚠️ The saved input for {approval.tool_name} is no longer valid, "
                f"so it was not executed.\n{e}",
                False,
            )

        payload = validated.model_dump(mode="json")
        start = time.time()
        try:
            result = await definition.execute(validated)
        except Exception as e:
            duration_ms = int((time.time() - start) * 1000)
            self.db.log_tool_execution(
                approval.chat_id, approval.tool_name, "error", payload, duration_ms
            )
            logger.error(f"Approved tool {approval.tool_name} failed: {e}")
            return f"⚠️ {approval.tool_name} failed: {e}", True

        duration_ms = int((time.time() - start) * 1000)
        self.db.log_tool_execution(
            approval.chat_id, approval.tool_name, "success", payload, duration_ms
        )
        logger.info(f"Approved tool {approval.tool_name} executed ({duration_ms}ms)")
        return f"✅ {approval.tool_name} completed.\n\n{_preview(result)}", True

    async def _notify(self, approval: ApprovalRequest, text: str) -> None:
        try:
            await self.channel.send(approval.chat_id, text, approval.thread_id)
        except DeliveryError as e:
            logger.error(f"Failed to report approval {approval.id} to chat: {e}")
