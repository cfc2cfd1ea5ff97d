"""Approval ledger: 4-state records backing deferred high-risk tool calls.

    pending ──► approved
       │ ├────► rejected
       └──────► expired

``pending`` is the only non-terminal state. Every transition is a
compare-and-set on the current status, so duplicate decisions arriving
together change the record exactly once. Expiry is lazy: checked when a
decision arrives, never swept in the background.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel

from myamori.core.timeutil import from_iso, utcnow
from myamori.memory.store import SQLiteStore

DEFAULT_TTL_MINUTES = 10


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Decision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ResolveOutcome(str, Enum):
    RESOLVED = "resolved"
    ALREADY_RESOLVED = "already_resolved"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


class ApprovalRequest(BaseModel):
    """Approval record: mirrors SQLite pending_approvals table."""

    id: str
    chat_id: str
    thread_id: int | None = None
    tool_name: str
    tool_input: str  # JSON text
    status: ApprovalStatus
    created_at: datetime
    expires_at: datetime

    def parsed_input(self) -> Any:
        return json.loads(self.tool_input)


class ApprovalLedger:
    def __init__(
        self,
        db: SQLiteStore,
        ttl: timedelta = timedelta(minutes=DEFAULT_TTL_MINUTES),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ttl = ttl
        self.clock = clock

    def create(
        self,
        chat_id: str,
        tool_name: str,
        tool_input: Any,
        thread_id: int | None = None,
    ) -> str:
        """Record a pending approval. Returns its id."""
        approval_id = uuid.uuid4().hex
        now = self.clock()
        self.db.add_approval(
            approval_id,
            chat_id,
            thread_id,
            tool_name,
            json.dumps(tool_input, ensure_ascii=False),
            created_at=now,
            expires_at=now + self.ttl,
        )
        logger.info(f"Approval {approval_id} created for {tool_name} (chat={chat_id})")
        return approval_id

    def get(self, approval_id: str) -> ApprovalRequest | None:
        row = self.db.get_approval(approval_id)
        return ApprovalRequest(**row) if row else None

    def list_requests(
        self, chat_id: str | None = None, status: ApprovalStatus | None = None
    ) -> list[ApprovalRequest]:
        rows = self.db.list_approvals(chat_id, status.value if status else None)
        return [ApprovalRequest(**r) for r in rows]

    def resolve(self, approval_id: str, decision: Decision | str) -> ResolveOutcome:
        """Apply a human decision to a pending approval."""
        decision = Decision(decision)
        approval = self.db.get_approval(approval_id)
        if approval is None:
            return ResolveOutcome.NOT_FOUND

        if approval["status"] != ApprovalStatus.PENDING.value:
            return ResolveOutcome.ALREADY_RESOLVED

        if self.clock() > from_iso(approval["expires_at"]):
            if not self.db.transition_approval(
                approval_id, ApprovalStatus.PENDING.value, ApprovalStatus.EXPIRED.value
            ):
                return ResolveOutcome.ALREADY_RESOLVED
            logger.warning(f"Approval {approval_id} expired before a decision")
            return ResolveOutcome.EXPIRED

        if not self.db.transition_approval(
            approval_id, ApprovalStatus.PENDING.value, decision.value
        ):
            return ResolveOutcome.ALREADY_RESOLVED

        logger.info(f"Approval {approval_id} {decision.value}")
        return ResolveOutcome.RESOLVED
