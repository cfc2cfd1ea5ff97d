"""Human approval for high-risk tool calls."""

from myamori.approval.handler import ApprovalHandler, DecisionResult
from myamori.approval.ledger import (
    ApprovalLedger,
    ApprovalRequest,
    ApprovalStatus,
    Decision,
    ResolveOutcome,
)

__all__ = [
    "ApprovalHandler",
    "ApprovalLedger",
    "ApprovalRequest",
    "ApprovalStatus",
    "Decision",
    "DecisionResult",
    "ResolveOutcome",
]
