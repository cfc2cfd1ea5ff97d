"""Core API routes: health, turns, approvals, scheduler."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from loguru import logger

from myamori import __version__
from myamori.agent.runner import TurnParams, TurnRunner
from myamori.api.deps import get_approvals, get_db, get_runner, get_scheduler
from myamori.approval.handler import ApprovalHandler
from myamori.approval.ledger import Decision, ResolveOutcome
from myamori.core.cron.scheduler import JobScheduler
from myamori.core.cron.types import ScheduledJob
from myamori.memory.models import (
    DecisionResponse,
    HealthResponse,
    MessageAccepted,
    MessageRequest,
    TickResponse,
)
from myamori.memory.store import SQLiteStore

router = APIRouter()

_DECISIONS = {
    "approve": Decision.APPROVED,
    "approved": Decision.APPROVED,
    "reject": Decision.REJECTED,
    "rejected": Decision.REJECTED,
}


async def run_turn(runner: TurnRunner, params: TurnParams) -> None:
    """Background-task wrapper: a failed turn is logged, never raised."""
    try:
        await runner.run(params)
    except Exception as e:
        logger.error(f"Turn {params.run_id} for chat {params.chat_id} failed: {e}")


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Health check."""
    service = getattr(request.app.state, "scheduler_service", None)
    return HealthResponse(
        status="ok",
        version=__version__,
        scheduler_running=bool(service and service.running),
    )


@router.post("/messages", response_model=MessageAccepted, status_code=202)
async def post_message(
    body: MessageRequest,
    background: BackgroundTasks,
    runner: TurnRunner = Depends(get_runner),
):
    """Start a turn for an inbound message. The reply goes out on the channel."""
    params = TurnParams(
        chat_id=body.chat_id,
        user_message=body.text,
        thread_id=body.thread_id,
        run_id=uuid.uuid4().hex,
    )
    background.add_task(run_turn, runner, params)
    return MessageAccepted(run_id=params.run_id)


@router.post("/approvals/{approval_id}/{decision}", response_model=DecisionResponse)
async def decide_approval(
    approval_id: str,
    decision: str,
    approvals: ApprovalHandler = Depends(get_approvals),
):
    """Apply an approve/reject decision to a pending approval."""
    resolved = _DECISIONS.get(decision.lower())
    if resolved is None:
        raise HTTPException(status_code=400, detail=f"Unknown decision: {decision}")

    result = await approvals.handle_decision(approval_id, resolved)
    if result.outcome is ResolveOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail=result.message)
    return DecisionResponse(
        outcome=result.outcome.value, message=result.message, executed=result.executed
    )


@router.post("/scheduler/tick", response_model=TickResponse)
async def scheduler_tick(scheduler: JobScheduler = Depends(get_scheduler)):
    """Run one scheduler pass now."""
    messages = await scheduler.tick()
    return TickResponse(dispatched=[m.to_wire() for m in messages])


@router.get("/jobs/{chat_id}", response_model=list[ScheduledJob])
async def list_jobs(chat_id: str, db: SQLiteStore = Depends(get_db)):
    """Scheduled jobs of one chat."""
    return [ScheduledJob(**row) for row in db.list_scheduled_jobs(chat_id)]
