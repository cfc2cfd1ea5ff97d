"""Telegram webhook: inbound messages start turns, button presses decide approvals."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from loguru import logger

from myamori.agent.runner import TurnParams, TurnRunner
from myamori.api.deps import get_approvals, get_runner
from myamori.api.routes import run_turn
from myamori.approval.handler import ApprovalHandler
from myamori.core.channels.telegram import parse_callback_data

router = APIRouter(tags=["telegram"])


@router.post("/webhooks/telegram")
async def telegram_webhook(
    request: Request,
    background: BackgroundTasks,
    runner: TurnRunner = Depends(get_runner),
    approvals: ApprovalHandler = Depends(get_approvals),
):
    """Handle one Telegram update.

    ``callback_query`` updates carry ``approve:<id>`` / ``reject:<id>`` from
    the approval keyboard. Text messages are run as a turn in the background.
    """
    body = await request.json()

    callback = body.get("callback_query")
    if callback:
        parsed = parse_callback_data(callback.get("data") or "")
        if parsed is None:
            logger.warning(f"Telegram: ignoring callback data {callback.get('data')!r}")
            return JSONResponse({"ok": True})
        decision, approval_id = parsed
        result = await approvals.handle_decision(approval_id, decision)
        return JSONResponse({"ok": True, "outcome": result.outcome.value})

    message = body.get("message") or {}
    chat_id = (message.get("chat") or {}).get("id")
    if not message.get("text") or chat_id is None:
        return JSONResponse({"ok": True})

    params = TurnParams(
        chat_id=str(chat_id),
        user_message=message["text"],
        thread_id=message.get("message_thread_id"),
        run_id=uuid.uuid4().hex,
    )
    background.add_task(run_turn, runner, params)
    return JSONResponse({"ok": True})
