"""FastAPI dependency injection: pull singletons from app.state."""

from __future__ import annotations

from fastapi import Request

from myamori.agent.runner import TurnRunner
from myamori.approval.handler import ApprovalHandler
from myamori.core.cron.scheduler import JobScheduler
from myamori.memory.store import SQLiteStore


def get_db(request: Request) -> SQLiteStore:
    return request.app.state.db


def get_runner(request: Request) -> TurnRunner:
    return request.app.state.runner


def get_approvals(request: Request) -> ApprovalHandler:
    """Get ApprovalHandler singleton from app state."""
    return request.app.state.approvals


def get_scheduler(request: Request) -> JobScheduler:
    """Get JobScheduler (one tick) from app state."""
    return request.app.state.scheduler
