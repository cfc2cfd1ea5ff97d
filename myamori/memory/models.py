"""Pydantic data models: API request / response bodies."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    version: str
    scheduler_running: bool = False


class MessageRequest(BaseModel):
    chat_id: str
    text: str
    thread_id: int | None = None


class MessageAccepted(BaseModel):
    run_id: str
    status: str = "accepted"


class DecisionResponse(BaseModel):
    outcome: str
    message: str
    executed: bool = False


class TickResponse(BaseModel):
    dispatched: list[dict[str, Any]]
