"""Scheduled job types."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ScheduledJob(BaseModel):
    """Scheduled job: mirrors SQLite scheduled_jobs table."""

    id: str
    name: str
    cron_expr: str
    prompt: str
    chat_id: str
    thread_id: int | None = None
    enabled: bool = True
    next_run_at: datetime
    created_at: datetime
    updated_at: datetime


class DispatchMessage(BaseModel):
    """Queue payload for one due job. Wire names are camelCase."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    chat_id: str = Field(alias="chatId")
    prompt: str
    thread_id: int | None = Field(default=None, alias="threadId")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
