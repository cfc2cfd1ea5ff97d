"""Scheduled job tools: list, create, update, delete recurring prompts."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel, Field

from myamori.agent.tools.types import RiskLevel, ToolDefinition, define_tool
from myamori.core.cron.expr import get_next_run, parse_cron
from myamori.core.timeutil import to_iso, utcnow

if TYPE_CHECKING:
    from myamori.memory.store import SQLiteStore


class JobNotFoundError(LookupError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class ListScheduledJobsInput(BaseModel):
    pass


class CreateScheduledJobInput(BaseModel):
    name: str = Field(description="Human-readable name for the job")
    cron_expr: str = Field(
        description="5-field cron expression (minute hour dom month dow)"
    )
    prompt: str = Field(description="Message to send to the assistant when the job runs")


class UpdateScheduledJobInput(BaseModel):
    job_id: str = Field(description="ID of the job to update")
    name: str | None = Field(default=None, description="New name for the job")
    cron_expr: str | None = Field(default=None, description="New cron expression")
    prompt: str | None = Field(default=None, description="New prompt for the job")
    enabled: bool | None = Field(default=None, description="Enable or disable the job")


class DeleteScheduledJobInput(BaseModel):
    job_id: str = Field(description="ID of the job to delete")


def make_scheduling_tools(
    db: SQLiteStore,
    chat_id: str,
    thread_id: int | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> list[ToolDefinition]:
    """Create scheduled-job tools bound to one chat."""

    async def list_scheduled_jobs(_: ListScheduledJobsInput) -> dict[str, Any]:
        jobs = db.list_scheduled_jobs(chat_id)
        return {
            "jobs": [
                {
                    "id": j["id"],
                    "name": j["name"],
                    "cronExpr": j["cron_expr"],
                    "prompt": j["prompt"],
                    "enabled": bool(j["enabled"]),
                    "nextRunAt": j["next_run_at"],
                    "createdAt": j["created_at"],
                    "updatedAt": j["updated_at"],
                }
                for j in jobs
            ]
        }

    async def create_scheduled_job(params: CreateScheduledJobInput) -> dict[str, Any]:
        # Raises CronError before anything is persisted
        schedule = parse_cron(params.cron_expr)
        now = clock()
        next_run_at = get_next_run(schedule, now)
        job_id = str(uuid.uuid4())
        db.add_scheduled_job(
            job_id,
            params.name,
            params.cron_expr,
            params.prompt,
            chat_id,
            next_run_at,
            thread_id=thread_id,
            now=now,
        )
        logger.info(f"Scheduled job created: {job_id} ({params.cron_expr})")
        return {
            "id": job_id,
            "name": params.name,
            "cronExpr": params.cron_expr,
            "nextRunAt": to_iso(next_run_at),
            "created": True,
        }

    async def update_scheduled_job(params: UpdateScheduledJobInput) -> dict[str, Any]:
        job = db.get_scheduled_job(params.job_id)
        if job is None or job["chat_id"] != chat_id:
            raise JobNotFoundError(params.job_id)

        now = clock()
        updates: dict[str, Any] = {"updated_at": now}
        if params.name is not None:
            updates["name"] = params.name
        if params.prompt is not None:
            updates["prompt"] = params.prompt
        if params.enabled is not None:
            updates["enabled"] = params.enabled
        if params.cron_expr is not None:
            schedule = parse_cron(params.cron_expr)
            updates["cron_expr"] = params.cron_expr
            updates["next_run_at"] = get_next_run(schedule, now)

        db.update_scheduled_job(params.job_id, **updates)
        logger.info(f"Scheduled job updated: {params.job_id}")
        return {"jobId": params.job_id, "updated": True}

    async def delete_scheduled_job(params: DeleteScheduledJobInput) -> dict[str, Any]:
        if not db.delete_scheduled_job(params.job_id, chat_id=chat_id):
            raise JobNotFoundError(params.job_id)
        logger.info(f"Scheduled job deleted: {params.job_id}")
        return {"jobId": params.job_id, "deleted": True}

    return [
        define_tool(
            name="list_scheduled_jobs",
            description=(
                "List all scheduled jobs. Returns job details including name, "
                "cron expression, prompt, enabled status, and next run time."
            ),
            input_model=ListScheduledJobsInput,
            risk_level=RiskLevel.LOW,
            execute=list_scheduled_jobs,
        ),
        define_tool(
            name="create_scheduled_job",
            description=(
                "Create a new scheduled job. Uses a 5-field cron expression "
                "(minute hour day-of-month month day-of-week). Supports numbers, *, "
                "commas (,), ranges (-), and steps (/). Examples: '0 9 * * *' "
                "(daily 9am UTC), '*/30 * * * *' (every 30 min), '0 9 * * 1-5' "
                "(weekdays 9am UTC). Requires approval."
            ),
            input_model=CreateScheduledJobInput,
            risk_level=RiskLevel.HIGH,
            execute=create_scheduled_job,
        ),
        define_tool(
            name="update_scheduled_job",
            description=(
                "Update an existing scheduled job. Can change name, cron expression, "
                "prompt, or enabled status. Requires approval."
            ),
            input_model=UpdateScheduledJobInput,
            risk_level=RiskLevel.HIGH,
            execute=update_scheduled_job,
        ),
        define_tool(
            name="delete_scheduled_job",
            description="Delete a scheduled job. Requires approval.",
            input_model=DeleteScheduledJobInput,
            risk_level=RiskLevel.HIGH,
            execute=delete_scheduled_job,
        ),
    ]
