"""JobScheduler: polls scheduled_jobs, dispatches due jobs, reschedules them."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from myamori.core.cron.expr import CronError, get_next_run
from myamori.core.cron.types import DispatchMessage, ScheduledJob
from myamori.core.timeutil import utcnow
from myamori.memory.store import SQLiteStore

if TYPE_CHECKING:
    from myamori.core.background.queue import JobQueue


class JobScheduler:
    """One scheduler tick: read due jobs → send one batch → reschedule.

    Dispatch and reschedule are not transactional. A crash after the batch
    is sent but before every job is rescheduled re-dispatches those jobs on
    the next tick, so queue consumers must tolerate re-delivery.
    """

    def __init__(
        self,
        db: SQLiteStore,
        queue: JobQueue,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.queue = queue
        self.clock = clock

    def due_jobs(self, now: datetime) -> list[ScheduledJob]:
        """Enabled jobs whose next_run_at is at or before ``now``."""
        return [ScheduledJob(**row) for row in self.db.get_due_jobs(now)]

    async def tick(self, now: datetime | None = None) -> list[DispatchMessage]:
        """Run one scheduler pass. Returns the dispatched messages."""
        now = now or self.clock()
        jobs = self.due_jobs(now)
        if not jobs:
            return []

        messages = [
            DispatchMessage(
                job_id=job.id,
                chat_id=job.chat_id,
                prompt=job.prompt,
                thread_id=job.thread_id,
            )
            for job in jobs
        ]
        await self.queue.send_batch(messages)
        logger.info(f"Scheduler dispatched {len(messages)} job(s)")

        for job in jobs:
            try:
                next_run_at = get_next_run(job.cron_expr, now)
            except CronError as e:
                logger.error(f"Disabling job {job.id}, cannot reschedule ({job.cron_expr}): {e}")
                self.db.update_scheduled_job(job.id, enabled=False, updated_at=now)
                continue
            self.db.reschedule_job(job.id, next_run_at=next_run_at, updated_at=now)
            logger.debug(f"Job {job.id} next run at {next_run_at.isoformat()}")

        return messages


class SchedulerService:
    """Periodic trigger: APScheduler fires ``JobScheduler.tick`` every minute."""

    def __init__(self, scheduler: JobScheduler, tick_cron: str = "* * * * *"):
        self.scheduler = scheduler
        self.tick_cron = tick_cron
        self._apscheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1},
            timezone="UTC",
        )

    @property
    def running(self) -> bool:
        return self._apscheduler.running

    async def start(self) -> None:
        self._apscheduler.add_job(
            self._run_tick,
            trigger=CronTrigger.from_crontab(self.tick_cron, timezone="UTC"),
            id="scheduler-tick",
            replace_existing=True,
        )
        self._apscheduler.start()
        logger.info(f"SchedulerService started ({self.tick_cron})")

    async def stop(self) -> None:
        self._apscheduler.shutdown(wait=False)
        logger.info("SchedulerService stopped")

    async def _run_tick(self) -> None:
        try:
            await self.scheduler.tick()
        except Exception as e:
            logger.error(f"Scheduler tick failed: {e}")
