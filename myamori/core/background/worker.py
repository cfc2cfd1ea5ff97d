"""JobConsumer: drains the job queue and runs one turn per dispatch message."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from myamori.agent.runner import TurnParams

if TYPE_CHECKING:
    from myamori.agent.runner import TurnRunner
    from myamori.core.background.queue import JobQueue


class JobConsumer:
    """Pulls DispatchMessages and runs each as a turn with the job's prompt.

    A message is acked only after its turn completes. A failed turn is
    logged and nacked, so the queue hands it out again until its delivery
    attempts run out.
    """

    def __init__(self, queue: JobQueue, runner: TurnRunner):
        self.queue = queue
        self.runner = runner
        self._task: asyncio.Task | None = None

    async def process_one(self) -> bool:
        """Receive and run one message. Returns True when it was acked."""
        receipt, message = await self.queue.receive()
        logger.info(f"Running scheduled job {message.job_id} for chat {message.chat_id}")
        try:
            await self.runner.run(
                TurnParams(
                    chat_id=message.chat_id,
                    user_message=message.prompt,
                    thread_id=message.thread_id,
                )
            )
        except Exception as e:
            logger.error(f"Scheduled job {message.job_id} failed: {e}")
            if await self.queue.nack(receipt):
                logger.info(f"Scheduled job {message.job_id} requeued")
            return False
        await self.queue.ack(receipt)
        return True

    async def _loop(self) -> None:
        while True:
            await self.process_one()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("JobConsumer started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("JobConsumer stopped")
