"""Task queue between the scheduler tick and turn execution.

Delivery is at-least-once and unordered: a message whose turn fails is
nacked and handed out again, up to ``max_attempts`` deliveries.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Protocol

from loguru import logger

if TYPE_CHECKING:
    from myamori.core.cron.types import DispatchMessage


class JobQueue(Protocol):
    async def send_batch(self, messages: list[DispatchMessage]) -> None: ...

    async def receive(self) -> tuple[str, DispatchMessage]: ...

    async def ack(self, receipt: str) -> None: ...

    async def nack(self, receipt: str) -> bool: ...


class InMemoryJobQueue:
    """asyncio-backed JobQueue for single-process deployments."""

    def __init__(self, maxsize: int = 0, max_attempts: int = 3) -> None:
        self._queue: asyncio.Queue[tuple[str, DispatchMessage]] = asyncio.Queue(maxsize)
        self._in_flight: dict[str, DispatchMessage] = {}
        self._attempts: dict[str, int] = {}
        self.max_attempts = max_attempts

    async def send_batch(self, messages: list[DispatchMessage]) -> None:
        for message in messages:
            await self._queue.put((uuid.uuid4().hex, message))
        logger.debug(f"Queued {len(messages)} dispatch message(s)")

    async def receive(self) -> tuple[str, DispatchMessage]:
        receipt, message = await self._queue.get()
        self._in_flight[receipt] = message
        self._attempts[receipt] = self._attempts.get(receipt, 0) + 1
        return receipt, message

    async def ack(self, receipt: str) -> None:
        self._in_flight.pop(receipt, None)
        self._attempts.pop(receipt, None)
        self._queue.task_done()

    async def nack(self, receipt: str) -> bool:
        """Return a failed message to the queue. False once it is dropped."""
        message = self._in_flight.pop(receipt, None)
        self._queue.task_done()
        if message is None:
            return False

        attempts = self._attempts.get(receipt, 0)
        if attempts >= self.max_attempts:
            self._attempts.pop(receipt, None)
            logger.error(
                f"Dropping job {message.job_id} after {attempts} failed deliveries"
            )
            return False

        await self._queue.put((receipt, message))
        return True

    async def requeue_unacked(self) -> int:
        """Put every received-but-unacked message back on the queue."""
        pending = list(self._in_flight.items())
        self._in_flight.clear()
        for receipt, message in pending:
            self._queue.task_done()
            await self._queue.put((receipt, message))
        return len(pending)

    def in_flight(self) -> int:
        return len(self._in_flight)

    def qsize(self) -> int:
        return self._queue.qsize()
