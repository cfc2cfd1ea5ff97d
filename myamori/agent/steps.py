"""StepRunner: durable-step primitive for multi-step turns.

Each named step runs to completion once per run: a finished step's result
is kept in the journal and returned as-is if the run is replayed. Failed
attempts are retried according to the step's RetryPolicy.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, MutableMapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from loguru import logger

T = TypeVar("T")


class Backoff(str, Enum):
    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour for one step.

    ``limit`` counts retries after the first attempt; ``timeout_s`` bounds
    each attempt.
    """

    limit: int = 0
    delay_s: float = 0.0
    backoff: Backoff = Backoff.EXPONENTIAL
    timeout_s: float | None = None

    def delay_for(self, retry: int) -> float:
        """Delay before retry number ``retry`` (0-based)."""
        if self.backoff is Backoff.CONSTANT:
            return self.delay_s
        if self.backoff is Backoff.LINEAR:
            return self.delay_s * (retry + 1)
        return self.delay_s * (2**retry)


class StepFailedError(Exception):
    """A step exhausted its retries."""

    def __init__(self, step: str, attempts: int, error: BaseException):
        super().__init__(f"Step '{step}' failed after {attempts} attempt(s): {error}")
        self.step = step
        self.attempts = attempts
        self.error = error


class StepRunner:
    """Runs the named steps of one run.

    Parameters
    ----------
    run_id : str
        Identity of the run; journal keys are ``(run_id, step)``.
    journal : MutableMapping, optional
        Completed-step results. Share one mapping across runners to let a
        replayed run skip steps that already finished.
    sleep : callable, optional
        Awaitable sleep used between retries (injectable for tests).
    """

    def __init__(
        self,
        run_id: str,
        journal: MutableMapping[tuple[str, str], Any] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.run_id = run_id
        self.journal = journal if journal is not None else {}
        self._sleep = sleep

    async def do(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
    ) -> T:
        key = (self.run_id, name)
        if key in self.journal:
            logger.debug(f"Step {name} already completed for run {self.run_id}")
            return self.journal[key]

        policy = policy or RetryPolicy()
        attempts = policy.limit + 1
        attempt = 0
        while True:
            try:
                if policy.timeout_s is not None:
                    result = await asyncio.wait_for(fn(), timeout=policy.timeout_s)
                else:
                    result = await fn()
            except Exception as e:
                attempt += 1
                if attempt >= attempts:
                    logger.warning(
                        f"Step {name} exhausted {attempts} attempt(s) "
                        f"(run {self.run_id}): {e!r}"
                    )
                    raise StepFailedError(name, attempts, e) from e
                delay = policy.delay_for(attempt - 1)
                logger.info(
                    f"Step {name} attempt {attempt}/{attempts} failed: {e!r}, "
                    f"retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
                continue

            self.journal[key] = result
            return result
