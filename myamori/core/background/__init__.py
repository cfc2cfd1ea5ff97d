"""Background services: job queue and consumer."""

from myamori.core.background.queue import InMemoryJobQueue, JobQueue
from myamori.core.background.worker import JobConsumer

__all__ = ["InMemoryJobQueue", "JobConsumer", "JobQueue"]
