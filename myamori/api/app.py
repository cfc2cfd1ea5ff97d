"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from loguru import logger

from myamori import __version__
from myamori.agent.reply import ReplyAgent
from myamori.agent.runner import TurnRunner
from myamori.agent.tools import build_registry
from myamori.api.routes import router as core_router
from myamori.api.webhooks import router as telegram_router
from myamori.approval.handler import ApprovalHandler
from myamori.approval.ledger import ApprovalLedger
from myamori.core.background.queue import InMemoryJobQueue
from myamori.core.background.worker import JobConsumer
from myamori.core.channels.telegram import TelegramChannel
from myamori.core.config.loader import load_config
from myamori.core.cron.scheduler import JobScheduler, SchedulerService
from myamori.memory.store import SQLiteStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: Config → SQLiteStore → TurnRunner → queue/consumer → scheduler. Shutdown: cleanup."""
    config = load_config()
    db = SQLiteStore(str(config.db_path))

    def registry_factory(chat_id: str, thread_id: int | None):
        return build_registry(db, chat_id, thread_id)

    channel = TelegramChannel(
        config.telegram.bot_token,
        api_base=config.telegram.api_base,
        timeout_s=config.telegram.timeout_s,
    )
    ledger = ApprovalLedger(db, ttl=timedelta(minutes=config.approval.ttl_minutes))
    approvals = ApprovalHandler(ledger, channel, registry_factory, db)
    runner = TurnRunner(
        config,
        db,
        ReplyAgent(config),
        channel,
        approvals=approvals,
        registry_factory=registry_factory,
    )

    queue = InMemoryJobQueue()
    consumer = JobConsumer(queue, runner)
    scheduler = JobScheduler(db, queue)
    scheduler_service = SchedulerService(scheduler, tick_cron=config.scheduler.tick_cron)

    consumer.start()
    if config.scheduler.enabled:
        await scheduler_service.start()

    app.state.config = config
    app.state.db = db
    app.state.channel = channel
    app.state.approvals = approvals
    app.state.runner = runner
    app.state.queue = queue
    app.state.consumer = consumer
    app.state.scheduler = scheduler
    app.state.scheduler_service = scheduler_service

    logger.info(f"Myamori API started, model: {config.assistant.model}")
    yield

    if scheduler_service.running:
        await scheduler_service.stop()
    await consumer.stop()
    logger.info("Myamori API shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Myamori API",
        description="Personal assistant with scheduled jobs and approval-gated tools",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(core_router)
    app.include_router(telegram_router)
    return app


app = create_app()
