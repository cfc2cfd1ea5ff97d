"""Myamori CLI: Typer-based command-line interface."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import typer
from rich.console import Console
from rich.table import Table

from myamori import __version__

app = typer.Typer(
    name="myamori",
    help="myamori - personal assistant with scheduled jobs and approval-gated tools",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"myamori v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """myamori - personal assistant with scheduled jobs and approval-gated tools."""


def _build_services():
    """Wire the same object graph the API lifespan builds, minus the trigger."""
    from myamori.agent.reply import ReplyAgent
    from myamori.agent.runner import TurnRunner
    from myamori.agent.tools import build_registry
    from myamori.approval.handler import ApprovalHandler
    from myamori.approval.ledger import ApprovalLedger
    from myamori.core.channels.telegram import TelegramChannel
    from myamori.core.config.loader import load_config
    from myamori.memory.store import SQLiteStore

    config = load_config()
    db = SQLiteStore(config.database.path)

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
    return config, db, approvals, runner


# ════════════════════════════════════════════════════════════
# run: start API server
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int = typer.Option(8000, "--port", "-p", help="Port number"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Start the API server (uvicorn)."""
    import uvicorn

    console.print(f"[green]Starting myamori API on {host}:{port}[/green]")
    uvicorn.run("myamori.api.app:app", host=host, port=port, reload=reload)


# ════════════════════════════════════════════════════════════
# tick: one scheduler pass
# ════════════════════════════════════════════════════════════


@app.command()
def tick(
    dry_run: bool = typer.Option(False, "--dry-run", help="Only list due jobs"),
) -> None:
    """Dispatch due jobs once and run their turns in this process."""
    from myamori.core.background.queue import InMemoryJobQueue
    from myamori.core.background.worker import JobConsumer
    from myamori.core.cron.scheduler import JobScheduler
    from myamori.core.timeutil import utcnow

    _config, db, _approvals, runner = _build_services()
    queue = InMemoryJobQueue()
    scheduler = JobScheduler(db, queue)

    if dry_run:
        due = scheduler.due_jobs(utcnow())
        if not due:
            console.print("[dim]No jobs due.[/dim]")
        for job in due:
            console.print(f"[cyan]{job.id}[/cyan] {job.name} ({job.cron_expr})")
        return

    async def _tick() -> tuple[int, int]:
        dispatched = await scheduler.tick()
        consumer = JobConsumer(queue, runner)
        done = 0
        # Failed turns are requeued until their attempts run out
        while queue.qsize():
            if await consumer.process_one():
                done += 1
        return len(dispatched), done

    dispatched, done = asyncio.run(_tick())
    console.print(f"[green]Dispatched {dispatched} job(s), {done} completed[/green]")


# ════════════════════════════════════════════════════════════
# jobs: scheduled job management (sub-command group)
# ════════════════════════════════════════════════════════════

jobs_app = typer.Typer(help="Manage scheduled jobs")
app.add_typer(jobs_app, name="jobs")


@jobs_app.command("list")
def jobs_list(
    chat_id: str | None = typer.Option(None, "--chat", "-c", help="Filter by chat ID"),
) -> None:
    """List scheduled jobs."""
    from myamori.core.config.loader import load_config
    from myamori.memory.store import SQLiteStore

    config = load_config()
    db = SQLiteStore(config.database.path)

    jobs = db.list_scheduled_jobs(chat_id)

    if not jobs:
        console.print("[dim]No scheduled jobs found.[/dim]")
        return

    table = Table(title="Scheduled Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Chat", style="blue")
    table.add_column("Cron", style="yellow")
    table.add_column("Next run", style="magenta")
    table.add_column("Enabled", style="green")

    for job in jobs:
        table.add_row(
            job["id"],
            job["name"],
            job["chat_id"],
            job["cron_expr"],
            job["next_run_at"],
            str(bool(job["enabled"])),
        )

    console.print(table)


@jobs_app.command("remove")
def jobs_remove(
    job_id: str = typer.Argument(help="Scheduled job ID to remove"),
) -> None:
    """Remove a scheduled job by ID."""
    from myamori.core.config.loader import load_config
    from myamori.memory.store import SQLiteStore

    config = load_config()
    db = SQLiteStore(config.database.path)

    if not db.delete_scheduled_job(job_id):
        console.print(f"[red]Scheduled job not found:[/red] {job_id}")
        raise typer.Exit(1)
    console.print(f"[green]Removed scheduled job:[/green] {job_id}")


# ════════════════════════════════════════════════════════════
# approvals: approval requests (sub-command group)
# ════════════════════════════════════════════════════════════

approvals_app = typer.Typer(help="Inspect and resolve approval requests")
app.add_typer(approvals_app, name="approvals")


@approvals_app.command("list")
def approvals_list(
    chat_id: str = typer.Argument(help="Chat ID"),
    status: str | None = typer.Option(None, "--status", "-s", help="pending/approved/..."),
) -> None:
    """List approval requests of a chat."""
    from myamori.core.config.loader import load_config
    from myamori.memory.store import SQLiteStore

    config = load_config()
    db = SQLiteStore(config.database.path)

    rows = db.list_approvals(chat_id, status)
    if not rows:
        console.print("[dim]No approval requests found.[/dim]")
        return

    table = Table(title=f"Approvals for {chat_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Tool", style="yellow")
    table.add_column("Status", style="green")
    table.add_column("Expires", style="magenta")
    for row in rows:
        table.add_row(row["id"], row["tool_name"], row["status"], row["expires_at"])
    console.print(table)


@approvals_app.command("resolve")
def approvals_resolve(
    approval_id: str = typer.Argument(help="Approval request ID"),
    decision: str = typer.Argument(help="approve or reject"),
) -> None:
    """Approve or reject a pending request (runs the tool on approve)."""
    from myamori.approval.ledger import Decision, ResolveOutcome

    decisions = {"approve": Decision.APPROVED, "reject": Decision.REJECTED}
    resolved = decisions.get(decision.lower())
    if resolved is None:
        console.print(f"[red]Decision must be approve or reject, got:[/red] {decision}")
        raise typer.Exit(2)

    _config, _db, approvals, _runner = _build_services()
    result = asyncio.run(approvals.handle_decision(approval_id, resolved))

    style = "green" if result.outcome is ResolveOutcome.RESOLVED else "yellow"
    console.print(f"[{style}]{result.outcome.value}[/{style}] {result.message}")
    if result.outcome is ResolveOutcome.NOT_FOUND:
        raise typer.Exit(1)


# ════════════════════════════════════════════════════════════
# cron: expression helper (sub-command group)
# ════════════════════════════════════════════════════════════

cron_app = typer.Typer(help="Cron expression helpers")
app.add_typer(cron_app, name="cron")


@cron_app.command("next")
def cron_next(
    expr: str = typer.Argument(help='Cron expression, e.g. "*/15 9-17 * * 1-5"'),
    count: int = typer.Option(5, "--count", "-n", min=1, help="How many runs to show"),
    after: str | None = typer.Option(None, "--after", help="ISO start time (UTC)"),
) -> None:
    """Show the next run times of a cron expression."""
    from myamori.core.cron.expr import CronError, get_next_run, parse_cron
    from myamori.core.timeutil import from_iso, to_iso, utcnow

    try:
        current: datetime = from_iso(after) if after else utcnow()
    except ValueError:
        console.print(f"[red]Invalid --after timestamp:[/red] {after}")
        raise typer.Exit(1)

    try:
        schedule = parse_cron(expr)
        for _ in range(count):
            current = get_next_run(schedule, current)
            console.print(to_iso(current))
    except CronError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        raise typer.Exit(1)
