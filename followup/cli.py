"""Operator CLI for the follow-up workflow."""

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import db
from .config import settings
from .generator import WorkersAIGenerator
from .messages import SqlMessageLog
from .preferences import PreferenceStore
from .queue import HANDLER_EXECUTE_TASK, RedisScheduler
from .redis_client import close_pools
from .runner import DeferredTaskRunner
from .store import SqlStateStore
from .worker import SchedulerWorker
from .workflow import FollowUpWorkflow

console = Console()


def build_workflow(scheduler: RedisScheduler | None = None) -> FollowUpWorkflow:
    """Wire the workflow to Postgres, Redis and Workers AI."""
    return FollowUpWorkflow(
        store=SqlStateStore(),
        scheduler=scheduler or RedisScheduler(),
        generator=WorkersAIGenerator(),
        messages=SqlMessageLog(),
    )


def _parse_assignment(raw: str) -> tuple[str, object]:
    if "=" not in raw:
        raise click.BadParameter(f"Expected KEY=VALUE, got {raw!r}")
    key, value = raw.split("=", 1)
    key = key.strip()
    if not key:
        raise click.BadParameter(f"Empty key in {raw!r}")
    try:
        return key, json.loads(value)
    except ValueError:
        return key, value


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Deferred follow-up workflow CLI.

    Schedules and delivers one alternative itinerary per trip request.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@main.command("init-db")
def init_db() -> None:
    """Create the state and message tables."""
    asyncio.run(db.init_db())
    console.print("[green]Tables created.[/green]")


@main.command()
@click.option("--poll-interval", type=float, default=None, help="Seconds between empty polls")
def worker(poll_interval: float | None) -> None:
    """Run the deferred job worker until interrupted."""
    scheduler = RedisScheduler()
    runner = DeferredTaskRunner(build_workflow(scheduler))
    console.print(
        f"[cyan]Worker started[/cyan] (delay {settings.followup_delay_seconds}s, "
        f"retry {settings.retry_delay_seconds}s, max retries {settings.max_retries})"
    )

    async def run() -> None:
        try:
            await SchedulerWorker(
                scheduler=scheduler, runner=runner, poll_interval=poll_interval
            ).run_forever()
        finally:
            await runner.workflow.generator.aclose()
            await close_pools()

    asyncio.run(run())


@main.command()
@click.argument("conversation_id")
def show(conversation_id: str) -> None:
    """Show the profile and follow-up records of a conversation.

    CONVERSATION_ID: The conversation identifier
    """

    async def show_state() -> None:
        state = await SqlStateStore().read(conversation_id)
        prefs = json.dumps(state.profile.preferences, indent=2, sort_keys=True)
        last = state.last_result.fingerprint if state.last_result else "-"
        console.print(
            Panel(
                f"[bold]Preferences[/bold]\n{prefs}\n\n"
                f"Notes: {state.profile.notes or '-'}\n"
                f"Last result: {last}",
                title=f"Conversation: {conversation_id}",
            )
        )

        if not state.tasks:
            console.print("[dim]No follow-up records.[/dim]")
            return

        table = Table(title="Follow-ups")
        table.add_column("Fingerprint", style="cyan")
        table.add_column("Status")
        table.add_column("Retries")
        table.add_column("Attempts")
        table.add_column("Created")

        colors = {"scheduled": "yellow", "completed": "green", "abandoned": "red"}
        for record in sorted(state.tasks.values(), key=lambda r: r.created_at):
            color = colors.get(record.status.value, "white")
            table.add_row(
                record.fingerprint,
                f"[{color}]{record.status.value}[/{color}]",
                str(record.retry_count),
                str(len(record.attempts)),
                record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(table)

    asyncio.run(show_state())


@main.command()
@click.argument("conversation_id")
@click.argument("assignments", nargs=-1)
@click.option("--notes", default=None, help="Replace the free-text notes")
def prefs(conversation_id: str, assignments: tuple[str, ...], notes: str | None) -> None:
    """Merge preferences into a conversation profile.

    ASSIGNMENTS: KEY=VALUE pairs; values are parsed as JSON when possible
    """
    delta = dict(_parse_assignment(a) for a in assignments)

    async def upsert() -> None:
        summary = await PreferenceStore(SqlStateStore()).upsert(conversation_id, delta, notes=notes)
        console.print(f"[green]{summary.message}[/green]")

    asyncio.run(upsert())


@main.command("record-primary")
@click.argument("conversation_id")
@click.argument("request")
@click.argument("primary_output")
def record_primary(conversation_id: str, request: str, primary_output: str) -> None:
    """Register a primary answer and schedule its follow-up if eligible."""

    async def record() -> None:
        workflow = build_workflow()
        try:
            result = await workflow.on_primary_produced(conversation_id, request, primary_output)
        finally:
            await workflow.generator.aclose()
            await close_pools()
        if result is None:
            console.print("[yellow]No follow-up scheduled.[/yellow]")
        else:
            console.print(f"[green]Follow-up {result.fingerprint}: {result.status.value}[/green]")

    asyncio.run(record())


@main.command("schedule-task")
@click.argument("conversation_id")
@click.argument("description")
@click.option("--delay", type=float, default=60.0, help="Delay in seconds")
def schedule_task(conversation_id: str, description: str, delay: float) -> None:
    """Schedule a reminder message for a conversation."""

    async def enqueue() -> None:
        try:
            await RedisScheduler().enqueue(
                conversation_id, delay, HANDLER_EXECUTE_TASK, json.dumps({"description": description})
            )
        finally:
            await close_pools()
        console.print(f"[green]Scheduled in {delay:.0f}s:[/green] {description}")

    asyncio.run(enqueue())


if __name__ == "__main__":
    main()
