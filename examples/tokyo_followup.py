"""
Tokyo Follow-up Example

Walks one trip request through the follow-up workflow with in-memory
collaborators and a canned generator, so no database, Redis or AI account is
needed.

Usage:
    python examples/tokyo_followup.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from followup.messages import InMemoryMessageLog
from followup.preferences import PreferenceStore
from followup.queue import InMemoryScheduler
from followup.runner import DeferredTaskRunner
from followup.store import InMemoryStateStore
from followup.workflow import FollowUpWorkflow

console = Console()

REQUEST = "Create me a 3 day trip in Tokyo"
PRIMARY = """Day 1: Asakusa, Senso-ji, Ueno Park (cheap)
Day 2: Shibuya, Harajuku, Meiji Shrine (mid)
Day 3: Tsukiji outer market, Ginza, teamLab (premium)"""


class CannedGenerator:
    async def generate(self, system_instructions: str, prompt: str, context_model: str) -> str:
        return """Suggested alternative:
Day 1: Yanaka, Nezu Shrine, Kappabashi (cheap)
Day 2: Shimokitazawa, Koenji vintage shops (cheap)
Day 3: Kichijoji, Inokashira Park, Ghibli Museum (mid)"""


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def main() -> None:
    console.print(
        Panel.fit(
            "[bold]Tokyo Follow-up Example[/bold]\nOne request, one deferred alternative",
            border_style="blue",
        )
    )

    clock = FakeClock()
    store = InMemoryStateStore()
    scheduler = InMemoryScheduler(clock=clock)
    messages = InMemoryMessageLog()
    workflow = FollowUpWorkflow(
        store=store, scheduler=scheduler, generator=CannedGenerator(), messages=messages
    )
    runner = DeferredTaskRunner(workflow)

    ack = await PreferenceStore(store).upsert("demo", {"pace": "relaxed", "budget": {"daily": 120}})
    console.print(f"[green]{ack.message}[/green]")

    record = await workflow.on_primary_produced("demo", REQUEST, PRIMARY)
    await workflow.on_primary_produced("demo", REQUEST, PRIMARY)
    console.print(f"Scheduled follow-up [cyan]{record.fingerprint}[/cyan]; jobs queued: {len(scheduler.jobs)}")

    clock.now = 15
    await scheduler.run_due(runner)

    state = await store.read("demo")
    table = Table(title="Follow-ups")
    table.add_column("Fingerprint", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts")
    for rec in state.tasks.values():
        table.add_row(rec.fingerprint, rec.status.value, str(len(rec.attempts)))
    console.print(table)

    for message in await messages.history("demo"):
        console.print(Panel(message.text, title=message.role))


if __name__ == "__main__":
    asyncio.run(main())
