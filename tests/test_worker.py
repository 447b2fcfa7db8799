import json

import pytest
from click.testing import CliRunner

from followup import cli
from followup.cli import _parse_assignment, main
from followup.errors import PersistenceError
from followup.events import EventEmitter
from followup.fingerprint import fingerprint
from followup.messages import InMemoryMessageLog
from followup.models import TaskStatus
from followup.queue import InMemoryScheduler, RedisScheduler
from followup.runner import DeferredTaskRunner
from followup.store import InMemoryStateStore
from followup.worker import SchedulerWorker
from followup.workflow import FollowUpWorkflow

from conftest import TOKYO_ALTERNATIVE, TOKYO_PRIMARY, TOKYO_REQUEST, ScriptedGenerator
from test_queue import FakeRedis


@pytest.mark.asyncio
async def test_worker_dispatches_due_jobs_to_runner(events) -> None:
    store = InMemoryStateStore()
    messages = InMemoryMessageLog()
    scheduler = RedisScheduler(FakeRedis(), key="test:schedule")  # type: ignore[arg-type]
    workflow = FollowUpWorkflow(
        store=store,
        scheduler=scheduler,
        generator=ScriptedGenerator(TOKYO_ALTERNATIVE),
        messages=messages,
        events=events,
        followup_delay=0,
    )
    worker = SchedulerWorker(scheduler=scheduler, runner=DeferredTaskRunner(workflow))

    await workflow.on_primary_produced("conv", TOKYO_REQUEST, TOKYO_PRIMARY)
    # A duplicate delivery of the same job must not post twice.
    await scheduler.enqueue(
        "conv",
        0,
        "generate_alternative",
        json.dumps({"fingerprint": fingerprint(TOKYO_REQUEST), "retry": 0}),
    )

    assert await worker.run_once() == 2
    assert await worker.run_once() == 0
    assert (await store.read("conv")).tasks[fingerprint(TOKYO_REQUEST)].status == TaskStatus.COMPLETED
    assert len(messages.messages) == 1


def test_parse_assignment_decodes_json_values() -> None:
    assert _parse_assignment("budget={\"daily\": 100}") == ("budget", {"daily": 100})
    assert _parse_assignment("pace=slow") == ("pace", "slow")
    assert _parse_assignment("nights=3") == ("nights", 3)


def test_cli_help_lists_commands() -> None:
    result = CliRunner().invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("worker", "show", "prefs", "record-primary", "schedule-task", "init-db"):
        assert command in result.output


def _cli_workflow(generator: ScriptedGenerator, store: object) -> FollowUpWorkflow:
    return FollowUpWorkflow(
        store=store,  # type: ignore[arg-type]
        scheduler=InMemoryScheduler(),
        generator=generator,
        messages=InMemoryMessageLog(),
        events=EventEmitter(),
    )


def test_record_primary_closes_the_generator(monkeypatch) -> None:
    generator = ScriptedGenerator(TOKYO_ALTERNATIVE)
    workflow = _cli_workflow(generator, InMemoryStateStore())
    monkeypatch.setattr(cli, "build_workflow", lambda scheduler=None: workflow)

    result = CliRunner().invoke(main, ["record-primary", "conv", TOKYO_REQUEST, TOKYO_PRIMARY])

    assert result.exit_code == 0, result.output
    assert "scheduled" in result.output
    assert generator.closed


def test_record_primary_closes_the_generator_on_failure(monkeypatch) -> None:
    class UnavailableStore(InMemoryStateStore):
        async def update(self, conversation_id, mutate):
            raise PersistenceError("database down")

    generator = ScriptedGenerator(TOKYO_ALTERNATIVE)
    workflow = _cli_workflow(generator, UnavailableStore())
    monkeypatch.setattr(cli, "build_workflow", lambda scheduler=None: workflow)

    result = CliRunner().invoke(main, ["record-primary", "conv", TOKYO_REQUEST, TOKYO_PRIMARY])

    assert result.exit_code != 0
    assert isinstance(result.exception, PersistenceError)
    assert generator.closed
