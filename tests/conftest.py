"""Shared test fixtures and configuration for pytest."""

from __future__ import annotations

import asyncio

import pytest

from followup.events import EventEmitter, WorkflowEvent
from followup.messages import InMemoryMessageLog
from followup.queue import InMemoryScheduler
from followup.runner import DeferredTaskRunner
from followup.store import InMemoryStateStore
from followup.workflow import FollowUpWorkflow

TOKYO_REQUEST = "Create me a 3 day trip in Tokyo"
TOKYO_PRIMARY = "Day 1: Asakusa\nDay 2: Shibuya\nDay 3: Ginza"
TOKYO_ALTERNATIVE = "Suggested alternative:\nDay 1: Yanaka\nDay 2: Koenji\nDay 3: Kichijoji"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedGenerator:
    """Plays back canned outcomes; an Exception outcome is raised. The last outcome repeats."""

    def __init__(self, *outcomes: str | Exception, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes) or [""]
        self.delay = delay
        self.calls: list[tuple[str, str, str]] = []
        self.closed = False

    async def generate(self, system_instructions: str, prompt: str, context_model: str) -> str:
        self.calls.append((system_instructions, prompt, context_model))
        index = min(len(self.calls) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[WorkflowEvent] = []

    def __call__(self, event: WorkflowEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def scheduler(clock: FakeClock) -> InMemoryScheduler:
    return InMemoryScheduler(clock=clock)


@pytest.fixture
def messages() -> InMemoryMessageLog:
    return InMemoryMessageLog()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def events(recorder: EventRecorder) -> EventEmitter:
    emitter = EventEmitter()
    emitter.on_event(recorder)
    return emitter


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator(TOKYO_ALTERNATIVE)


@pytest.fixture
def workflow(
    store: InMemoryStateStore,
    scheduler: InMemoryScheduler,
    generator: ScriptedGenerator,
    messages: InMemoryMessageLog,
    events: EventEmitter,
) -> FollowUpWorkflow:
    return FollowUpWorkflow(
        store=store,
        scheduler=scheduler,
        generator=generator,
        messages=messages,
        events=events,
        followup_delay=15,
        retry_delay=10,
        max_retries=1,
        context_model="test-model",
    )


@pytest.fixture
def runner(workflow: FollowUpWorkflow) -> DeferredTaskRunner:
    return DeferredTaskRunner(workflow)
