from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from followup import db
from followup.errors import PersistenceError
from followup.messages import SqlMessageLog
from followup.models import ConversationState, LastResult, TaskRecord, TaskStatus
from followup.store import InMemoryStateStore, SqlStateStore


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
    factory = async_sessionmaker(engine, expire_on_commit=False)
    await db.init_db(factory)
    yield factory
    await engine.dispose()


def _sample_state() -> ConversationState:
    state = ConversationState()
    state.profile.preferences = {"pace": "slow", "budget": {"daily": 120}}
    state.profile.notes = "walkable"
    record = TaskRecord(fingerprint="fp_1", base_output="Day 1: Asakusa")
    record.record_attempt(ok=False, error="timeout")
    record.retry_count = 1
    state.tasks["fp_1"] = record
    state.last_result = LastResult(fingerprint="fp_1", text="Day 1: Asakusa")
    return state


def test_state_survives_serialisation() -> None:
    state = _sample_state()

    restored = ConversationState.from_dict(state.to_dict())

    assert restored.to_dict() == state.to_dict()
    assert restored.tasks["fp_1"].status == TaskStatus.SCHEDULED
    assert restored.tasks["fp_1"].attempts[0].error == "timeout"


def test_from_dict_tolerates_malformed_task_entries() -> None:
    doc = {
        "profile": {"preferences": {"a": 1}},
        "tasks": {
            "fp_ok": {"status": "completed", "base_output": "x"},
            "fp_bad_status": {"status": "exploded"},
            "fp_not_a_dict": "scheduled",
        },
        "last_result": {"text": "missing fingerprint"},
    }

    state = ConversationState.from_dict(doc)

    assert sorted(state.tasks) == ["fp_bad_status", "fp_ok"]
    assert state.tasks["fp_ok"].status == TaskStatus.COMPLETED
    assert state.tasks["fp_bad_status"].status == TaskStatus.ABANDONED
    assert state.last_result is None
    assert state.profile.preferences == {"a": 1}


def test_terminal_record_cannot_transition() -> None:
    record = TaskRecord(fingerprint="fp_1", base_output="x")
    record.transition(TaskStatus.COMPLETED)

    with pytest.raises(ValueError):
        record.transition(TaskStatus.ABANDONED)


@pytest.mark.asyncio
async def test_in_memory_store_isolates_callers_from_stored_copy() -> None:
    store = InMemoryStateStore()
    state = _sample_state()
    await store.write("conv", state)

    state.profile.preferences["pace"] = "fast"

    assert (await store.read("conv")).profile.preferences["pace"] == "slow"


@pytest.mark.asyncio
async def test_sql_store_round_trip(session_factory: async_sessionmaker[AsyncSession]) -> None:
    store = SqlStateStore(session_factory)
    assert (await store.read("conv")).to_dict() == ConversationState().to_dict()

    state = _sample_state()
    await store.write("conv", state)
    state.tasks["fp_1"].transition(TaskStatus.COMPLETED)
    await store.write("conv", state)

    loaded = await store.read("conv")
    assert loaded.tasks["fp_1"].status == TaskStatus.COMPLETED
    assert loaded.profile.preferences == {"pace": "slow", "budget": {"daily": 120}}
    assert (await store.read("other")).tasks == {}


@pytest.mark.asyncio
async def test_sql_message_log_keeps_append_order(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    log = SqlMessageLog(session_factory)
    await log.append("conv", "assistant", "first")
    await log.append("other", "assistant", "elsewhere")
    await log.append("conv", "user", "second")

    history = await log.history("conv")

    assert [(m.role, m.text) for m in history] == [("assistant", "first"), ("user", "second")]


@pytest.mark.asyncio
async def test_sql_store_wraps_database_errors(tmp_path) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    store = SqlStateStore(async_sessionmaker(engine, expire_on_commit=False))
    try:
        with pytest.raises(PersistenceError):
            await store.read("conv")
    finally:
        await engine.dispose()


def _mark_completed(state: ConversationState) -> TaskRecord | None:
    record = state.tasks.get("fp_1")
    if record is None or record.status.is_terminal:
        return None
    record.transition(TaskStatus.COMPLETED)
    return record


@pytest.mark.asyncio
async def test_in_memory_update_writes_only_applied_mutations() -> None:
    store = InMemoryStateStore()
    await store.write("conv", _sample_state())

    first = await store.update("conv", _mark_completed)
    second = await store.update("conv", _mark_completed)

    assert first is not None and first.status == TaskStatus.COMPLETED
    assert second is None
    assert store.writes == 2
    assert (await store.read("conv")).tasks["fp_1"].status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_sql_store_update_applies_mutation_to_fresh_row(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    store = SqlStateStore(session_factory)
    assert await store.update("conv", _mark_completed) is None
    assert (await store.read("conv")).tasks == {}

    await store.write("conv", _sample_state())

    def add_note(state: ConversationState) -> str:
        state.profile.notes = "late riser"
        return "ok"

    assert await store.update("conv", add_note) == "ok"
    committed = await store.update("conv", _mark_completed)
    assert committed is not None
    assert await store.update("conv", _mark_completed) is None

    loaded = await store.read("conv")
    assert loaded.profile.notes == "late riser"
    assert loaded.tasks["fp_1"].status == TaskStatus.COMPLETED
    assert loaded.profile.preferences == {"pace": "slow", "budget": {"daily": 120}}


@pytest.mark.asyncio
async def test_sql_store_update_creates_missing_row(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    store = SqlStateStore(session_factory)

    def seed(state: ConversationState) -> TaskRecord:
        record = TaskRecord(fingerprint="fp_new", base_output="Day 1: Alfama")
        state.tasks["fp_new"] = record
        return record

    await store.update("conv", seed)

    assert (await store.read("conv")).tasks["fp_new"].status == TaskStatus.SCHEDULED


@pytest.mark.asyncio
async def test_sql_store_update_wraps_database_errors(tmp_path) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    store = SqlStateStore(async_sessionmaker(engine, expire_on_commit=False))
    try:
        with pytest.raises(PersistenceError):
            await store.update("conv", _mark_completed)
    finally:
        await engine.dispose()
