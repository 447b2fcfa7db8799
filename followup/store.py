"""Durable per-conversation state stores.

``update`` is the only safe way to change a document that another invocation
may be touching: the mutation runs against the freshly read state and the
result is written back in the same step. A mutation that returns ``None``
leaves the stored document untouched.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db import get_session
from .errors import PersistenceError, SchemaNotInitializedError
from .models import ConversationState, ConversationStateRow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateStore(Protocol):
    async def read(self, conversation_id: str) -> ConversationState: ...

    async def write(self, conversation_id: str, state: ConversationState) -> None: ...

    async def update(
        self, conversation_id: str, mutate: Callable[[ConversationState], T | None]
    ) -> T | None: ...


class InMemoryStateStore:
    """Process-local store; documents are copied on read and write."""

    def __init__(self) -> None:
        self._docs: dict[str, dict] = {}
        self.writes = 0

    async def read(self, conversation_id: str) -> ConversationState:
        return ConversationState.from_dict(copy.deepcopy(self._docs.get(conversation_id)))

    async def write(self, conversation_id: str, state: ConversationState) -> None:
        self._docs[conversation_id] = copy.deepcopy(state.to_dict())
        self.writes += 1

    async def update(
        self, conversation_id: str, mutate: Callable[[ConversationState], T | None]
    ) -> T | None:
        # No await between read and write, so this is atomic on the event loop.
        state = ConversationState.from_dict(copy.deepcopy(self._docs.get(conversation_id)))
        result = mutate(state)
        if result is not None:
            self._docs[conversation_id] = copy.deepcopy(state.to_dict())
            self.writes += 1
        return result


class SqlStateStore:
    """Stores each ConversationState as one JSON document row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = session_factory

    async def read(self, conversation_id: str) -> ConversationState:
        try:
            async with get_session(self._factory) as session:
                result = await session.execute(
                    select(ConversationStateRow.state).where(
                        ConversationStateRow.conversation_id == conversation_id
                    )
                )
                doc = result.scalar_one_or_none()
        except (SQLAlchemyError, SchemaNotInitializedError) as exc:
            raise PersistenceError(f"Failed to read state for {conversation_id}: {exc}") from exc
        return ConversationState.from_dict(doc)

    async def write(self, conversation_id: str, state: ConversationState) -> None:
        try:
            async with get_session(self._factory) as session:
                row = await session.get(ConversationStateRow, conversation_id)
                if row is None:
                    session.add(
                        ConversationStateRow(conversation_id=conversation_id, state=state.to_dict())
                    )
                else:
                    row.state = state.to_dict()
        except (SQLAlchemyError, SchemaNotInitializedError) as exc:
            raise PersistenceError(f"Failed to write state for {conversation_id}: {exc}") from exc
        logger.debug("Wrote state for %s", conversation_id)

    async def update(
        self, conversation_id: str, mutate: Callable[[ConversationState], T | None]
    ) -> T | None:
        """Read-modify-write under a row lock (``SELECT ... FOR UPDATE``).

        Two writers creating the same row race on the primary key; the loser
        surfaces as PersistenceError.
        """
        try:
            async with get_session(self._factory) as session:
                result = await session.execute(
                    select(ConversationStateRow)
                    .where(ConversationStateRow.conversation_id == conversation_id)
                    .with_for_update()
                )
                row = result.scalar_one_or_none()
                state = ConversationState.from_dict(copy.deepcopy(row.state) if row else None)
                outcome = mutate(state)
                if outcome is None:
                    return None
                if row is None:
                    session.add(
                        ConversationStateRow(conversation_id=conversation_id, state=state.to_dict())
                    )
                else:
                    row.state = state.to_dict()
        except (SQLAlchemyError, SchemaNotInitializedError) as exc:
            raise PersistenceError(f"Failed to update state for {conversation_id}: {exc}") from exc
        logger.debug("Updated state for %s", conversation_id)
        return outcome
