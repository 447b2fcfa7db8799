"""Append-only conversation message logs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db import get_session
from .errors import PersistenceError, SchemaNotInitializedError
from .models import MessageRow, utcnow


@dataclass(frozen=True)
class Message:
    conversation_id: str
    role: str
    text: str
    created_at: datetime = field(default_factory=utcnow)


class MessageLog(Protocol):
    async def append(self, conversation_id: str, role: str, text: str) -> None: ...


class InMemoryMessageLog:
    def __init__(self) -> None:
        self.messages: list[Message] = []

    async def append(self, conversation_id: str, role: str, text: str) -> None:
        self.messages.append(Message(conversation_id=conversation_id, role=role, text=text))

    async def history(self, conversation_id: str) -> list[Message]:
        return [m for m in self.messages if m.conversation_id == conversation_id]


class SqlMessageLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = session_factory

    async def append(self, conversation_id: str, role: str, text: str) -> None:
        try:
            async with get_session(self._factory) as session:
                session.add(MessageRow(conversation_id=conversation_id, role=role, content=text))
        except (SQLAlchemyError, SchemaNotInitializedError) as exc:
            raise PersistenceError(f"Failed to append message for {conversation_id}: {exc}") from exc

    async def history(self, conversation_id: str) -> list[Message]:
        async with get_session(self._factory) as session:
            result = await session.execute(
                select(MessageRow)
                .where(MessageRow.conversation_id == conversation_id)
                .order_by(MessageRow.id)
            )
            return [
                Message(
                    conversation_id=row.conversation_id,
                    role=row.role,
                    text=row.content,
                    created_at=row.created_at,
                )
                for row in result.scalars().all()
            ]
