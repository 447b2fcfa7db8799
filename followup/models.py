"""Conversation state types and SQLAlchemy rows for the follow-up workflow."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return utcnow()


class TaskStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.SCHEDULED


@dataclass
class TaskAttempt:
    """One generator attempt for a follow-up."""

    number: int
    ok: bool
    error: str | None = None
    at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "ok": self.ok,
            "error": self.error,
            "at": self.at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskAttempt:
        return cls(
            number=int(data.get("number", 0)),
            ok=bool(data.get("ok", False)),
            error=data.get("error"),
            at=_parse_dt(data.get("at")),
        )


@dataclass
class TaskRecord:
    """Follow-up bookkeeping for one fingerprint."""

    fingerprint: str
    base_output: str | None
    status: TaskStatus = TaskStatus.SCHEDULED
    retry_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    attempts: list[TaskAttempt] = field(default_factory=list)
    result: str | None = None

    def transition(self, status: TaskStatus) -> None:
        """Move out of ``scheduled``; terminal records never change."""
        if self.status.is_terminal:
            raise ValueError(f"Task {self.fingerprint} is already {self.status.value}")
        self.status = status
        self.updated_at = utcnow()

    def record_attempt(self, *, ok: bool, error: str | None = None) -> TaskAttempt:
        attempt = TaskAttempt(number=len(self.attempts) + 1, ok=ok, error=error)
        self.attempts.append(attempt)
        self.updated_at = attempt.at
        return attempt

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "status": self.status.value,
            "base_output": self.base_output,
            "retry_count": self.retry_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "attempts": [a.to_dict() for a in self.attempts],
            "result": self.result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskRecord:
        fingerprint = str(data["fingerprint"])
        raw_status = data.get("status", TaskStatus.SCHEDULED.value)
        try:
            status = TaskStatus(raw_status)
        except ValueError:
            # Keeping the record blocks rescheduling of the same request.
            logger.warning(
                "Task %s has unknown status %r; treating it as abandoned", fingerprint, raw_status
            )
            status = TaskStatus.ABANDONED
        return cls(
            fingerprint=fingerprint,
            base_output=data.get("base_output"),
            status=status,
            retry_count=int(data.get("retry_count", 0)),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
            attempts=[
                TaskAttempt.from_dict(a) for a in data.get("attempts") or [] if isinstance(a, dict)
            ],
            result=data.get("result"),
        )


@dataclass
class LastResult:
    """Most recent primary output, keyed by the fingerprint of its request."""

    fingerprint: str
    text: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LastResult:
        return cls(
            fingerprint=str(data["fingerprint"]),
            text=str(data.get("text", "")),
            created_at=_parse_dt(data.get("created_at")),
        )


@dataclass
class Profile:
    preferences: dict[str, Any] = field(default_factory=dict)
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"preferences": self.preferences, "notes": self.notes}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Profile:
        preferences = data.get("preferences")
        return cls(
            preferences=dict(preferences) if isinstance(preferences, dict) else {},
            notes=data.get("notes"),
        )


@dataclass
class ConversationState:
    """Durable state attached to a single conversation."""

    profile: Profile = field(default_factory=Profile)
    tasks: dict[str, TaskRecord] = field(default_factory=dict)
    last_result: LastResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile.to_dict(),
            "tasks": {fp: record.to_dict() for fp, record in self.tasks.items()},
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ConversationState:
        if not isinstance(data, dict):
            return cls()

        tasks: dict[str, TaskRecord] = {}
        raw_tasks = data.get("tasks")
        if isinstance(raw_tasks, dict):
            for fp, raw in raw_tasks.items():
                if not isinstance(raw, dict):
                    continue
                try:
                    tasks[fp] = TaskRecord.from_dict({"fingerprint": fp, **raw})
                except (KeyError, TypeError, ValueError):
                    logger.warning("Dropping malformed task record %s", fp)

        last_result = None
        raw_last = data.get("last_result")
        if isinstance(raw_last, dict) and raw_last.get("fingerprint"):
            last_result = LastResult.from_dict(raw_last)

        profile = data.get("profile")
        return cls(
            profile=Profile.from_dict(profile if isinstance(profile, dict) else {}),
            tasks=tasks,
            last_result=last_result,
        )


# =============================================================================
# PERSISTENCE ROWS
# =============================================================================

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""


class ConversationStateRow(Base):
    """One JSON state document per conversation."""

    __tablename__ = "conversation_states"

    conversation_id: Mapped[str] = mapped_column(String, primary_key=True)
    state: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class MessageRow(Base):
    """Append-only conversation message log."""

    __tablename__ = "conversation_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)  # 'user', 'assistant'
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (Index("ix_conversation_messages_conversation_id", "conversation_id"),)
