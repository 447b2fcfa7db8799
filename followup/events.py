"""
Lifecycle events for the follow-up workflow.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from .models import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    FOLLOWUP_SCHEDULED = "followup.scheduled"
    FOLLOWUP_SKIPPED = "followup.skipped"
    FOLLOWUP_COMPLETED = "followup.completed"
    FOLLOWUP_RETRY_SCHEDULED = "followup.retry_scheduled"
    FOLLOWUP_ABANDONED = "followup.abandoned"

    PREFERENCES_UPDATED = "preferences.updated"

    TASK_EXECUTED = "task.executed"


@dataclass
class WorkflowEvent:
    """Standardized event emitted by the workflow."""

    type: EventType
    conversation_id: str
    fingerprint: str | None = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "conversation_id": self.conversation_id,
            "fingerprint": self.fingerprint,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


Handler = Callable[[WorkflowEvent], Awaitable[None] | None]


class EventEmitter:
    """Emits events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: list[Handler] = []

    def on_event(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def remove(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def emit(self, event: WorkflowEvent) -> None:
        for handler in self._handlers:
            try:
                result = handler(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Event handler failed for %s", event.type.value)


def log_event_handler(event: WorkflowEvent) -> None:
    level = logging.DEBUG if event.type == EventType.FOLLOWUP_SKIPPED else logging.INFO
    logger.log(
        level,
        "%s conversation=%s fingerprint=%s %s",
        event.type.value,
        event.conversation_id,
        event.fingerprint or "-",
        event.message,
    )


event_bus = EventEmitter()
event_bus.on_event(log_event_handler)
