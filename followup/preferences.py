"""Conversation profile storage with deep-merge upserts."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import PreferenceError
from .events import EventEmitter, EventType, WorkflowEvent, event_bus
from .models import ConversationState, Profile
from .store import StateStore

logger = logging.getLogger(__name__)


def deep_merge(base: Mapping[str, Any], delta: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``delta`` merged in; neither input is mutated.

    Nested mappings merge recursively; lists and scalars in ``delta`` replace
    the existing value. Keys absent from ``delta`` are kept as-is.
    """
    merged = dict(base)
    for key, incoming in delta.items():
        existing = merged.get(key)
        if isinstance(existing, Mapping) and isinstance(incoming, Mapping):
            merged[key] = deep_merge(existing, incoming)
        elif isinstance(incoming, Mapping):
            merged[key] = deep_merge({}, incoming)
        elif isinstance(incoming, list):
            merged[key] = list(incoming)
        else:
            merged[key] = incoming
    return merged


@dataclass
class AckSummary:
    """What an upsert changed, plus a short human-readable acknowledgment."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    notes_updated: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.notes_updated)

    @property
    def message(self) -> str:
        if not self.changed:
            return "No preference changes."
        parts: list[str] = []
        if self.added:
            parts.append("added " + ", ".join(self.added))
        if self.updated:
            parts.append("updated " + ", ".join(self.updated))
        text = f"Saved preferences: {'; '.join(parts)}." if parts else ""
        if self.notes_updated:
            text = f"{text} Notes updated.".strip()
        return text

    def __str__(self) -> str:
        return self.message


class PreferenceStore:
    """Reads and upserts the profile attached to a conversation."""

    def __init__(self, store: StateStore, *, events: EventEmitter | None = None) -> None:
        self._store = store
        self._events = events or event_bus

    async def get_profile(self, conversation_id: str) -> Profile:
        state = await self._store.read(conversation_id)
        return state.profile

    async def upsert(
        self,
        conversation_id: str,
        delta: Mapping[str, Any] | None,
        notes: str | None = None,
    ) -> AckSummary:
        if delta is None:
            delta = {}
        if not isinstance(delta, Mapping):
            raise PreferenceError(f"Preference delta must be a mapping, got {type(delta).__name__}")

        def merge(state: ConversationState) -> AckSummary:
            current = state.profile.preferences
            merged = deep_merge(current, delta)
            summary = AckSummary(
                added=sorted(k for k in delta if k not in current),
                updated=sorted(k for k in delta if k in current and current[k] != merged[k]),
            )
            state.profile.preferences = merged
            if notes is not None:
                summary.notes_updated = notes != state.profile.notes
                state.profile.notes = notes
            return summary

        summary = await self._store.update(conversation_id, merge)
        await self._events.emit(
            WorkflowEvent(
                type=EventType.PREFERENCES_UPDATED,
                conversation_id=conversation_id,
                message=summary.message,
                data={"added": summary.added, "updated": summary.updated},
            )
        )
        return summary
