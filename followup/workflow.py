"""
Follow-up workflow: schedules, guards, and commits the deferred alternative
itinerary for a plannable request.

Each fingerprint moves ``scheduled -> completed`` or ``scheduled -> abandoned``
and never leaves a terminal state. The status flip is persisted before the
alternative is appended to the conversation, so a duplicate delivery of the
same deferred job observes a terminal record and does nothing. Every commit
goes through ``StateStore.update`` and re-checks the record first, so two
invocations racing through the generator produce a single message and never
overwrite unrelated parts of the conversation state.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum

from .classifier import RequestClassifier
from .config import settings
from .events import EventEmitter, EventType, WorkflowEvent, event_bus
from .fingerprint import fingerprint as compute_fingerprint
from .generator import Generator
from .messages import MessageLog
from .models import ConversationState, LastResult, Profile, TaskRecord, TaskStatus
from .queue import HANDLER_GENERATE_ALTERNATIVE, DeferredScheduler
from .store import StateStore

logger = logging.getLogger(__name__)

ALTERNATIVE_SYSTEM_PROMPT = """You are TravelPlanner, a concise, friendly agent that builds lightweight travel itineraries.

You are given an itinerary that was already suggested to the traveler. Write ONE alternative
itinerary for the same destination and duration that takes a noticeably different angle
(different neighborhoods, pace, or budget band). Keep the day-by-day format, include a simple
budget band per day (cheap / mid / premium), prefer walking and public transit, and respect
the traveler's saved preferences. Label it clearly as a suggested alternative."""


class InvokeOutcome(str, Enum):
    SKIPPED = "skipped"
    COMPLETED = "completed"
    RETRYING = "retrying"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class DeferredPayload:
    fingerprint: str
    retry: int = 0

    def to_json(self) -> str:
        return json.dumps({"fingerprint": self.fingerprint, "retry": self.retry})


def build_prompt(base_output: str, profile: Profile) -> str:
    preferences = json.dumps(profile.preferences, sort_keys=True) if profile.preferences else "none"
    lines = [
        "Original itinerary:",
        base_output.strip(),
        "",
        f"Saved preferences: {preferences}",
    ]
    if profile.notes:
        lines.append(f"Notes: {profile.notes}")
    lines.append("")
    lines.append("Write the alternative itinerary now.")
    return "\n".join(lines)


class FollowUpWorkflow:
    """Guards scheduling and execution of one follow-up per request fingerprint."""

    def __init__(
        self,
        *,
        store: StateStore,
        scheduler: DeferredScheduler,
        generator: Generator,
        messages: MessageLog,
        classifier: RequestClassifier | None = None,
        events: EventEmitter | None = None,
        followup_delay: float | None = None,
        retry_delay: float | None = None,
        max_retries: int | None = None,
        context_model: str | None = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.generator = generator
        self.messages = messages
        self.classifier = classifier or RequestClassifier()
        self.events = events or event_bus
        self.followup_delay = (
            settings.followup_delay_seconds if followup_delay is None else followup_delay
        )
        self.retry_delay = settings.retry_delay_seconds if retry_delay is None else retry_delay
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.context_model = context_model or settings.context_model

    async def _emit(
        self,
        event_type: EventType,
        conversation_id: str,
        fingerprint: str | None,
        message: str,
        **data: object,
    ) -> None:
        await self.events.emit(
            WorkflowEvent(
                type=event_type,
                conversation_id=conversation_id,
                fingerprint=fingerprint,
                message=message,
                data=dict(data),
            )
        )

    async def _abandon(self, conversation_id: str, fingerprint: str) -> TaskRecord | None:
        """Flip a still-scheduled record to abandoned; None if it already settled."""

        def abandon(state: ConversationState) -> TaskRecord | None:
            record = state.tasks.get(fingerprint)
            if record is None or record.status.is_terminal:
                return None
            record.transition(TaskStatus.ABANDONED)
            return record

        return await self.store.update(conversation_id, abandon)

    async def on_primary_produced(
        self, conversation_id: str, triggering_text: str, primary_output: str
    ) -> TaskRecord | None:
        """Schedule the follow-up for a plannable request, at most once per fingerprint.

        Returns the newly scheduled record, or None when nothing was scheduled.
        """
        if not self.classifier.is_follow_up_candidate(triggering_text):
            return None
        if not primary_output or not primary_output.strip():
            return None

        fp = compute_fingerprint(triggering_text)

        def schedule(state: ConversationState) -> TaskRecord | None:
            if fp in state.tasks:
                return None
            record = TaskRecord(fingerprint=fp, base_output=primary_output)
            state.tasks[fp] = record
            state.last_result = LastResult(fingerprint=fp, text=primary_output)
            return record

        record = await self.store.update(conversation_id, schedule)
        if record is None:
            await self._emit(
                EventType.FOLLOWUP_SKIPPED, conversation_id, fp, "duplicate request"
            )
            return None

        payload = DeferredPayload(fingerprint=fp, retry=0)
        try:
            await self.scheduler.enqueue(
                conversation_id, self.followup_delay, HANDLER_GENERATE_ALTERNATIVE, payload.to_json()
            )
        except Exception:
            # Without a timer the record would stay scheduled forever.
            logger.exception("Failed to enqueue follow-up %s for %s", fp, conversation_id)
            abandoned = await self._abandon(conversation_id, fp)
            await self._emit(
                EventType.FOLLOWUP_ABANDONED, conversation_id, fp, "enqueue failed"
            )
            return abandoned or record

        await self._emit(
            EventType.FOLLOWUP_SCHEDULED,
            conversation_id,
            fp,
            f"follow-up due in {self.followup_delay}s",
            delay=self.followup_delay,
        )
        return record

    async def on_deferred_invoke(
        self, conversation_id: str, fingerprint: str, retry_hint: int | None = None
    ) -> InvokeOutcome:
        state = await self.store.read(conversation_id)
        record = state.tasks.get(fingerprint)

        if record is None or record.status != TaskStatus.SCHEDULED:
            reason = "no record" if record is None else f"already {record.status.value}"
            await self._emit(EventType.FOLLOWUP_SKIPPED, conversation_id, fingerprint, reason)
            return InvokeOutcome.SKIPPED
        if not record.base_output or record.fingerprint != fingerprint:
            await self._emit(
                EventType.FOLLOWUP_SKIPPED, conversation_id, fingerprint, "base output missing"
            )
            return InvokeOutcome.SKIPPED
        if retry_hint is not None and retry_hint != record.retry_count:
            logger.debug(
                "Retry hint %s differs from stored count %s for %s",
                retry_hint,
                record.retry_count,
                fingerprint,
            )

        observed_retry = record.retry_count
        error: str | None = None
        text = ""
        try:
            text = await self.generator.generate(
                ALTERNATIVE_SYSTEM_PROMPT,
                build_prompt(record.base_output, state.profile),
                self.context_model,
            )
        except Exception as exc:
            logger.warning("Generator failed for %s: %s", fingerprint, exc)
            error = str(exc) or type(exc).__name__

        # The generator call may take a while; everything below re-checks the
        # stored record and mutates only that record.
        def live(fresh: ConversationState) -> TaskRecord | None:
            current = fresh.tasks.get(fingerprint)
            if current is None or current.status != TaskStatus.SCHEDULED:
                return None
            if current.fingerprint != fingerprint or current.base_output != record.base_output:
                return None
            return current

        text = (text or "").strip()
        if text:

            def complete(fresh: ConversationState) -> TaskRecord | None:
                current = live(fresh)
                if current is None:
                    return None
                current.record_attempt(ok=True)
                current.result = text
                current.transition(TaskStatus.COMPLETED)
                return current

            committed = await self.store.update(conversation_id, complete)
            if committed is None:
                await self._emit(
                    EventType.FOLLOWUP_SKIPPED, conversation_id, fingerprint, "settled elsewhere"
                )
                return InvokeOutcome.SKIPPED

            await self.messages.append(conversation_id, "assistant", text)
            await self._emit(
                EventType.FOLLOWUP_COMPLETED,
                conversation_id,
                fingerprint,
                "alternative posted",
                attempts=len(committed.attempts),
            )
            return InvokeOutcome.COMPLETED

        def fail(fresh: ConversationState) -> TaskRecord | None:
            current = live(fresh)
            if current is None or current.retry_count != observed_retry:
                return None
            current.record_attempt(ok=False, error=error or "empty output")
            if current.retry_count < self.max_retries:
                current.retry_count += 1
            else:
                current.transition(TaskStatus.ABANDONED)
            return current

        committed = await self.store.update(conversation_id, fail)
        if committed is None:
            await self._emit(
                EventType.FOLLOWUP_SKIPPED, conversation_id, fingerprint, "settled elsewhere"
            )
            return InvokeOutcome.SKIPPED

        if committed.status == TaskStatus.SCHEDULED:
            payload = DeferredPayload(fingerprint=fingerprint, retry=committed.retry_count)
            try:
                await self.scheduler.enqueue(
                    conversation_id, self.retry_delay, HANDLER_GENERATE_ALTERNATIVE, payload.to_json()
                )
            except Exception:
                logger.exception("Failed to enqueue retry for %s in %s", fingerprint, conversation_id)
                await self._abandon(conversation_id, fingerprint)
                await self._emit(
                    EventType.FOLLOWUP_ABANDONED,
                    conversation_id,
                    fingerprint,
                    "retry enqueue failed",
                    attempts=len(committed.attempts),
                )
                return InvokeOutcome.ABANDONED

            await self._emit(
                EventType.FOLLOWUP_RETRY_SCHEDULED,
                conversation_id,
                fingerprint,
                f"retry {committed.retry_count} due in {self.retry_delay}s",
                retry=committed.retry_count,
            )
            return InvokeOutcome.RETRYING

        await self._emit(
            EventType.FOLLOWUP_ABANDONED,
            conversation_id,
            fingerprint,
            f"gave up after {len(committed.attempts)} attempts",
            attempts=len(committed.attempts),
        )
        return InvokeOutcome.ABANDONED
