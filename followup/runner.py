"""Entry point invoked by the deferred scheduler."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .events import EventType, WorkflowEvent
from .fingerprint import looks_like_fingerprint
from .queue import HANDLER_EXECUTE_TASK, HANDLER_GENERATE_ALTERNATIVE
from .workflow import DeferredPayload, FollowUpWorkflow, InvokeOutcome

logger = logging.getLogger(__name__)


def parse_payload(payload: Any) -> DeferredPayload | None:
    """Parse a ``generate_alternative`` payload; returns None when unusable.

    Accepts ``{"fingerprint": ..., "retry": n}`` JSON and, for jobs queued by
    older builds, a bare fingerprint string.
    """
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    if not isinstance(payload, str):
        return None
    raw = payload.strip()
    if not raw:
        return None

    try:
        data = json.loads(raw)
    except ValueError:
        return DeferredPayload(fingerprint=raw) if looks_like_fingerprint(raw) else None

    if isinstance(data, str):
        return DeferredPayload(fingerprint=data) if looks_like_fingerprint(data) else None
    if not isinstance(data, dict):
        return None

    fp = data.get("fingerprint")
    if not isinstance(fp, str) or not fp:
        return None
    try:
        retry = int(data.get("retry", 0) or 0)
    except (TypeError, ValueError):
        retry = 0
    return DeferredPayload(fingerprint=fp, retry=retry)


def parse_task_description(payload: Any) -> str:
    if not isinstance(payload, str):
        return ""
    try:
        data = json.loads(payload)
    except ValueError:
        return payload.strip()
    if isinstance(data, dict):
        description = data.get("description")
        return description.strip() if isinstance(description, str) else ""
    if isinstance(data, str):
        return data.strip()
    return ""


class DeferredTaskRunner:
    """Dispatches scheduler invocations to handlers; never raises."""

    def __init__(self, workflow: FollowUpWorkflow) -> None:
        self.workflow = workflow
        self._handlers: dict[str, Callable[[str, Any], Awaitable[Any]]] = {
            HANDLER_GENERATE_ALTERNATIVE: self._generate_alternative,
            HANDLER_EXECUTE_TASK: self._execute_task,
        }

    async def handle(self, conversation_id: str, handler_name: str, payload: Any) -> Any:
        handler = self._handlers.get(handler_name)
        if handler is None:
            logger.warning("Ignoring job with unknown handler %r for %s", handler_name, conversation_id)
            return None
        try:
            return await handler(conversation_id, payload)
        except Exception:
            logger.exception(
                "Deferred handler %s failed for conversation %s", handler_name, conversation_id
            )
            return None

    async def _generate_alternative(self, conversation_id: str, payload: Any) -> InvokeOutcome:
        parsed = parse_payload(payload)
        if parsed is None:
            logger.info("Ignoring malformed follow-up payload for %s", conversation_id)
            return InvokeOutcome.SKIPPED
        return await self.workflow.on_deferred_invoke(
            conversation_id, parsed.fingerprint, retry_hint=parsed.retry
        )

    async def _execute_task(self, conversation_id: str, payload: Any) -> str | None:
        description = parse_task_description(payload)
        if not description:
            logger.info("Ignoring scheduled task without description for %s", conversation_id)
            return None
        text = f"Running scheduled task: {description}"
        await self.workflow.messages.append(conversation_id, "user", text)
        await self.workflow.events.emit(
            WorkflowEvent(
                type=EventType.TASK_EXECUTED,
                conversation_id=conversation_id,
                message=description,
            )
        )
        return text
