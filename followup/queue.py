"""Deferred job scheduling: enqueue a named handler to run after a delay."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol
from uuid import uuid4

from .config import settings
from .errors import QueueFullError
from .redis_client import get_redis_client

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from .runner import DeferredTaskRunner

logger = logging.getLogger(__name__)

HANDLER_GENERATE_ALTERNATIVE = "generate_alternative"
HANDLER_EXECUTE_TASK = "execute_task"


@dataclass(frozen=True)
class ScheduledJob:
    conversation_id: str
    handler: str
    payload: str
    due_at: float
    id: str = field(default_factory=lambda: uuid4().hex)

    def to_json(self) -> str:
        return json.dumps(
            {
                "id": self.id,
                "conversation_id": self.conversation_id,
                "handler": self.handler,
                "payload": self.payload,
                "due_at": self.due_at,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str) -> ScheduledJob:
        data: dict[str, Any] = json.loads(raw)
        return cls(
            id=str(data["id"]),
            conversation_id=str(data["conversation_id"]),
            handler=str(data["handler"]),
            payload=str(data.get("payload", "")),
            due_at=float(data["due_at"]),
        )


class DeferredScheduler(Protocol):
    async def enqueue(
        self, conversation_id: str, delay_seconds: float, handler_name: str, payload: str
    ) -> None: ...


class InMemoryScheduler:
    """Keeps jobs in a list against an injectable clock; used for tests and local runs."""

    def __init__(self, clock: Any = time.monotonic) -> None:
        self._clock = clock
        self.jobs: list[ScheduledJob] = []

    async def enqueue(
        self, conversation_id: str, delay_seconds: float, handler_name: str, payload: str
    ) -> None:
        self.jobs.append(
            ScheduledJob(
                conversation_id=conversation_id,
                handler=handler_name,
                payload=payload,
                due_at=self._clock() + delay_seconds,
            )
        )

    def due(self, now: float | None = None) -> list[ScheduledJob]:
        """Remove and return jobs whose delay has elapsed, earliest first."""
        now = self._clock() if now is None else now
        ready = sorted((j for j in self.jobs if j.due_at <= now), key=lambda j: j.due_at)
        self.jobs = [j for j in self.jobs if j.due_at > now]
        return ready

    async def run_due(self, runner: DeferredTaskRunner, now: float | None = None) -> int:
        ready = self.due(now)
        for job in ready:
            await runner.handle(job.conversation_id, job.handler, job.payload)
        return len(ready)


class RedisScheduler:
    """Sorted-set schedule scored by due time (epoch seconds)."""

    def __init__(self, redis: Redis | None = None, *, key: str | None = None) -> None:
        self._redis = redis
        self.key = key or settings.schedule_key

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_client()
        return self._redis

    async def _ensure_capacity(self) -> None:
        length = await self.redis.zcard(self.key)
        if length >= settings.redis_queue_max_depth:
            raise QueueFullError(f"Schedule {self.key} at capacity ({length})")

    async def enqueue(
        self, conversation_id: str, delay_seconds: float, handler_name: str, payload: str
    ) -> None:
        await self._ensure_capacity()
        job = ScheduledJob(
            conversation_id=conversation_id,
            handler=handler_name,
            payload=payload,
            due_at=time.time() + delay_seconds,
        )
        await self.redis.zadd(self.key, {job.to_json(): job.due_at})
        logger.debug("Enqueued %s for %s due at %.0f", handler_name, conversation_id, job.due_at)

    async def due(self, now: float | None = None, *, limit: int = 50) -> list[ScheduledJob]:
        """Claim due jobs; a job removed by another worker first is skipped."""
        now = time.time() if now is None else now
        members = await self.redis.zrangebyscore(self.key, "-inf", now, start=0, num=limit)
        claimed: list[ScheduledJob] = []
        for member in members:
            if await self.redis.zrem(self.key, member) != 1:
                continue
            try:
                claimed.append(ScheduledJob.from_json(member))
            except (ValueError, KeyError, TypeError):
                logger.warning("Dropping malformed scheduled job: %s", member[:200])
        return claimed
