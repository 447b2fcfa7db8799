"""Polling worker that dispatches due deferred jobs to the runner."""

from __future__ import annotations

import asyncio
import logging
import signal

from .config import settings
from .queue import RedisScheduler
from .runner import DeferredTaskRunner

logger = logging.getLogger(__name__)


class SchedulerWorker:
    """Claims due jobs from the schedule and runs them one at a time."""

    def __init__(
        self,
        *,
        scheduler: RedisScheduler,
        runner: DeferredTaskRunner,
        poll_interval: float | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.runner = runner
        self.poll_interval = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self.shutdown_requested = False

    def _install_signal_handlers(self) -> None:
        def _handle_signal(signum: int, frame: object) -> None:
            logger.info("Received signal %s, shutting down", signum)
            self.shutdown_requested = True

        signal.signal(signal.SIGTERM, _handle_signal)
        signal.signal(signal.SIGINT, _handle_signal)

    async def run_once(self) -> int:
        """Dispatch every job that is currently due; returns how many ran."""
        jobs = await self.scheduler.due()
        for job in jobs:
            logger.debug("Dispatching %s for %s", job.handler, job.conversation_id)
            await self.runner.handle(job.conversation_id, job.handler, job.payload)
        return len(jobs)

    async def run_forever(self) -> None:
        self._install_signal_handlers()
        logger.info("Scheduler worker polling %s", self.scheduler.key)

        while not self.shutdown_requested:
            try:
                ran = await self.run_once()
            except Exception:
                logger.exception("Failed to poll schedule %s", self.scheduler.key)
                ran = 0
            if not ran:
                await asyncio.sleep(self.poll_interval)
