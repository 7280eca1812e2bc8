"""In-process periodic invoker for the execution scheduler."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import settings
from .database import async_session_factory
from .engine.scheduler import process_due_executions

logger = logging.getLogger(__name__)


class SchedulerWorker:
    """Runs one scheduler tick every ``scheduler_interval_seconds``.

    Holds no execution state between ticks; several workers (or a worker plus
    the cron endpoint) may run side by side.
    """

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None or not settings.scheduler_enabled:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="leadflow-scheduler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                result = await process_due_executions(async_session_factory)
                if result.claimed:
                    logger.info("Scheduler tick: %s", result.to_dict())
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduler tick failed")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=settings.scheduler_interval_seconds
                )
            except asyncio.TimeoutError:
                pass


scheduler_worker = SchedulerWorker()
