"""Scheduler tick: claim due executions and resume them."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..models.execution import STATUS_FAILED, WorkflowExecution
from ..models.workflow import Workflow
from ..services.collaborators import EngineServices
from .runner import WorkflowRunner
from .store import ExecutionStore

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    claimed: int = 0
    processed: int = 0
    failed: int = 0
    released: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


async def process_due_executions(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    batch_size: int | None = None,
    time_budget_seconds: float | None = None,
    now: datetime | None = None,
    services: EngineServices | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> TickResult:
    """Resume up to ``batch_size`` due executions.

    Safe to run concurrently: the claim hands each execution to exactly one
    caller. Executions left over past the batch size wait for the next tick;
    claimed executions not reached within the time budget are released back
    to the queue. A failing execution is logged and never stops the batch.
    """
    batch_size = settings.scheduler_batch_size if batch_size is None else batch_size
    budget = (
        settings.scheduler_time_budget_seconds
        if time_budget_seconds is None
        else time_budget_seconds
    )
    started = clock()
    result = TickResult()

    async with session_factory() as db:
        claimed = await ExecutionStore(db).claim_due_executions(batch_size, now=now)
    result.claimed = len(claimed)
    if not claimed:
        return result
    logger.info("Claimed %d due executions", len(claimed))

    for index, claimed_execution in enumerate(claimed):
        if clock() - started > budget:
            result.released = await _release(session_factory, claimed[index:], now)
            logger.warning(
                "Time budget of %.1fs exhausted; released %d executions", budget, result.released
            )
            break

        try:
            async with session_factory() as db:
                execution = await db.get(WorkflowExecution, claimed_execution.id)
                workflow = await db.get(Workflow, execution.workflow_id)
                runner = WorkflowRunner(db, services)
                await runner.walk(execution, workflow, now=now)
                result.processed += 1
                if execution.status == STATUS_FAILED:
                    result.failed += 1
        except Exception:
            logger.exception("Error processing execution %s", claimed_execution.id)
            result.failed += 1
            await _fail_quietly(session_factory, claimed_execution, now)

    return result


async def _release(
    session_factory: async_sessionmaker[AsyncSession],
    executions: list[WorkflowExecution],
    now: datetime | None,
) -> int:
    released = 0
    async with session_factory() as db:
        store = ExecutionStore(db)
        for claimed_execution in executions:
            execution = await db.get(WorkflowExecution, claimed_execution.id)
            try:
                await store.release(execution, now=now)
                released += 1
            except Exception:
                logger.exception("Could not release execution %s", claimed_execution.id)
    return released


async def _fail_quietly(
    session_factory: async_sessionmaker[AsyncSession],
    claimed_execution: WorkflowExecution,
    now: datetime | None,
) -> None:
    try:
        async with session_factory() as db:
            execution = await db.get(WorkflowExecution, claimed_execution.id)
            if execution is not None:
                await ExecutionStore(db).fail(execution, "Scheduler error while resuming", now=now)
    except Exception:
        logger.exception("Could not mark execution %s failed", claimed_execution.id)
