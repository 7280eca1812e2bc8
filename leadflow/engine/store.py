"""Execution state store: the only writer of ``workflow_execution`` rows."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from ..models.execution import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RUNNING,
    STATUS_STOPPED,
    STATUS_WAITING,
    WorkflowExecution,
)
from ..models.log import WorkflowLog
from ..models.workflow import Workflow
from .context import ExecutionContext
from .errors import StaleExecutionError

logger = logging.getLogger(__name__)

_LIVE = (STATUS_PENDING, STATUS_RUNNING, STATUS_WAITING)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStore:
    """Owns the execution state machine.

    pending -> running -> {waiting | completed | stopped | failed};
    waiting -> running only through ``claim_due_executions``. Every write is a
    conditional UPDATE on the expected source status, so a row that was
    cancelled or finished elsewhere is never moved again.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Creation and lookup ──────────────────────────────────────────────

    async def create(
        self,
        workflow: Workflow,
        lead_id: uuid.UUID,
        sender_id: str,
        ctx: ExecutionContext,
        appointment_id: str | None = None,
    ) -> WorkflowExecution:
        execution = WorkflowExecution(
            workflow_id=workflow.id,
            lead_id=lead_id,
            sender_id=sender_id,
            status=STATUS_PENDING,
            current_node_id=None,
            scheduled_for=None,
            context=ctx.to_dict(),
            appointment_id=appointment_id,
            user_id=workflow.user_id,
        )
        self.db.add(execution)
        await self.db.flush()
        self._log(execution, "info", "execution.created", f"Started for lead {lead_id}")
        await self.db.commit()
        await self.db.refresh(execution)
        return execution

    async def get(self, execution_id: uuid.UUID) -> WorkflowExecution | None:
        return await self.db.get(WorkflowExecution, execution_id)

    async def list_executions(
        self,
        lead_id: uuid.UUID | None = None,
        workflow_id: uuid.UUID | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[WorkflowExecution]:
        stmt = select(WorkflowExecution).order_by(WorkflowExecution.created_at.desc()).limit(limit)
        if lead_id:
            stmt = stmt.where(WorkflowExecution.lead_id == lead_id)
        if workflow_id:
            stmt = stmt.where(WorkflowExecution.workflow_id == workflow_id)
        if status:
            stmt = stmt.where(WorkflowExecution.status == status)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ── Transitions ──────────────────────────────────────────────────────

    async def start(self, execution: WorkflowExecution) -> None:
        """First walk of a pending execution."""
        await self._transition(execution, (STATUS_PENDING,), status=STATUS_RUNNING)

    async def advance_to(
        self,
        execution: WorkflowExecution,
        node_id: str,
        ctx: ExecutionContext,
        branch: bool | None = None,
    ) -> None:
        """Record ``node_id`` as the last completed node; status is unchanged."""
        ctx.set("last_branch", branch)
        await self._transition(
            execution, (STATUS_RUNNING,), current_node_id=node_id, context=ctx.to_dict()
        )

    async def suspend_until(
        self,
        execution: WorkflowExecution,
        resume_time: datetime,
        ctx: ExecutionContext,
        now: datetime | None = None,
    ) -> datetime:
        """Park the execution until ``resume_time``.

        A target already in the past is clamped to ``now`` so the next
        scheduler tick picks it up; the wait is never skipped in-process.
        """
        now = now or utcnow()
        scheduled_for = resume_time
        if resume_time <= now:
            logger.info(
                "Execution %s resume time %s already passed; due immediately",
                execution.id, resume_time.isoformat(),
            )
            scheduled_for = now

        ctx.set_time("last_checkpoint_at", now)
        await self._transition(
            execution,
            (STATUS_RUNNING,),
            status=STATUS_WAITING,
            scheduled_for=scheduled_for,
            context=ctx.to_dict(),
            log=("info", "execution.suspended", f"Waiting until {scheduled_for.isoformat()}"),
        )
        return scheduled_for

    async def complete(self, execution: WorkflowExecution, now: datetime | None = None) -> None:
        await self._transition(
            execution,
            (STATUS_RUNNING,),
            status=STATUS_COMPLETED,
            scheduled_for=None,
            completed_at=now or utcnow(),
            log=("info", "execution.completed", "Reached the end of the workflow"),
        )

    async def stop(
        self,
        execution: WorkflowExecution,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> None:
        await self._transition(
            execution,
            (STATUS_RUNNING,),
            status=STATUS_STOPPED,
            scheduled_for=None,
            completed_at=now or utcnow(),
            log=("info", "execution.stopped", reason or "Stopped by workflow"),
        )

    async def fail(
        self,
        execution: WorkflowExecution,
        error: str,
        node_id: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Terminal failure. Side effects already performed stay performed."""
        try:
            await self._transition(
                execution,
                _LIVE,
                status=STATUS_FAILED,
                scheduled_for=None,
                error_message=error,
                completed_at=now or utcnow(),
                log=("error", "execution.failed", error, node_id),
            )
        except StaleExecutionError:
            return False
        return True

    async def cancel(self, execution: WorkflowExecution, now: datetime | None = None) -> bool:
        """Operator stop. Returns False when the execution had already finished."""
        try:
            await self._transition(
                execution,
                _LIVE,
                status=STATUS_STOPPED,
                scheduled_for=None,
                error_message="Cancelled",
                completed_at=now or utcnow(),
                log=("info", "execution.cancelled", "Cancelled by operator"),
            )
        except StaleExecutionError:
            return False
        return True

    async def release(self, execution: WorkflowExecution, now: datetime | None = None) -> None:
        """Hand a claimed but unwalked execution back to the due queue."""
        await self._transition(
            execution,
            (STATUS_RUNNING,),
            status=STATUS_WAITING,
            scheduled_for=now or utcnow(),
            log=("info", "execution.released", "Returned to queue unprocessed"),
        )

    async def claim_due_executions(
        self, limit: int, now: datetime | None = None
    ) -> list[WorkflowExecution]:
        """Atomically move up to ``limit`` due waiting executions to running.

        One UPDATE ... RETURNING statement picks and flips the rows, so two
        concurrent callers can never both receive the same execution. The
        outer ``status == waiting`` guard makes a loser of any race match zero
        rows; on PostgreSQL ``SKIP LOCKED`` lets it move on to other rows.
        ``scheduled_for`` is cleared in the same transaction, after the batch
        has been ordered by it.
        """
        now = now or utcnow()
        due_ids = (
            select(WorkflowExecution.id)
            .where(
                WorkflowExecution.status == STATUS_WAITING,
                WorkflowExecution.scheduled_for.is_not(None),
                WorkflowExecution.scheduled_for <= now,
            )
            .order_by(WorkflowExecution.scheduled_for.asc(), WorkflowExecution.created_at.asc())
            .limit(max(0, int(limit)))
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(WorkflowExecution)
            .where(
                WorkflowExecution.id.in_(due_ids),
                WorkflowExecution.status == STATUS_WAITING,
            )
            .values(status=STATUS_RUNNING)
            .returning(WorkflowExecution)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self.db.execute(stmt)
        claimed = sorted(
            result.scalars().all(), key=lambda e: (e.scheduled_for, e.created_at or now)
        )
        if claimed:
            await self.db.execute(
                update(WorkflowExecution)
                .where(WorkflowExecution.id.in_([e.id for e in claimed]))
                .values(scheduled_for=None)
                .execution_options(synchronize_session=False)
            )
        for execution in claimed:
            set_committed_value(execution, "scheduled_for", None)
            self._log(execution, "info", "execution.claimed", "Claimed for resumption")
        await self.db.commit()
        return claimed

    async def record_event(
        self,
        execution: WorkflowExecution,
        level: str,
        event: str,
        message: str,
        node_id: str | None = None,
    ) -> None:
        """Append an audit entry without touching the execution row."""
        self._log(execution, level, event, message, node_id)
        await self.db.commit()

    # ── Internals ────────────────────────────────────────────────────────

    async def _transition(
        self,
        execution: WorkflowExecution,
        allowed_from: tuple[str, ...],
        log: tuple | None = None,
        **values,
    ) -> None:
        stmt = (
            update(WorkflowExecution)
            .where(
                WorkflowExecution.id == execution.id,
                WorkflowExecution.status.in_(allowed_from),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            await self.db.rollback()
            await self.db.refresh(execution)
            raise StaleExecutionError(
                f"Execution {execution.id} is {execution.status}, expected {'/'.join(allowed_from)}",
                node_id=execution.current_node_id,
            )
        if log:
            self._log(execution, *log)
        await self.db.commit()
        await self.db.refresh(execution)

    def _log(
        self,
        execution: WorkflowExecution,
        level: str,
        event: str,
        message: str,
        node_id: str | None = None,
    ) -> None:
        self.db.add(
            WorkflowLog(
                workflow_id=execution.workflow_id,
                execution_id=execution.id,
                level=level,
                event=event,
                node_id=node_id,
                message=message,
            )
        )
