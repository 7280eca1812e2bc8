"""Execution history and operator cancellation."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..engine.store import ExecutionStore
from ..models.execution import WorkflowExecution
from ..models.log import WorkflowLog

router = APIRouter(prefix="/executions", tags=["executions"])


def _serialize(execution: WorkflowExecution) -> dict:
    return {
        "id": str(execution.id),
        "workflow_id": str(execution.workflow_id),
        "lead_id": str(execution.lead_id),
        "sender_id": execution.sender_id,
        "status": execution.status,
        "current_node_id": execution.current_node_id,
        "scheduled_for": execution.scheduled_for.isoformat() if execution.scheduled_for else None,
        "appointment_id": execution.appointment_id,
        "error": execution.error_message,
        "context": execution.context,
        "created_at": execution.created_at.isoformat() if execution.created_at else None,
        "completed_at": execution.completed_at.isoformat() if execution.completed_at else None,
    }


@router.get("")
async def list_executions(
    lead_id: uuid.UUID | None = None,
    workflow_id: uuid.UUID | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    executions = await ExecutionStore(db).list_executions(
        lead_id=lead_id, workflow_id=workflow_id, status=status, limit=limit
    )
    return [_serialize(e) for e in executions]


@router.get("/{execution_id}")
async def execution_detail(execution_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    execution = await ExecutionStore(db).get(execution_id)
    if not execution:
        raise HTTPException(status_code=404, detail="Execution not found")

    stmt = (
        select(WorkflowLog)
        .where(WorkflowLog.execution_id == execution_id)
        .order_by(WorkflowLog.created_at)
    )
    logs = (await db.execute(stmt)).scalars().all()
    payload = _serialize(execution)
    payload["logs"] = [
        {
            "level": log.level,
            "event": log.event,
            "node_id": log.node_id,
            "message": log.message,
            "created_at": log.created_at.isoformat() if log.created_at else None,
        }
        for log in logs
    ]
    return payload


@router.post("/{execution_id}/cancel")
async def cancel_execution(execution_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    store = ExecutionStore(db)
    execution = await store.get(execution_id)
    if not execution:
        raise HTTPException(status_code=404, detail="Execution not found")
    if not await store.cancel(execution):
        raise HTTPException(
            status_code=409, detail=f"Execution already {execution.status}"
        )
    return _serialize(execution)
