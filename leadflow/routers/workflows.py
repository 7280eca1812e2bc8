"""Workflow CRUD, validation, publishing and test runs."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..engine.errors import GraphValidationError
from ..models.workflow import Workflow
from ..schemas.workflow import PublishRequest, TestRunRequest, WorkflowCreate, WorkflowUpdate
from ..services import workflow_svc

router = APIRouter(prefix="/workflows", tags=["workflows"])


def _serialize(workflow: Workflow) -> dict:
    return {
        "id": str(workflow.id),
        "name": workflow.name,
        "trigger_type": workflow.trigger_type,
        "trigger_stage_id": workflow.trigger_stage_id,
        "is_published": workflow.is_published,
        "graph": workflow.graph,
        "user_id": workflow.user_id,
        "created_at": workflow.created_at.isoformat() if workflow.created_at else None,
        "updated_at": workflow.updated_at.isoformat() if workflow.updated_at else None,
    }


def _not_publishable(exc: GraphValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"message": "Workflow is not publishable", "errors": [e.to_dict() for e in exc.errors]},
    )


async def _get_or_404(db: AsyncSession, workflow_id: uuid.UUID) -> Workflow:
    workflow = await workflow_svc.get_workflow(db, workflow_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow


@router.get("")
async def list_workflows(db: AsyncSession = Depends(get_db)):
    return [_serialize(wf) for wf in await workflow_svc.list_workflows(db)]


@router.post("", status_code=201)
async def create_workflow(data: WorkflowCreate, db: AsyncSession = Depends(get_db)):
    workflow = await workflow_svc.create_workflow(
        db,
        name=data.name,
        trigger_type=data.trigger_type,
        trigger_stage_id=data.trigger_stage_id,
        graph=data.graph,
        user_id=data.user_id,
    )
    return _serialize(workflow)


@router.get("/{workflow_id}")
async def get_workflow(workflow_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return _serialize(await _get_or_404(db, workflow_id))


@router.patch("/{workflow_id}")
async def update_workflow(
    workflow_id: uuid.UUID,
    data: WorkflowUpdate,
    db: AsyncSession = Depends(get_db),
):
    update_data = data.model_dump(exclude_unset=True)
    try:
        workflow = await workflow_svc.update_workflow(db, workflow_id, **update_data)
    except GraphValidationError as exc:
        raise _not_publishable(exc) from exc
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return _serialize(workflow)


@router.delete("/{workflow_id}")
async def delete_workflow(workflow_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    deleted = await workflow_svc.delete_workflow(db, workflow_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return {"deleted": True}


@router.get("/{workflow_id}/validate")
async def validate_workflow(workflow_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    workflow = await _get_or_404(db, workflow_id)
    errors = workflow_svc.validate(workflow)
    return {"valid": not errors, "errors": [e.to_dict() for e in errors]}


@router.post("/{workflow_id}/publish")
async def publish_workflow(
    workflow_id: uuid.UUID,
    data: PublishRequest,
    db: AsyncSession = Depends(get_db),
):
    if not data.is_published:
        workflow = await workflow_svc.unpublish_workflow(db, workflow_id)
        if not workflow:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return {"workflow": _serialize(workflow), "applied_to_existing": 0}

    try:
        result = await workflow_svc.publish_workflow(
            db, workflow_id, apply_to_existing=data.apply_to_existing
        )
    except GraphValidationError as exc:
        raise _not_publishable(exc) from exc
    if not result:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return {
        "workflow": _serialize(result.workflow),
        "applied_to_existing": len(result.backfilled),
    }


@router.post("/{workflow_id}/test-run")
async def test_run(
    workflow_id: uuid.UUID,
    data: TestRunRequest,
    db: AsyncSession = Depends(get_db),
):
    """Start an execution for one lead; the workflow need not be published."""
    result = await workflow_svc.test_run(db, workflow_id, data.lead_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Workflow or lead not found")
    if "error" in result:
        raise HTTPException(status_code=500, detail=result["error"])
    return result
