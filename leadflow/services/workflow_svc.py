"""Workflow CRUD, publishing and operator-run helpers."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..engine.errors import GraphValidationError, StructuralError
from ..engine.graph import validate_workflow
from ..models.execution import TERMINAL_STATUSES, WorkflowExecution
from ..models.workflow import TRIGGER_STAGE_CHANGE, Workflow, empty_graph
from . import lead_svc
from .collaborators import EngineServices
from .trigger_svc import start_workflow_for_lead

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    workflow: Workflow
    backfilled: list[dict] = field(default_factory=list)


# ── Workflow CRUD ─────────────────────────────────────────────────────────

async def list_workflows(db: AsyncSession) -> list[Workflow]:
    stmt = select(Workflow).order_by(Workflow.updated_at.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_workflow(db: AsyncSession, workflow_id: uuid.UUID) -> Workflow | None:
    return await db.get(Workflow, workflow_id)


async def create_workflow(
    db: AsyncSession,
    name: str,
    trigger_type: str = TRIGGER_STAGE_CHANGE,
    trigger_stage_id: str | None = None,
    graph: dict | None = None,
    user_id: str | None = None,
) -> Workflow:
    """New workflows start as drafts."""
    workflow = Workflow(
        name=name,
        trigger_type=trigger_type,
        trigger_stage_id=trigger_stage_id if trigger_type == TRIGGER_STAGE_CHANGE else None,
        graph=graph or empty_graph(),
        is_published=False,
        user_id=user_id,
    )
    db.add(workflow)
    await db.commit()
    await db.refresh(workflow)
    return workflow


async def update_workflow(
    db: AsyncSession, workflow_id: uuid.UUID, **kwargs
) -> Workflow | None:
    """Apply edits. A published workflow must stay publishable.

    Raises ``GraphValidationError`` (and discards the edits) otherwise.
    """
    workflow = await get_workflow(db, workflow_id)
    if not workflow:
        return None
    for key in ("name", "trigger_type", "trigger_stage_id", "graph"):
        if key in kwargs:
            setattr(workflow, key, kwargs[key])
    if workflow.trigger_type != TRIGGER_STAGE_CHANGE:
        workflow.trigger_stage_id = None
    if workflow.is_published:
        errors = validate_workflow(workflow)
        if errors:
            await db.rollback()
            raise GraphValidationError(errors)
    await db.commit()
    await db.refresh(workflow)
    return workflow


async def delete_workflow(db: AsyncSession, workflow_id: uuid.UUID) -> bool:
    workflow = await get_workflow(db, workflow_id)
    if not workflow:
        return False
    await db.delete(workflow)
    await db.commit()
    return True


def validate(workflow: Workflow) -> list[StructuralError]:
    return validate_workflow(workflow)


# ── Publishing ────────────────────────────────────────────────────────────

async def publish_workflow(
    db: AsyncSession,
    workflow_id: uuid.UUID,
    apply_to_existing: bool = False,
    services: EngineServices | None = None,
    now: datetime | None = None,
) -> PublishResult | None:
    """Make a workflow live; optionally backfill leads already in its stage.

    Raises ``GraphValidationError`` when the workflow is not publishable.
    """
    workflow = await get_workflow(db, workflow_id)
    if not workflow:
        return None
    errors = validate_workflow(workflow)
    if errors:
        raise GraphValidationError(errors)

    workflow.is_published = True
    await db.commit()
    await db.refresh(workflow)

    result = PublishResult(workflow=workflow)
    if apply_to_existing:
        result.backfilled = await apply_to_existing_leads(db, workflow, services=services, now=now)
    return result


async def unpublish_workflow(db: AsyncSession, workflow_id: uuid.UUID) -> Workflow | None:
    """Stop new executions. Executions already in flight run to completion."""
    workflow = await get_workflow(db, workflow_id)
    if not workflow:
        return None
    workflow.is_published = False
    await db.commit()
    await db.refresh(workflow)
    return workflow


async def apply_to_existing_leads(
    db: AsyncSession,
    workflow: Workflow,
    services: EngineServices | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """One-time backfill for leads already sitting in the trigger stage.

    Leads with a live execution of this workflow are skipped, so publishing
    twice does not double-enrol anyone.
    """
    if workflow.trigger_type != TRIGGER_STAGE_CHANGE or not workflow.trigger_stage_id:
        return []

    live_stmt = select(WorkflowExecution.lead_id).where(
        WorkflowExecution.workflow_id == workflow.id,
        WorkflowExecution.status.not_in(TERMINAL_STATUSES),
    )
    enrolled = set((await db.execute(live_stmt)).scalars().all())

    results = []
    for lead in await lead_svc.list_leads_in_stage(db, workflow.trigger_stage_id):
        if lead.id in enrolled:
            continue
        results.append(
            await start_workflow_for_lead(db, workflow, lead, services=services, now=now)
        )
    logger.info("Backfilled workflow %s for %d leads", workflow.name, len(results))
    return results


async def test_run(
    db: AsyncSession,
    workflow_id: uuid.UUID,
    lead_id: uuid.UUID,
    services: EngineServices | None = None,
    now: datetime | None = None,
) -> dict | None:
    """Run a workflow for one lead whether or not it is published."""
    workflow = await get_workflow(db, workflow_id)
    lead = await lead_svc.get_lead(db, lead_id)
    if not workflow or not lead:
        return None
    return await start_workflow_for_lead(db, workflow, lead, services=services, now=now)
