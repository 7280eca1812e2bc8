"""Trigger service: matches events to published workflows and starts executions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..engine.runner import WorkflowRunner
from ..models.lead import Lead
from ..models.workflow import TRIGGER_APPOINTMENT_BOOKED, TRIGGER_STAGE_CHANGE, Workflow
from . import lead_svc
from .collaborators import EngineServices

logger = logging.getLogger(__name__)


async def find_published_workflows(
    db: AsyncSession,
    trigger_type: str,
    stage_id: str | None = None,
) -> list[Workflow]:
    """Published workflows listening for ``trigger_type``.

    stage_change matches ``trigger_stage_id`` exactly; appointment_booked
    ignores ``stage_id``.
    """
    stmt = (
        select(Workflow)
        .where(Workflow.is_published.is_(True))
        .where(Workflow.trigger_type == trigger_type)
        .order_by(Workflow.created_at)
    )
    if trigger_type == TRIGGER_STAGE_CHANGE:
        if not stage_id:
            return []
        stmt = stmt.where(Workflow.trigger_stage_id == stage_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def start_workflow_for_lead(
    db: AsyncSession,
    workflow: Workflow,
    lead: Lead,
    *,
    appointment_id: str | None = None,
    appointment_time: datetime | None = None,
    services: EngineServices | None = None,
    now: datetime | None = None,
) -> dict:
    """Create one execution and walk it; never raises."""
    runner = WorkflowRunner(db, services)
    try:
        execution = await runner.start(
            workflow,
            lead,
            appointment_id=appointment_id,
            appointment_time=appointment_time,
            now=now,
        )
    except Exception as e:
        logger.exception("Failed to start workflow %s for lead %s", workflow.name, lead.id)
        return {
            "workflow_id": str(workflow.id),
            "workflow_name": workflow.name,
            "lead_id": str(lead.id),
            "error": str(e),
        }
    return {
        "workflow_id": str(workflow.id),
        "workflow_name": workflow.name,
        "lead_id": str(lead.id),
        "execution_id": str(execution.id),
        "status": execution.status,
        "scheduled_for": execution.scheduled_for.isoformat() if execution.scheduled_for else None,
    }


async def notify_stage_entered(
    db: AsyncSession,
    stage_id: str,
    lead_id: uuid.UUID,
    services: EngineServices | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """A lead moved into ``stage_id``. No matching workflow is a no-op."""
    workflows = await find_published_workflows(db, TRIGGER_STAGE_CHANGE, stage_id)
    if not workflows:
        logger.debug("No workflows triggered for stage %s", stage_id)
        return []

    lead = await lead_svc.get_lead(db, lead_id)
    if lead is None or not lead.sender_id:
        logger.error("Lead %s not found or has no sender_id", lead_id)
        return []

    return [
        await start_workflow_for_lead(db, wf, lead, services=services, now=now)
        for wf in workflows
    ]


async def notify_appointment_booked(
    db: AsyncSession,
    lead_id: uuid.UUID,
    appointment_id: str,
    appointment_time: datetime,
    services: EngineServices | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """An appointment was created for a lead."""
    workflows = await find_published_workflows(db, TRIGGER_APPOINTMENT_BOOKED)
    if not workflows:
        logger.debug("No appointment-triggered workflows found")
        return []

    lead = await lead_svc.get_lead(db, lead_id)
    if lead is None:
        logger.error("Lead %s not found for appointment %s", lead_id, appointment_id)
        return []

    return [
        await start_workflow_for_lead(
            db,
            wf,
            lead,
            appointment_id=str(appointment_id),
            appointment_time=appointment_time,
            services=services,
            now=now,
        )
        for wf in workflows
    ]


def parse_appointment_time(appointment_date: str, start_time: str) -> datetime:
    """Combine ``YYYY-MM-DD`` and ``HH:MM[:SS]`` into a UTC datetime."""
    year, month, day = (int(p) for p in appointment_date.split("-"))
    parts = [int(p) for p in start_time.split(":")]
    hour, minute = parts[0], parts[1] if len(parts) > 1 else 0
    second = parts[2] if len(parts) > 2 else 0
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


async def notify_appointment_booked_by_sender(
    db: AsyncSession,
    sender_id: str,
    appointment_id: str,
    appointment_date: str,
    start_time: str,
    services: EngineServices | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Booking-page variant: only the channel identity is known."""
    lead = await lead_svc.get_lead_by_sender(db, sender_id)
    if lead is None:
        logger.error("Lead not found for sender %s", sender_id)
        return []
    appointment_time = parse_appointment_time(appointment_date, start_time)
    return await notify_appointment_booked(
        db, lead.id, appointment_id, appointment_time, services=services, now=now
    )
