"""Lead-state collaborator."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.lead import Lead


async def get_lead(db: AsyncSession, lead_id: uuid.UUID) -> Lead | None:
    return await db.get(Lead, lead_id)


async def get_lead_by_sender(db: AsyncSession, sender_id: str) -> Lead | None:
    result = await db.execute(select(Lead).where(Lead.sender_id == sender_id))
    return result.scalar_one_or_none()


async def create_lead(
    db: AsyncSession,
    sender_id: str,
    name: str | None = None,
    stage_id: str | None = None,
    user_id: str | None = None,
) -> Lead:
    lead = Lead(sender_id=sender_id, name=name, stage_id=stage_id, user_id=user_id)
    db.add(lead)
    await db.commit()
    await db.refresh(lead)
    return lead


async def list_leads_in_stage(db: AsyncSession, stage_id: str) -> list[Lead]:
    stmt = select(Lead).where(Lead.stage_id == stage_id).order_by(Lead.created_at)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def set_stage(db: AsyncSession, lead_id: uuid.UUID, stage_id: str) -> Lead | None:
    lead = await db.get(Lead, lead_id)
    if lead is None:
        return None
    lead.stage_id = stage_id
    await db.commit()
    return lead


async def disable_bot(db: AsyncSession, lead_id: uuid.UUID, reason: str | None = None) -> None:
    """Stop every automated reply to this lead."""
    lead = await db.get(Lead, lead_id)
    if lead is None:
        return
    lead.bot_disabled = True
    lead.bot_disabled_reason = reason or "Workflow stopped"
    await db.commit()
