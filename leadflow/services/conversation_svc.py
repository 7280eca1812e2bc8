"""Conversation history collaborator backed by ``conversation_message``."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.conversation import ROLE_ASSISTANT, ROLE_USER, ConversationMessage
from ..models.lead import Lead


async def record_message(
    db: AsyncSession,
    lead_id: uuid.UUID,
    role: str,
    content: str,
    created_at: datetime | None = None,
) -> ConversationMessage:
    """Append a turn; inbound turns also bump the lead's last_message_at."""
    created_at = created_at or datetime.now(timezone.utc)
    message = ConversationMessage(lead_id=lead_id, role=role, content=content, created_at=created_at)
    db.add(message)
    if role == ROLE_USER:
        lead = await db.get(Lead, lead_id)
        if lead is not None:
            lead.last_message_at = created_at
    await db.commit()
    return message


async def has_inbound_message_since(
    db: AsyncSession, lead_id: uuid.UUID, since: datetime
) -> bool:
    stmt = (
        select(ConversationMessage.id)
        .where(
            ConversationMessage.lead_id == lead_id,
            ConversationMessage.role == ROLE_USER,
            ConversationMessage.created_at > since,
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.first() is not None


async def recent_context(db: AsyncSession, lead_id: uuid.UUID, limit: int = 10) -> str:
    """Last ``limit`` turns, oldest first, as ``Customer:`` / ``Bot:`` lines."""
    stmt = (
        select(ConversationMessage)
        .where(ConversationMessage.lead_id == lead_id)
        .order_by(ConversationMessage.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    turns = list(reversed(result.scalars().all()))
    return "\n".join(
        f"{'Customer' if m.role == ROLE_USER else 'Bot'}: {m.content}" for m in turns
    )


async def record_outbound(db: AsyncSession, lead_id: uuid.UUID, content: str) -> ConversationMessage:
    return await record_message(db, lead_id, ROLE_ASSISTANT, content)
