"""Stored conversation turns between a lead and the bot."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, UTCDateTime

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


class ConversationMessage(Base, UUIDMixin):
    __tablename__ = "conversation_message"
    __table_args__ = (
        Index("ix_conversation_message_lead_created", "lead_id", "created_at"),
    )

    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("lead.id", ondelete="CASCADE")
    )
    role: Mapped[str] = mapped_column(String(20))  # user/assistant
    content: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ConversationMessage {self.role} at {self.created_at}>"
