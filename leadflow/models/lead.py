"""Lead model: the customer a workflow runs for."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, UTCDateTime


class Lead(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "lead"

    sender_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(200), default=None)
    stage_id: Mapped[str | None] = mapped_column(String(100), default=None, index=True)
    user_id: Mapped[str | None] = mapped_column(String(100), default=None)
    bot_disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    bot_disabled_reason: Mapped[str | None] = mapped_column(Text, default=None)
    last_message_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)

    def __repr__(self) -> str:
        return f"<Lead {self.sender_id} stage={self.stage_id}>"
