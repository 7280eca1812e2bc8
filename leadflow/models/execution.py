"""Execution tracking model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDMixin, TimestampMixin, UTCDateTime
from .workflow import Workflow

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_WAITING = "waiting"
STATUS_COMPLETED = "completed"
STATUS_STOPPED = "stopped"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_STOPPED, STATUS_FAILED})


class WorkflowExecution(Base, UUIDMixin, TimestampMixin):
    """One lead's run of one workflow.

    ``current_node_id`` is the last node that completed; ``None`` means the
    walk has not yet moved past the trigger. ``scheduled_for`` is set exactly
    when the execution is waiting.
    """

    __tablename__ = "workflow_execution"
    __table_args__ = (
        Index("ix_workflow_execution_due", "status", "scheduled_for"),
    )

    workflow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workflow.id", ondelete="CASCADE"), index=True
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("lead.id", ondelete="CASCADE"), index=True
    )
    sender_id: Mapped[str] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20), default=STATUS_PENDING)
    current_node_id: Mapped[str | None] = mapped_column(String(100), default=None)
    scheduled_for: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    context: Mapped[dict | None] = mapped_column(JSON, default=None)
    appointment_id: Mapped[str | None] = mapped_column(String(100), default=None, index=True)
    user_id: Mapped[str | None] = mapped_column(String(100), default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)

    workflow: Mapped[Workflow] = relationship(back_populates="executions")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<WorkflowExecution {self.status} node={self.current_node_id}>"
