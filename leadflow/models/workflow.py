"""Workflow model."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDMixin, TimestampMixin

if TYPE_CHECKING:
    from .execution import WorkflowExecution

TRIGGER_STAGE_CHANGE = "stage_change"
TRIGGER_APPOINTMENT_BOOKED = "appointment_booked"
TRIGGER_TYPES = (TRIGGER_STAGE_CHANGE, TRIGGER_APPOINTMENT_BOOKED)


def empty_graph() -> dict:
    return {"nodes": [], "edges": []}


class Workflow(Base, UUIDMixin, TimestampMixin):
    """An authored follow-up automation.

    ``graph`` holds the authoring model as submitted by the editor (nodes with
    canvas positions, edges with source handles). The engine only ever reads
    it through ``engine.graph.parse_graph``.
    """

    __tablename__ = "workflow"

    name: Mapped[str] = mapped_column(String(200))
    trigger_type: Mapped[str] = mapped_column(String(30), default=TRIGGER_STAGE_CHANGE)
    trigger_stage_id: Mapped[str | None] = mapped_column(String(100), default=None, index=True)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    graph: Mapped[dict] = mapped_column(JSON, default=empty_graph)
    user_id: Mapped[str | None] = mapped_column(String(100), default=None)

    executions: Mapped[list[WorkflowExecution]] = relationship(
        back_populates="workflow",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        state = "published" if self.is_published else "draft"
        return f"<Workflow {self.name!r} ({self.trigger_type}, {state})>"
