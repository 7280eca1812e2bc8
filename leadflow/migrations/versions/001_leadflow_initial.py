"""Initial leadflow schema.

Revision ID: 001_leadflow_initial
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_leadflow_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(bind, name: str) -> bool:
    return sa.inspect(bind).has_table(name)


def _has_index(bind, table_name: str, index_name: str) -> bool:
    indexes = sa.inspect(bind).get_indexes(table_name)
    return any(idx.get("name") == index_name for idx in indexes)


def _ensure_index(bind, name: str, table: str, columns: list[str], unique: bool = False) -> None:
    if _has_table(bind, table) and not _has_index(bind, table, name):
        op.create_index(name, table, columns, unique=unique)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()

    if not _has_table(bind, "workflow"):
        op.create_table(
            "workflow",
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("trigger_type", sa.String(length=30), nullable=False, server_default="stage_change"),
            sa.Column("trigger_stage_id", sa.String(length=100), nullable=True),
            sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("graph", sa.JSON(), nullable=False),
            sa.Column("user_id", sa.String(length=100), nullable=True),
            sa.Column("id", sa.Uuid(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
    _ensure_index(bind, "ix_workflow_trigger_stage_id", "workflow", ["trigger_stage_id"])
    _ensure_index(bind, "ix_workflow_is_published", "workflow", ["is_published"])

    if not _has_table(bind, "lead"):
        op.create_table(
            "lead",
            sa.Column("sender_id", sa.String(length=100), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=True),
            sa.Column("stage_id", sa.String(length=100), nullable=True),
            sa.Column("user_id", sa.String(length=100), nullable=True),
            sa.Column("bot_disabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("bot_disabled_reason", sa.Text(), nullable=True),
            sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("id", sa.Uuid(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
    _ensure_index(bind, "ix_lead_sender_id", "lead", ["sender_id"], unique=True)
    _ensure_index(bind, "ix_lead_stage_id", "lead", ["stage_id"])

    if not _has_table(bind, "conversation_message"):
        op.create_table(
            "conversation_message",
            sa.Column("lead_id", sa.Uuid(), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.ForeignKeyConstraint(["lead_id"], ["lead.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
    _ensure_index(
        bind, "ix_conversation_message_lead_created", "conversation_message", ["lead_id", "created_at"]
    )

    if not _has_table(bind, "workflow_execution"):
        op.create_table(
            "workflow_execution",
            sa.Column("workflow_id", sa.Uuid(), nullable=False),
            sa.Column("lead_id", sa.Uuid(), nullable=False),
            sa.Column("sender_id", sa.String(length=100), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("current_node_id", sa.String(length=100), nullable=True),
            sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
            sa.Column("context", sa.JSON(), nullable=True),
            sa.Column("appointment_id", sa.String(length=100), nullable=True),
            sa.Column("user_id", sa.String(length=100), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("id", sa.Uuid(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflow.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["lead_id"], ["lead.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
    _ensure_index(bind, "ix_workflow_execution_workflow_id", "workflow_execution", ["workflow_id"])
    _ensure_index(bind, "ix_workflow_execution_lead_id", "workflow_execution", ["lead_id"])
    _ensure_index(bind, "ix_workflow_execution_appointment_id", "workflow_execution", ["appointment_id"])
    _ensure_index(bind, "ix_workflow_execution_due", "workflow_execution", ["status", "scheduled_for"])

    if not _has_table(bind, "workflow_log"):
        op.create_table(
            "workflow_log",
            sa.Column("workflow_id", sa.Uuid(), nullable=True),
            sa.Column("execution_id", sa.Uuid(), nullable=True),
            sa.Column("level", sa.String(length=10), nullable=False, server_default="info"),
            sa.Column("event", sa.String(length=100), nullable=False),
            sa.Column("node_id", sa.String(length=100), nullable=True),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("data", sa.JSON(), nullable=True),
            sa.Column("id", sa.Uuid(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["execution_id"], ["workflow_execution.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["workflow_id"], ["workflow.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
    _ensure_index(bind, "ix_workflow_log_workflow_id", "workflow_log", ["workflow_id"])
    _ensure_index(bind, "ix_workflow_log_execution_id", "workflow_log", ["execution_id"])


def downgrade() -> None:
    bind = op.get_bind()
    for table in ("workflow_log", "workflow_execution", "conversation_message", "lead", "workflow"):
        if _has_table(bind, table):
            op.drop_table(table)
