"""Leadflow database models."""

from .base import Base
from .workflow import Workflow
from .lead import Lead
from .conversation import ConversationMessage
from .execution import WorkflowExecution
from .log import WorkflowLog

__all__ = [
    "Base",
    "Workflow",
    "Lead",
    "ConversationMessage",
    "WorkflowExecution",
    "WorkflowLog",
]
