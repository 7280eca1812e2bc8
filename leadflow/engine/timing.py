"""Resume-time arithmetic for wait nodes."""

from __future__ import annotations

from datetime import datetime, timedelta

from .context import ExecutionContext
from .errors import ContextError
from .graph import WaitNode

_UNIT_SECONDS = {
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}


def wait_offset(amount: int, unit: str) -> timedelta:
    return timedelta(seconds=amount * _UNIT_SECONDS[unit])


def compute_resume_time(node: WaitNode, ctx: ExecutionContext, now: datetime) -> datetime:
    """Raw target time of a wait node; may lie in the past.

    duration: ``now + amount``. before_appointment: appointment time minus
    ``amount``; an execution without an appointment time cannot wait on it.
    """
    offset = wait_offset(node.amount, node.unit)
    if node.mode == "before_appointment":
        appointment_time = ctx.appointment_time
        if appointment_time is None:
            raise ContextError(
                f"Wait {node.id!r} is relative to an appointment but the execution has none",
                node_id=node.id,
            )
        return appointment_time - offset
    return now + offset
