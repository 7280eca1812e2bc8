"""Externally invoked scheduler tick."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..database import async_session_factory
from ..engine.scheduler import process_due_executions
from ..security import verify_cron_request

router = APIRouter(prefix="/cron", tags=["cron"])


def get_session_factory():
    return async_session_factory


@router.api_route(
    "/execute-workflows",
    methods=["GET", "POST"],
    dependencies=[Depends(verify_cron_request)],
)
async def execute_workflows(session_factory=Depends(get_session_factory)):
    result = await process_due_executions(session_factory)
    return {"success": True, **result.to_dict()}
