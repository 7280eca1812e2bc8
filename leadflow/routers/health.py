"""Health and readiness checks."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..worker import scheduler_worker

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "leadflow"}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return {
        "status": "ready",
        "service": "leadflow",
        "scheduler_running": scheduler_worker.running,
    }
