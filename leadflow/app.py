"""FastAPI application for Leadflow."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .worker import scheduler_worker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Auto-create tables for SQLite (local dev)
    if "sqlite" in settings.database_url:
        from .database import engine
        from .models import Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    if settings.is_production and not settings.cron_secret and not settings.scheduler_enabled:
        logger.warning("No scheduler worker and no cron secret: waiting executions will never resume")
    scheduler_worker.start()
    yield
    await scheduler_worker.stop()


app = FastAPI(title=settings.app_title, lifespan=lifespan)

# Import and register routers
from .routers import (  # noqa: E402
    cron,
    events,
    executions,
    health,
    workflows,
)

app.include_router(workflows.router)
app.include_router(executions.router)
app.include_router(events.router)
app.include_router(cron.router)
app.include_router(health.router)
