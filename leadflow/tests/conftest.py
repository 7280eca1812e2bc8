"""Async test fixtures for Leadflow tests using SQLite."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from leadflow.database import get_db
from leadflow.models import Base
from leadflow.services.collaborators import EngineServices


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed SQLite so concurrent sessions really use separate connections."""
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'leadflow.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def outbox() -> list:
    """Every (recipient_id, OutboundMessage) handed to the fake messenger."""
    return []


@pytest.fixture
def services(outbox) -> EngineServices:
    """Production DB collaborators with the network-bound ones faked."""

    async def send_message(recipient_id, message):
        outbox.append((recipient_id, message))
        return True

    async def generate_message(instruction, conversation):
        return f"[generated] {instruction}"

    async def evaluate_rule(rule, conversation):
        return "interested" in conversation.lower()

    return EngineServices(
        send_message=send_message,
        generate_message=generate_message,
        evaluate_rule=evaluate_rule,
    )


@pytest_asyncio.fixture
async def client(session_factory, services, monkeypatch):
    """HTTPX async test client against the Leadflow app."""
    from leadflow.app import app
    from leadflow.routers import cron

    monkeypatch.setattr("leadflow.engine.runner.default_services", services)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[cron.get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
