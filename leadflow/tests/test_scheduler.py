"""Tests for the scheduler tick: claiming, batching, isolation, time budget."""

from __future__ import annotations

import asyncio
import itertools
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadflow.engine import scheduler
from leadflow.engine.runner import WorkflowRunner
from leadflow.engine.scheduler import process_due_executions
from leadflow.engine.store import ExecutionStore
from leadflow.models.execution import WorkflowExecution
from leadflow.services import workflow_svc
from leadflow.tests.factories import T0, chain, graph, make_lead, make_workflow, message, trigger, wait

DUE = T0 + timedelta(hours=1)


def _follow_up_graph() -> dict:
    return graph(
        [trigger(), wait("w1", 1, "hours"), message("m1", "Checking in")],
        chain("trigger", "w1", "m1"),
    )


async def _waiting_executions(db: AsyncSession, services, count: int, prefix: str = "psid") -> list:
    wf = await make_workflow(db, _follow_up_graph())
    runner = WorkflowRunner(db, services)
    executions = []
    for i in range(count):
        lead = await make_lead(db, sender_id=f"{prefix}-{i}")
        executions.append(await runner.start(wf, lead, now=T0))
    assert all(e.status == "waiting" for e in executions)
    return executions


async def _statuses(db: AsyncSession) -> dict:
    rows = await db.execute(
        select(WorkflowExecution.sender_id, WorkflowExecution.status).execution_options(
            populate_existing=True
        )
    )
    return dict(rows.all())


@pytest.mark.asyncio
async def test_concurrent_claims_never_overlap(file_engine, services):
    factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        executions = await _waiting_executions(db, services, 6)

    async def claim():
        async with factory() as session:
            return await ExecutionStore(session).claim_due_executions(10, now=DUE)

    first, second = await asyncio.gather(claim(), claim())

    first_ids = {e.id for e in first}
    second_ids = {e.id for e in second}
    assert not first_ids & second_ids
    assert first_ids | second_ids == {e.id for e in executions}


@pytest.mark.asyncio
async def test_concurrent_ticks_send_each_message_once(file_engine, services, outbox):
    factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        await _waiting_executions(db, services, 5)

    results = await asyncio.gather(
        process_due_executions(factory, now=DUE, services=services),
        process_due_executions(factory, now=DUE, services=services),
    )

    assert sum(r.claimed for r in results) == 5
    assert sum(r.processed for r in results) == 5
    recipients = [recipient for recipient, _ in outbox]
    assert sorted(recipients) == [f"psid-{i}" for i in range(5)]

    async with factory() as db:
        assert set((await _statuses(db)).values()) == {"completed"}


@pytest.mark.asyncio
async def test_batch_size_bounds_one_tick(db, session_factory, services, outbox):
    await _waiting_executions(db, services, 3)

    first = await process_due_executions(session_factory, batch_size=2, now=DUE, services=services)
    assert (first.claimed, first.processed) == (2, 2)
    assert list((await _statuses(db)).values()).count("waiting") == 1

    second = await process_due_executions(session_factory, batch_size=2, now=DUE, services=services)
    assert (second.claimed, second.processed) == (1, 1)
    assert len(outbox) == 3


@pytest.mark.asyncio
async def test_nothing_due_is_a_noop(db, session_factory, services):
    await _waiting_executions(db, services, 2)
    result = await process_due_executions(session_factory, now=T0, services=services)
    assert result.to_dict() == {"claimed": 0, "processed": 0, "failed": 0, "released": 0}


@pytest.mark.asyncio
async def test_one_failing_execution_does_not_stop_the_batch(
    db, session_factory, services, outbox, monkeypatch
):
    await _waiting_executions(db, services, 1, prefix="psid-bad")
    await _waiting_executions(db, services, 1, prefix="psid-good")

    class ExplodingRunner(WorkflowRunner):
        async def walk(self, execution, workflow, now=None):
            if execution.sender_id.startswith("psid-bad"):
                raise RuntimeError("boom")
            return await super().walk(execution, workflow, now=now)

    monkeypatch.setattr(scheduler, "WorkflowRunner", ExplodingRunner)

    result = await process_due_executions(session_factory, now=DUE, services=services)

    assert result.claimed == 2
    assert result.failed == 1
    statuses = await _statuses(db)
    assert statuses == {"psid-bad-0": "failed", "psid-good-0": "completed"}
    assert [recipient for recipient, _ in outbox] == ["psid-good-0"]


@pytest.mark.asyncio
async def test_failed_walk_is_counted(db, session_factory, services):
    [execution] = await _waiting_executions(db, services, 1)
    wf = await workflow_svc.get_workflow(db, execution.workflow_id)
    wf.graph = graph([trigger(), message("m1", "Checking in")], chain("trigger", "m1"))
    await db.commit()

    result = await process_due_executions(session_factory, now=DUE, services=services)
    assert (result.processed, result.failed) == (1, 1)


@pytest.mark.asyncio
async def test_time_budget_releases_unreached_executions(db, session_factory, services, outbox):
    await _waiting_executions(db, services, 3)
    readings = itertools.chain([0.0, 0.0], itertools.repeat(100.0))

    result = await process_due_executions(
        session_factory,
        time_budget_seconds=50.0,
        now=DUE,
        services=services,
        clock=lambda: next(readings),
    )

    assert (result.claimed, result.processed, result.released) == (3, 1, 2)
    assert len(outbox) == 1
    statuses = list((await _statuses(db)).values())
    assert sorted(statuses) == ["completed", "waiting", "waiting"]

    follow_up = await process_due_executions(session_factory, now=DUE, services=services)
    assert follow_up.processed == 2
    assert len(outbox) == 3


@pytest.mark.asyncio
async def test_unpublished_workflow_finishes_in_flight_executions(db, session_factory, services, outbox):
    [execution] = await _waiting_executions(db, services, 1)
    await workflow_svc.unpublish_workflow(db, execution.workflow_id)

    await process_due_executions(session_factory, now=DUE, services=services)
    await db.refresh(execution)

    assert execution.status == "completed"
    assert len(outbox) == 1


@pytest.mark.asyncio
async def test_cancelled_execution_is_skipped(db, session_factory, services, outbox):
    [execution] = await _waiting_executions(db, services, 1)
    assert await ExecutionStore(db).cancel(execution)

    result = await process_due_executions(session_factory, now=DUE, services=services)
    assert result.claimed == 0
    assert outbox == []
