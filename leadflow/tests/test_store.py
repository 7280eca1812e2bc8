"""Tests for the execution state store."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.engine.context import ExecutionContext
from leadflow.engine.errors import StaleExecutionError
from leadflow.engine.store import ExecutionStore
from leadflow.models.log import WorkflowLog
from leadflow.tests.factories import T0, chain, graph, make_lead, make_workflow, message, trigger, wait


async def _pending(db: AsyncSession, sender_id: str = "psid-1"):
    lead = await make_lead(db, sender_id=sender_id)
    wf = await make_workflow(db, graph([trigger(), wait("w1"), message("m1", "Hi")], chain("trigger", "w1", "m1")))
    ctx = ExecutionContext.build(lead.id, lead.sender_id, started_at=T0)
    store = ExecutionStore(db)
    execution = await store.create(wf, lead.id, lead.sender_id, ctx)
    return store, execution, ctx


async def _waiting(db: AsyncSession, resume_at, sender_id: str = "psid-1"):
    store, execution, ctx = await _pending(db, sender_id)
    await store.start(execution)
    await store.advance_to(execution, "w1", ctx)
    await store.suspend_until(execution, resume_at, ctx, now=T0)
    return store, execution


@pytest.mark.asyncio
async def test_create_starts_pending_and_logs(db: AsyncSession):
    _, execution, _ = await _pending(db)
    assert execution.status == "pending"
    assert execution.current_node_id is None
    assert execution.scheduled_for is None

    events = (await db.execute(select(WorkflowLog.event))).scalars().all()
    assert events == ["execution.created"]


@pytest.mark.asyncio
async def test_suspend_sets_waiting_and_schedule(db: AsyncSession):
    store, execution = await _waiting(db, T0 + timedelta(hours=1))
    assert execution.status == "waiting"
    assert execution.current_node_id == "w1"
    assert execution.scheduled_for == T0 + timedelta(hours=1)
    assert ExecutionContext(execution.context).last_checkpoint_at == T0


@pytest.mark.asyncio
async def test_suspend_clamps_past_resume_time_to_now(db: AsyncSession):
    store, execution, ctx = await _pending(db)
    await store.start(execution)
    effective = await store.suspend_until(execution, T0 - timedelta(hours=3), ctx, now=T0)

    assert effective == T0
    assert execution.status == "waiting"
    assert execution.scheduled_for == T0


@pytest.mark.asyncio
async def test_terminal_states_clear_schedule(db: AsyncSession):
    store, execution, ctx = await _pending(db)
    await store.start(execution)
    await store.complete(execution, now=T0)
    assert execution.status == "completed"
    assert execution.scheduled_for is None
    assert execution.completed_at == T0


@pytest.mark.asyncio
async def test_transition_from_wrong_status_is_stale(db: AsyncSession):
    store, execution, ctx = await _pending(db)
    with pytest.raises(StaleExecutionError):
        await store.complete(execution)
    assert execution.status == "pending"


@pytest.mark.asyncio
async def test_claim_only_returns_due_waiting_executions(db: AsyncSession):
    store, due = await _waiting(db, T0 + timedelta(minutes=30), sender_id="psid-due")
    _, later = await _waiting(db, T0 + timedelta(hours=5), sender_id="psid-later")

    claimed = await store.claim_due_executions(10, now=T0 + timedelta(hours=1))

    assert [e.id for e in claimed] == [due.id]
    assert claimed[0].status == "running"
    assert claimed[0].scheduled_for is None
    await db.refresh(later)
    assert later.status == "waiting"


@pytest.mark.asyncio
async def test_claim_respects_batch_size_and_never_reclaims(db: AsyncSession):
    store, _ = await _waiting(db, T0, sender_id="psid-a")
    await _waiting(db, T0, sender_id="psid-b")
    await _waiting(db, T0, sender_id="psid-c")

    first = await store.claim_due_executions(2, now=T0)
    second = await store.claim_due_executions(2, now=T0)
    third = await store.claim_due_executions(2, now=T0)

    assert len(first) == 2
    assert len(second) == 1
    assert third == []
    assert not {e.id for e in first} & {e.id for e in second}


@pytest.mark.asyncio
async def test_claim_orders_batch_by_due_time(db: AsyncSession):
    store, due_last = await _waiting(db, T0 + timedelta(minutes=30), sender_id="psid-a")
    _, due_first = await _waiting(db, T0 + timedelta(minutes=10), sender_id="psid-b")

    claimed = await store.claim_due_executions(10, now=T0 + timedelta(hours=1))

    assert [e.id for e in claimed] == [due_first.id, due_last.id]
    for execution in (due_first, due_last):
        await db.refresh(execution)
        assert execution.status == "running"
        assert execution.scheduled_for is None


@pytest.mark.asyncio
async def test_terminal_executions_are_never_claimed(db: AsyncSession):
    store, execution = await _waiting(db, T0)
    assert await store.cancel(execution, now=T0) is True

    assert await store.claim_due_executions(10, now=T0 + timedelta(days=1)) == []


@pytest.mark.asyncio
async def test_cancel_finished_execution_is_refused(db: AsyncSession):
    store, execution, ctx = await _pending(db)
    await store.start(execution)
    await store.stop(execution, reason="done", now=T0)

    assert await store.cancel(execution) is False
    assert execution.status == "stopped"
    assert execution.error_message is None


@pytest.mark.asyncio
async def test_cancel_wins_over_a_stale_walk(db: AsyncSession):
    store, execution, ctx = await _pending(db)
    await store.start(execution)
    assert await store.cancel(execution, now=T0) is True

    with pytest.raises(StaleExecutionError):
        await store.advance_to(execution, "w1", ctx)
    assert execution.status == "stopped"
    assert execution.error_message == "Cancelled"


@pytest.mark.asyncio
async def test_release_returns_claimed_execution_to_queue(db: AsyncSession):
    store, execution = await _waiting(db, T0)
    [claimed] = await store.claim_due_executions(1, now=T0)

    await store.release(claimed, now=T0 + timedelta(minutes=1))

    assert claimed.status == "waiting"
    assert claimed.scheduled_for == T0 + timedelta(minutes=1)
    assert [e.id for e in await store.claim_due_executions(1, now=T0 + timedelta(minutes=1))] == [execution.id]


@pytest.mark.asyncio
async def test_fail_records_error_and_node(db: AsyncSession):
    store, execution, ctx = await _pending(db)
    await store.start(execution)
    assert await store.fail(execution, "boom", node_id="m1", now=T0) is True

    assert execution.status == "failed"
    assert execution.error_message == "boom"
    log = (
        await db.execute(select(WorkflowLog).where(WorkflowLog.event == "execution.failed"))
    ).scalar_one()
    assert log.node_id == "m1"
    assert log.level == "error"


@pytest.mark.asyncio
async def test_list_executions_filters(db: AsyncSession):
    store, execution = await _waiting(db, T0, sender_id="psid-a")
    _, other, _ = await _pending(db, sender_id="psid-b")

    waiting = await store.list_executions(status="waiting")
    assert [e.id for e in waiting] == [execution.id]
    by_lead = await store.list_executions(lead_id=other.lead_id)
    assert [e.id for e in by_lead] == [other.id]
