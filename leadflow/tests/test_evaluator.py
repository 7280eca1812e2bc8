"""Tests for smart-condition evaluation."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.config import settings
from leadflow.engine.context import ExecutionContext
from leadflow.engine.evaluator import AI_RULE_DEFAULT, ConditionEvaluator
from leadflow.engine.graph import SmartConditionNode
from leadflow.models.conversation import ROLE_ASSISTANT, ROLE_USER
from leadflow.services import conversation_svc
from leadflow.services.collaborators import EngineServices
from leadflow.tests.factories import T0, make_lead


def _ctx(lead, checkpoint=T0) -> ExecutionContext:
    return ExecutionContext.build(lead.id, lead.sender_id, started_at=checkpoint)


@pytest.mark.asyncio
async def test_has_replied_true_after_checkpoint(db: AsyncSession, services):
    lead = await make_lead(db)
    await conversation_svc.record_message(db, lead.id, ROLE_USER, "sure!", created_at=T0 + timedelta(minutes=5))

    node = SmartConditionNode(id="c1", kind="has_replied")
    assert await ConditionEvaluator(db, services).evaluate(node, lead.id, _ctx(lead)) is True


@pytest.mark.asyncio
async def test_has_replied_is_stable_for_same_history(db: AsyncSession, services):
    lead = await make_lead(db)
    await conversation_svc.record_message(db, lead.id, ROLE_USER, "yes", created_at=T0 + timedelta(minutes=2))

    evaluator = ConditionEvaluator(db, services)
    node = SmartConditionNode(id="c1", kind="has_replied")
    first = await evaluator.evaluate(node, lead.id, _ctx(lead))
    second = await evaluator.evaluate(node, lead.id, _ctx(lead))
    assert first is second is True


@pytest.mark.asyncio
async def test_has_replied_ignores_messages_before_checkpoint(db: AsyncSession, services):
    lead = await make_lead(db)
    await conversation_svc.record_message(db, lead.id, ROLE_USER, "old", created_at=T0 - timedelta(hours=1))
    await conversation_svc.record_message(
        db, lead.id, ROLE_ASSISTANT, "bot talking", created_at=T0 + timedelta(minutes=1)
    )

    node = SmartConditionNode(id="c1", kind="has_replied")
    assert await ConditionEvaluator(db, services).evaluate(node, lead.id, _ctx(lead)) is False


@pytest.mark.asyncio
async def test_has_replied_without_checkpoint_is_false(db: AsyncSession, services):
    lead = await make_lead(db)
    await conversation_svc.record_message(db, lead.id, ROLE_USER, "hi", created_at=T0)

    node = SmartConditionNode(id="c1", kind="has_replied")
    ctx = ExecutionContext.build(lead.id, lead.sender_id)
    assert await ConditionEvaluator(db, services).evaluate(node, lead.id, ctx) is False


@pytest.mark.asyncio
async def test_ai_rule_uses_judge_verdict(db: AsyncSession, services):
    lead = await make_lead(db)
    await conversation_svc.record_message(
        db, lead.id, ROLE_USER, "I'm interested in a demo", created_at=T0 + timedelta(minutes=1)
    )

    node = SmartConditionNode(id="c1", kind="ai_rule", rule="Lead is interested")
    assert await ConditionEvaluator(db, services).evaluate(node, lead.id, _ctx(lead)) is True


@pytest.mark.asyncio
async def test_ai_rule_without_rule_text_uses_default(db: AsyncSession):
    calls = []

    async def evaluate_rule(rule, conversation):
        calls.append(rule)
        return True

    lead = await make_lead(db)
    node = SmartConditionNode(id="c1", kind="ai_rule", rule="   ")
    evaluator = ConditionEvaluator(db, EngineServices(evaluate_rule=evaluate_rule))
    assert await evaluator.evaluate(node, lead.id, _ctx(lead)) is AI_RULE_DEFAULT
    assert calls == []


@pytest.mark.asyncio
async def test_ai_rule_judge_error_falls_back_to_default(db: AsyncSession):
    async def evaluate_rule(rule, conversation):
        raise RuntimeError("judge unavailable")

    lead = await make_lead(db)
    node = SmartConditionNode(id="c1", kind="ai_rule", rule="Lead is interested")
    evaluator = ConditionEvaluator(db, EngineServices(evaluate_rule=evaluate_rule))
    assert await evaluator.evaluate(node, lead.id, _ctx(lead)) is AI_RULE_DEFAULT


@pytest.mark.asyncio
async def test_ai_rule_judge_timeout_falls_back_to_default(db: AsyncSession, monkeypatch):
    async def evaluate_rule(rule, conversation):
        await asyncio.sleep(5)
        return True

    monkeypatch.setattr(settings, "judgment_timeout_seconds", 0.01)
    lead = await make_lead(db)
    node = SmartConditionNode(id="c1", kind="ai_rule", rule="Lead is interested")
    evaluator = ConditionEvaluator(db, EngineServices(evaluate_rule=evaluate_rule))
    assert await evaluator.evaluate(node, lead.id, _ctx(lead)) is AI_RULE_DEFAULT
