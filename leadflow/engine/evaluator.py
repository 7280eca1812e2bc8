"""Smart-condition evaluation for workflow branching."""

from __future__ import annotations

import asyncio
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..services.collaborators import EngineServices
from .context import ExecutionContext
from .graph import SmartConditionNode

logger = logging.getLogger(__name__)

# Outcome of an ai_rule the judge could not answer in time.
AI_RULE_DEFAULT = False


class ConditionEvaluator:
    """Resolves a smart_condition node to exactly one boolean.

    has_replied asks whether the lead sent anything after the execution's last
    checkpoint (the moment it last suspended, or was created). Each condition
    occurrence is therefore answered for its own window, not for the run as a
    whole.
    """

    def __init__(self, db: AsyncSession, services: EngineServices):
        self.db = db
        self.services = services

    async def evaluate(
        self,
        node: SmartConditionNode,
        lead_id: uuid.UUID,
        ctx: ExecutionContext,
    ) -> bool:
        if node.kind == "has_replied":
            return await self._has_replied(lead_id, ctx)
        return await self._ai_rule(node, lead_id)

    async def _has_replied(self, lead_id: uuid.UUID, ctx: ExecutionContext) -> bool:
        since = ctx.last_checkpoint_at
        if since is None:
            return False
        return bool(await self.services.has_inbound_message_since(self.db, lead_id, since))

    async def _ai_rule(self, node: SmartConditionNode, lead_id: uuid.UUID) -> bool:
        rule = node.criteria
        if not rule:
            logger.warning("Condition %s has no rule text; using %s", node.id, AI_RULE_DEFAULT)
            return AI_RULE_DEFAULT

        conversation = await self.services.recent_context(
            self.db, lead_id, settings.conversation_context_turns
        )
        try:
            verdict = await asyncio.wait_for(
                self.services.evaluate_rule(rule, conversation),
                timeout=settings.judgment_timeout_seconds,
            )
        except Exception:
            logger.exception(
                "Rule judgment failed for condition %s; using %s", node.id, AI_RULE_DEFAULT
            )
            return AI_RULE_DEFAULT
        return bool(verdict)
