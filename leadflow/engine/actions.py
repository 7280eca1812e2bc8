"""Action dispatch: the externally visible effect of a node visit."""

from __future__ import annotations

import asyncio
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..services.collaborators import EngineServices
from ..services.messenger_svc import OutboundMessage
from .context import ExecutionContext
from .graph import MessageNode, StopBotNode

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Performs message sends and bot shutdowns for the walker.

    Message delivery is best-effort: failures are reported in the returned
    dict and logged, never raised.
    """

    def __init__(self, db: AsyncSession, services: EngineServices):
        self.db = db
        self.services = services

    async def send_message(
        self,
        node: MessageNode,
        lead_id: uuid.UUID,
        ctx: ExecutionContext,
    ) -> dict:
        recipient = ctx.sender_id
        text = await self._resolve_text(node, lead_id, ctx)
        result: dict = {"delivered": True, "failures": []}

        # Attachment goes out before the text.
        if node.attachment_url:
            attachment = OutboundMessage.attachment(node.attachment_url, node.attachment_type)
            if not await self._deliver(recipient, attachment):
                result["failures"].append("attachment")

        if text.strip():
            if await self._deliver(recipient, OutboundMessage(text=text)):
                await self.services.record_outbound(self.db, lead_id, text)
            else:
                result["failures"].append("text")

        result["delivered"] = not result["failures"]
        result["text"] = text
        return result

    async def stop_bot(self, node: StopBotNode, lead_id: uuid.UUID) -> None:
        await self.services.disable_bot(self.db, lead_id, node.reason or "Workflow stopped")

    async def _resolve_text(
        self, node: MessageNode, lead_id: uuid.UUID, ctx: ExecutionContext
    ) -> str:
        instruction = ctx.resolve_template(node.content)
        if node.mode != "ai":
            return instruction

        conversation = await self.services.recent_context(
            self.db, lead_id, settings.conversation_context_turns
        )
        try:
            return await asyncio.wait_for(
                self.services.generate_message(instruction, conversation),
                timeout=settings.generation_timeout_seconds,
            )
        except Exception:
            logger.exception("Message generation failed for node %s; sending instruction text", node.id)
            return instruction

    async def _deliver(self, recipient: str | None, message: OutboundMessage) -> bool:
        if not recipient:
            logger.error("No channel identity for outbound message")
            return False
        try:
            return bool(await self.services.send_message(recipient, message))
        except Exception:
            logger.exception("Message delivery to %s raised", recipient)
            return False
