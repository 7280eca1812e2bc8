"""Messenger Send API client: the outbound delivery collaborator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

ATTACHMENT_TYPES = ("image", "video", "audio", "file")


@dataclass(frozen=True)
class OutboundMessage:
    """Plain text, or a typed attachment reference with a URL."""

    text: str | None = None
    attachment_url: str | None = None
    attachment_type: str = "image"

    @classmethod
    def attachment(cls, url: str, attachment_type: str = "image") -> OutboundMessage:
        if attachment_type not in ATTACHMENT_TYPES:
            raise ValueError(f"Unsupported attachment type: {attachment_type}")
        return cls(attachment_url=url, attachment_type=attachment_type)

    def to_payload(self) -> dict[str, Any]:
        if self.attachment_url:
            return {
                "attachment": {
                    "type": self.attachment_type,
                    "payload": {"url": self.attachment_url, "is_reusable": True},
                }
            }
        return {"text": self.text or ""}


class MessengerClient:
    """Thin async wrapper over ``POST /me/messages``.

    Usage:
        async with MessengerClient(token) as messenger:
            delivered = await messenger.send("psid", OutboundMessage(text="Hi"))
    """

    def __init__(
        self,
        page_access_token: str,
        api_base: str = "https://graph.facebook.com/v21.0",
        timeout: float = 30.0,
        tag: str | None = "ACCOUNT_UPDATE",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._token = page_access_token
        self._tag = tag
        self._client = httpx.AsyncClient(
            base_url=api_base.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> MessengerClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, recipient_id: str, message: OutboundMessage) -> bool:
        """Deliver one message. Returns False instead of raising on failure."""
        if not self._token:
            logger.error("No Messenger page access token configured")
            return False

        body: dict[str, Any] = {
            "recipient": {"id": recipient_id},
            "message": message.to_payload(),
        }
        if self._tag:
            # Tagged messages may be sent outside the 24h window.
            body["messaging_type"] = "MESSAGE_TAG"
            body["tag"] = self._tag

        try:
            resp = await self._client.post(
                "/me/messages",
                params={"access_token": self._token},
                json=body,
            )
        except httpx.HTTPError as exc:
            logger.error("Messenger send to %s failed: %s", recipient_id, exc)
            return False

        if resp.status_code >= 400:
            logger.error(
                "Messenger send to %s rejected (%s): %s",
                recipient_id, resp.status_code, resp.text[:500],
            )
            return False
        return True


async def send(recipient_id: str, message: OutboundMessage) -> bool:
    """Send using the configured page token."""
    async with MessengerClient(
        settings.messenger_page_access_token,
        api_base=settings.messenger_api_base,
        timeout=settings.messenger_timeout_seconds,
        tag=settings.messenger_tag or None,
    ) as messenger:
        return await messenger.send(recipient_id, message)
