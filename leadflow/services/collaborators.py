"""External collaborators the engine talks to, bundled for injection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from . import ai_svc, conversation_svc, lead_svc, messenger_svc


@dataclass
class EngineServices:
    """Callables the walker uses for side effects and lookups.

    Defaults are the production collaborators; tests swap in fakes.
    """

    send_message: Callable[..., Awaitable[bool]] = messenger_svc.send
    generate_message: Callable[..., Awaitable[str]] = ai_svc.generate_message
    evaluate_rule: Callable[..., Awaitable[bool]] = ai_svc.evaluate_rule
    has_inbound_message_since: Callable[..., Awaitable[bool]] = conversation_svc.has_inbound_message_since
    recent_context: Callable[..., Awaitable[str]] = conversation_svc.recent_context
    record_outbound: Callable[..., Awaitable[Any]] = conversation_svc.record_outbound
    disable_bot: Callable[..., Awaitable[None]] = lead_svc.disable_bot


default_services = EngineServices()
