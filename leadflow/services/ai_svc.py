"""Claude-backed reply generation and rule judgment collaborators."""

from __future__ import annotations

import anthropic

from ..config import settings


def _client() -> anthropic.AsyncAnthropic:
    api_key = settings.anthropic_api_key
    if not api_key:
        raise RuntimeError("Set LF_ANTHROPIC_API_KEY environment variable.")
    return anthropic.AsyncAnthropic(api_key=api_key)


async def _complete(prompt: str, max_tokens: int, timeout: float) -> str:
    client = _client()
    response = await client.messages.create(
        model=settings.anthropic_model,
        max_tokens=max_tokens,
        messages=[{"role": "user", "content": prompt}],
        timeout=timeout,
    )
    return "".join(
        block.text for block in response.content if getattr(block, "type", None) == "text"
    ).strip()


async def generate_message(instruction: str, conversation: str) -> str:
    """Write the follow-up message an ai-mode message node asks for."""
    prompt = (
        "Generate a message for this customer based on the following instruction:\n\n"
        f"Instruction: {instruction}\n\n"
        f"Recent conversation:\n{conversation}\n\n"
        "Respond with ONLY the message text to send, nothing else. "
        "Keep it natural and conversational."
    )
    return await _complete(prompt, max_tokens=512, timeout=settings.generation_timeout_seconds)


def parse_verdict(text: str) -> bool:
    """Read a true/false verdict; anything unclear counts as false."""
    answer = text.strip().lower()
    return answer.startswith("true") or answer.startswith("yes")


async def evaluate_rule(rule: str, conversation: str) -> bool:
    """Judge whether a free-text rule holds for the recent conversation."""
    prompt = (
        "You are evaluating a condition for a workflow automation.\n\n"
        f"Condition to check: {rule}\n\n"
        f"Recent conversation:\n{conversation or '(no messages yet)'}\n\n"
        'Respond with ONLY "true" or "false" based on whether the condition is met.'
    )
    text = await _complete(prompt, max_tokens=5, timeout=settings.judgment_timeout_seconds)
    return parse_verdict(text)
