"""Thin async wrapper around the Anthropic Messages API."""

from __future__ import annotations

import logging
from typing import Any

import anthropic

LOGGER = logging.getLogger(__name__)


def split_system_message(messages: list[dict[str, str]]) -> tuple[str | None, list[dict[str, Any]]]:
    """Separate the system prompt from chat turns; Claude takes it as its own field."""
    system: str | None = None
    turns: list[dict[str, Any]] = []
    for message in messages:
        if message["role"] == "system":
            system = message["content"]
            continue
        turns.append({"role": message["role"], "content": message["content"]})
    return system, turns


async def claude_chat(
    client: anthropic.AsyncAnthropic,
    model: str,
    messages: list[dict[str, str]],
    max_tokens: int = 1024,
    temperature: float | None = None,
) -> str:
    """Send ``messages`` to ``model`` and return the first text block of the reply.

    Args:
        client: Shared AsyncAnthropic handle for the run.
        model: Model name for the requested tier.
        messages: OpenAI-style role/content dicts; a "system" entry is lifted
                  into the dedicated system= parameter.
        max_tokens: Output cap. JSON-only replies stay well under it.
        temperature: Sampling temperature, or None for the API default.
    """
    system, turns = split_system_message(messages)
    request: dict[str, Any] = {"model": model, "max_tokens": max_tokens, "messages": turns}
    if system:
        request["system"] = system
    if temperature is not None:
        request["temperature"] = temperature

    LOGGER.debug("Claude request model=%s max_tokens=%s turns=%s", model, max_tokens, len(turns))
    response = await client.messages.create(**request)
    if not response.content:
        return ""
    return getattr(response.content[0], "text", "") or ""
