"""Uniform structured-output client over the OpenAI and Anthropic backends."""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from json import JSONDecodeError
from typing import Any

import anthropic
from openai import AsyncOpenAI

from anthropic_client import claude_chat
from config import PROVIDER_ANTHROPIC, PROVIDER_OPENAI, Settings
from schemas import Schema, ValidationError

MAX_OUTPUT_TOKENS = 1024

LOGGER = logging.getLogger(__name__)

_SYSTEM_PROMPT = """You enrich product listings for a curated directory of developer and design resources.
Respond ONLY with a single valid JSON object following the schema below. No prose, no markdown.

Required JSON schema ({name}):
{schema}"""


class Tier(str, Enum):
    """Which model backend handles a call."""

    FAST = "fast"
    SMART = "smart"


class GenerationError(RuntimeError):
    """The model call failed or returned output that does not fit the schema."""


class ModelClient:
    """Generate schema-conforming JSON objects from one provider/model pair.

    Holds no per-call state, so one instance can be shared by concurrent tasks.
    """

    def __init__(
        self,
        provider: str,
        model: str,
        backend: Any,
        temperature: float = 0.1,
        timeout_seconds: float = 60.0,
    ) -> None:
        if provider not in (PROVIDER_ANTHROPIC, PROVIDER_OPENAI):
            raise RuntimeError(f"Unsupported LLM provider: {provider!r}")
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self._backend = backend

    async def generate(self, schema: Schema, prompt: str) -> dict[str, Any]:
        """Return the model's answer to ``prompt`` parsed against ``schema``.

        Raises GenerationError on transport errors, timeouts, empty or non-JSON
        output, and output that violates the schema.
        """
        messages = [
            {
                "role": "system",
                "content": _SYSTEM_PROMPT.format(name=schema.name, schema=schema.describe()),
            },
            {"role": "user", "content": prompt},
        ]

        try:
            content = await asyncio.wait_for(self._complete(messages), timeout=self.timeout_seconds)
        except TimeoutError as exc:
            raise GenerationError(
                f"{self.model} timed out after {self.timeout_seconds}s ({schema.name})"
            ) from exc
        except Exception as exc:  # provider SDK errors are all generation failures
            raise GenerationError(f"{self.model} request failed ({schema.name}): {exc}") from exc

        if not content or not content.strip():
            raise GenerationError(f"{self.model} returned an empty response ({schema.name})")

        parsed = parse_json_object(content)
        try:
            return schema.parse(parsed)
        except ValidationError as exc:
            raise GenerationError(f"{self.model} output did not match schema: {exc}") from exc

    async def _complete(self, messages: list[dict[str, str]]) -> str:
        if self.provider == PROVIDER_ANTHROPIC:
            return await claude_chat(
                self._backend,
                self.model,
                messages,
                max_tokens=MAX_OUTPUT_TOKENS,
                temperature=self.temperature,
            )

        response = await self._backend.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            max_completion_tokens=MAX_OUTPUT_TOKENS,
            response_format={"type": "json_object"},
            messages=messages,
        )
        return response.choices[0].message.content or ""


def build_model_clients(settings: Settings) -> dict[Tier, ModelClient]:
    """Create the fast and smart tier clients for the configured provider."""
    if not settings.provider or not settings.api_key:
        raise RuntimeError("ANTHROPIC_API_KEY or OPENAI_API_KEY environment variable is required")

    if settings.provider == PROVIDER_ANTHROPIC:
        backend: Any = anthropic.AsyncAnthropic(api_key=settings.api_key)
    else:
        backend = AsyncOpenAI(api_key=settings.api_key)

    LOGGER.info(
        "Using provider=%s fast_model=%s smart_model=%s",
        settings.provider,
        settings.fast_model,
        settings.smart_model,
    )
    return {
        tier: ModelClient(
            provider=settings.provider,
            model=model,
            backend=backend,
            temperature=settings.temperature,
            timeout_seconds=settings.llm_timeout_seconds,
        )
        for tier, model in ((Tier.FAST, settings.fast_model), (Tier.SMART, settings.smart_model))
    }


def parse_json_object(content: str) -> dict[str, Any]:
    """Parse possibly noisy model output into a JSON object."""
    try:
        parsed = json.loads(content)
    except JSONDecodeError:
        parsed = _extract_first_json_object(content)

    if not isinstance(parsed, dict):
        raise GenerationError("Expected a JSON object from the model response")
    return parsed


def _extract_first_json_object(content: str) -> dict[str, Any]:
    """Extract the first decodable JSON object from an arbitrary string."""
    decoder = json.JSONDecoder()
    for index, char in enumerate(content):
        if char != "{":
            continue
        try:
            candidate, _ = decoder.raw_decode(content[index:])
        except JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate
    raise GenerationError("Could not extract a valid JSON object from model output")
