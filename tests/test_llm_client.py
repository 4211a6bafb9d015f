import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from anthropic_client import split_system_message
from config import Settings
from llm_client import GenerationError, ModelClient, Tier, build_model_clients, parse_json_object
from schemas import DETAILS_SCHEMA, STRICT_SCHEMA

_DETAILS = {
    "codename": "Pixel Perfect UI",
    "punchline": "Perfect Your Pixels",
    "description": "A comprehensive design tool.",
}


def _openai_backend(content: str | None) -> MagicMock:
    choice = MagicMock()
    choice.message.content = content
    response = MagicMock()
    response.choices = [choice]
    backend = MagicMock()
    backend.chat.completions.create = AsyncMock(return_value=response)
    return backend


def _anthropic_backend(text: str) -> MagicMock:
    block = MagicMock()
    block.text = text
    response = MagicMock()
    response.content = [block]
    backend = MagicMock()
    backend.messages.create = AsyncMock(return_value=response)
    return backend


def _settings(provider: str = "openai", api_key: str = "test-key") -> Settings:
    return Settings(provider=provider, api_key=api_key, fast_model="fast-m", smart_model="smart-m")


def test_parse_json_object_with_wrapping_text() -> None:
    wrapped = f"Here is your result:\n{json.dumps(_DETAILS)}\nThanks!"

    parsed = parse_json_object(wrapped)
    assert parsed == _DETAILS


def test_parse_json_object_rejects_arrays_and_prose() -> None:
    with pytest.raises(GenerationError):
        parse_json_object('["not", "an", "object"]')
    with pytest.raises(GenerationError, match="Could not extract"):
        parse_json_object("no json here")


def test_openai_generate_returns_schema_fields() -> None:
    backend = _openai_backend(json.dumps({**_DETAILS, "extra": "dropped"}))
    client = ModelClient("openai", "gpt-test", backend)

    result = asyncio.run(client.generate(DETAILS_SCHEMA, "Describe PixelPerfect"))

    assert result == _DETAILS
    kwargs = backend.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][0]["role"] == "system"
    assert '"codename"' in kwargs["messages"][0]["content"]
    assert kwargs["messages"][1] == {"role": "user", "content": "Describe PixelPerfect"}


def test_anthropic_generate_passes_system_prompt_separately() -> None:
    backend = _anthropic_backend(f"Sure! {json.dumps(_DETAILS)}")
    client = ModelClient("anthropic", "claude-test", backend, temperature=0.2)

    result = asyncio.run(client.generate(DETAILS_SCHEMA, "Describe PixelPerfect"))

    assert result == _DETAILS
    kwargs = backend.messages.create.call_args.kwargs
    assert kwargs["model"] == "claude-test"
    assert kwargs["temperature"] == 0.2
    assert "details" in kwargs["system"]
    assert kwargs["messages"] == [{"role": "user", "content": "Describe PixelPerfect"}]


def test_generate_raises_on_empty_response() -> None:
    client = ModelClient("openai", "gpt-test", _openai_backend(""))

    with pytest.raises(GenerationError, match="empty response"):
        asyncio.run(client.generate(DETAILS_SCHEMA, "prompt"))


def test_generate_raises_on_schema_violation() -> None:
    bad = {**_DETAILS, "category": "gaming", "tags": [], "labels": []}
    client = ModelClient("openai", "gpt-test", _openai_backend(json.dumps(bad)))

    with pytest.raises(GenerationError, match="did not match schema"):
        asyncio.run(client.generate(STRICT_SCHEMA, "prompt"))


def test_generate_wraps_backend_errors() -> None:
    backend = MagicMock()
    backend.chat.completions.create = AsyncMock(side_effect=ConnectionError("reset by peer"))
    client = ModelClient("openai", "gpt-test", backend)

    with pytest.raises(GenerationError, match="reset by peer"):
        asyncio.run(client.generate(DETAILS_SCHEMA, "prompt"))


def test_generate_times_out() -> None:
    async def _slow(**_: object) -> None:
        await asyncio.sleep(1)

    backend = MagicMock()
    backend.chat.completions.create = _slow
    client = ModelClient("openai", "gpt-test", backend, timeout_seconds=0.01)

    with pytest.raises(GenerationError, match="timed out"):
        asyncio.run(client.generate(DETAILS_SCHEMA, "prompt"))


def test_model_client_rejects_unknown_provider() -> None:
    with pytest.raises(RuntimeError, match="Unsupported"):
        ModelClient("cohere", "x", MagicMock())


def test_build_model_clients_requires_api_key() -> None:
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        build_model_clients(_settings(provider="", api_key=""))


def test_build_model_clients_creates_one_client_per_tier() -> None:
    with patch("llm_client.AsyncOpenAI") as mock_openai:
        clients = build_model_clients(_settings())

    mock_openai.assert_called_once_with(api_key="test-key")
    assert clients[Tier.FAST].model == "fast-m"
    assert clients[Tier.SMART].model == "smart-m"
    assert clients[Tier.FAST].provider == "openai"


def test_build_model_clients_uses_anthropic_backend() -> None:
    with patch("llm_client.anthropic.AsyncAnthropic") as mock_anthropic:
        clients = build_model_clients(_settings(provider="anthropic"))

    mock_anthropic.assert_called_once_with(api_key="test-key")
    assert clients[Tier.SMART].provider == "anthropic"


def test_split_system_message_lifts_system_prompt() -> None:
    system, turns = split_system_message(
        [
            {"role": "system", "content": "Reply in JSON."},
            {"role": "user", "content": "Describe PixelPerfect"},
        ]
    )

    assert system == "Reply in JSON."
    assert turns == [{"role": "user", "content": "Describe PixelPerfect"}]
