"""Tests for LLM client.

All tests are deterministic and do not make real network calls.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError
from pydantic import SecretStr

from backend.app.config import Settings
from backend.app.errors import LLMProviderError
from backend.app.llm.client import (
    MAX_ANSWER_CHARS,
    DeterministicStubClient,
    OpenAIClient,
    get_llm_client,
)


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _mock_openai(content: str | None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_completion(content))
    return client


@pytest.mark.asyncio
async def test_deterministic_stub_echoes_first_context_block() -> None:
    """Test that the stub answers with the first numbered passage."""
    client = DeterministicStubClient()

    answer = await client.generate(
        system_prompt="system",
        user_prompt="Context:\n[1] Refunds take 30 days.\n\n[2] Other.\n\nQuestion: refunds?",
    )

    assert "Refunds take 30 days." in answer
    assert "stub" in answer


@pytest.mark.asyncio
async def test_deterministic_stub_is_deterministic() -> None:
    """Test that DeterministicStubClient produces same output every time."""
    client = DeterministicStubClient()
    prompt = "[1] " + "x" * 500

    first = await client.generate(system_prompt="s", user_prompt=prompt)
    second = await client.generate(system_prompt="s", user_prompt=prompt)

    assert first == second
    assert "x" * 200 + "..." in first


@pytest.mark.asyncio
async def test_openai_client_sends_system_and_user_messages() -> None:
    """Test that OpenAIClient calls chat completions with both prompts."""
    mock = _mock_openai("Refunds take 30 days [1].")
    client = OpenAIClient(api_key="test_key", model="gpt-4o-mini", client=mock)

    answer = await client.generate(system_prompt="Be grounded.", user_prompt="Question?")

    assert answer == "Refunds take 30 days [1]."
    kwargs = mock.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["messages"] == [
        {"role": "system", "content": "Be grounded."},
        {"role": "user", "content": "Question?"},
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, "", "   "])
async def test_openai_client_rejects_empty_answer(content: str | None) -> None:
    """Test that an empty completion is a provider error."""
    client = OpenAIClient(api_key="test_key", client=_mock_openai(content))

    with pytest.raises(LLMProviderError):
        await client.generate(system_prompt="s", user_prompt="u")


@pytest.mark.asyncio
async def test_openai_client_wraps_sdk_errors() -> None:
    """Test that SDK errors become LLMProviderError."""
    mock = MagicMock()
    mock.chat.completions.create = AsyncMock(side_effect=OpenAIError("server error"))
    client = OpenAIClient(api_key="test_key", client=mock)

    with pytest.raises(LLMProviderError, match="server error"):
        await client.generate(system_prompt="s", user_prompt="u")


@pytest.mark.asyncio
async def test_openai_client_times_out() -> None:
    """Test that a hung completion call is abandoned."""

    async def slow_create(**kwargs: object) -> SimpleNamespace:
        await asyncio.sleep(5)
        return _completion("late")

    mock = MagicMock()
    mock.chat.completions.create = AsyncMock(side_effect=slow_create)
    client = OpenAIClient(api_key="test_key", timeout_seconds=0.01, client=mock)

    with pytest.raises(LLMProviderError, match="timed out"):
        await client.generate(system_prompt="s", user_prompt="u")


@pytest.mark.asyncio
async def test_openai_client_truncates_long_answers() -> None:
    """Test that oversized answers are truncated."""
    client = OpenAIClient(api_key="test_key", client=_mock_openai("a" * (MAX_ANSWER_CHARS + 50)))

    answer = await client.generate(system_prompt="s", user_prompt="u")

    assert answer.startswith("a" * MAX_ANSWER_CHARS)
    assert answer.endswith("[Truncated]")


def test_get_llm_client_returns_stub_without_key(settings: Settings) -> None:
    """Test factory falls back to the stub when no key is configured."""
    assert isinstance(get_llm_client(settings), DeterministicStubClient)


def test_get_llm_client_returns_openai_with_key(settings: Settings) -> None:
    """Test factory returns OpenAIClient when a key is configured."""
    keyed = settings.model_copy(update={"openai_api_key": SecretStr("sk-test")})

    assert isinstance(get_llm_client(keyed), OpenAIClient)
