"""LLM client for grounded answer generation with OpenAI integration.

Security: Reads API key from settings (environment) only, never hardcoded.
Provides a deterministic stub when no key is present for local development.
"""

import asyncio
import logging
import time
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from backend.app.config import Settings
from backend.app.errors import LLMProviderError
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)

MAX_ANSWER_CHARS = 10000


class LLMClient(Protocol):
    """Protocol for LLM client implementations."""

    async def generate(self, *, system_prompt: str, user_prompt: str) -> str:
        """Generate a completion for the given prompts.

        Args:
            system_prompt: Instructions for the model
            user_prompt: Context blocks plus the user's question

        Returns:
            Generated answer text

        Raises:
            LLMProviderError: If the call fails, times out, or returns nothing
        """
        ...


class DeterministicStubClient:
    """Deterministic stub client for testing (no API key required)."""

    async def generate(self, *, system_prompt: str, user_prompt: str) -> str:
        """Echo the first context block back as the answer."""
        first_block = ""
        for line in user_prompt.splitlines():
            if line.startswith("[1]"):
                first_block = line[3:].strip()
                break

        preview = first_block if len(first_block) <= 200 else first_block[:200] + "..."
        return (
            "Based on your documents, here is the most relevant passage:\n\n"
            f"{preview}\n\n"
            "*This is a stub response generated without LLM synthesis.*"
        )


class OpenAIClient:
    """OpenAI-backed LLM client."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        *,
        timeout_seconds: float = 30.0,
        client: AsyncOpenAI | None = None,
    ):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from environment)
            model: Model name to use (default: gpt-4o-mini for cost efficiency)
            timeout_seconds: Upper bound per request
            client: Pre-built client (for testing with mocks)
        """
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model
        self.timeout_seconds = timeout_seconds

    async def generate(self, *, system_prompt: str, user_prompt: str) -> str:
        """Generate answer using OpenAI chat completions."""
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    temperature=0.2,
                    max_tokens=1000,
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            self._record_failure(started, "timeout")
            raise LLMProviderError(
                f"Completion request timed out after {self.timeout_seconds:g}s"
            ) from e
        except OpenAIError as e:
            self._record_failure(started, type(e).__name__)
            raise LLMProviderError(f"Completion request failed: {e}") from e

        metrics.record_provider_call(
            "complete", "success", (time.perf_counter() - started) * 1000
        )

        answer = (response.choices[0].message.content or "") if response.choices else ""

        # Validation: Check for empty response
        if not answer.strip():
            raise LLMProviderError("OpenAI returned an empty response")

        # Validation: Check for unreasonably long response
        if len(answer) > MAX_ANSWER_CHARS:
            logger.warning(
                f"OpenAI response unexpectedly large ({len(answer)} chars), "
                f"truncating to {MAX_ANSWER_CHARS}"
            )
            answer = answer[:MAX_ANSWER_CHARS] + "\n\n[Truncated]"

        return answer

    def _record_failure(self, started: float, reason: str) -> None:
        metrics.record_provider_call("complete", "error", (time.perf_counter() - started) * 1000)
        metrics.inc_provider_error("complete", reason)


def get_llm_client(settings: Settings) -> LLMClient:
    """Factory function to get appropriate LLM client based on config.

    Returns:
        OpenAIClient if API key is configured, DeterministicStubClient otherwise
    """
    api_key = settings.openai_key

    if api_key:
        logger.info("Using OpenAI client for answer generation")
        return OpenAIClient(
            api_key=api_key,
            model=settings.openai_model,
            timeout_seconds=settings.provider_timeout_seconds,
        )

    logger.warning("No OpenAI API key configured, using deterministic stub client")
    return DeterministicStubClient()
