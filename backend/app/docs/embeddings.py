"""Embedding clients: text in, fixed-dimension float vector out.

Security: API key comes from settings (environment), never hardcoded.
Clients never retry; callers decide retry policy from the error type.
"""

import asyncio
import hashlib
import logging
import math
import re
import time
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from backend.app.config import Settings
from backend.app.errors import EmbeddingProviderError, EmbeddingUnavailable
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    dimensions: int

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingUnavailable: No provider credential configured
            EmbeddingProviderError: Remote call failed or timed out
        """
        ...


class OpenAIEmbeddingClient:
    """OpenAI-backed embedding client."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        timeout_seconds: float = 30.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize embedding client.

        A missing key is not an error here; it surfaces as
        EmbeddingUnavailable on the first embed call.

        Args:
            api_key: OpenAI API key, None when not configured
            model: Embedding model name
            dimensions: Expected output dimensionality
            timeout_seconds: Upper bound per request
            client: Pre-built client (for testing with mocks)
        """
        self.model = model
        self.dimensions = dimensions
        self.timeout_seconds = timeout_seconds
        self._client = client
        if self._client is None and api_key:
            self._client = AsyncOpenAI(api_key=api_key)

    async def embed(self, text: str) -> list[float]:
        """Embed text with the OpenAI embeddings endpoint."""
        if self._client is None:
            raise EmbeddingUnavailable(
                "Embedding provider is not configured: OPENAI_API_KEY is missing"
            )

        started = time.perf_counter()
        try:
            if self.model.startswith("text-embedding-3"):
                request = self._client.embeddings.create(
                    model=self.model, input=text, dimensions=self.dimensions
                )
            else:
                request = self._client.embeddings.create(model=self.model, input=text)
            response = await asyncio.wait_for(request, timeout=self.timeout_seconds)
        except TimeoutError as e:
            self._record_failure(started, "timeout")
            raise EmbeddingProviderError(
                f"Embedding request timed out after {self.timeout_seconds:g}s"
            ) from e
        except OpenAIError as e:
            self._record_failure(started, type(e).__name__)
            raise EmbeddingProviderError(f"Embedding request failed: {e}") from e

        metrics.record_provider_call("embed", "success", (time.perf_counter() - started) * 1000)

        if not response.data:
            raise EmbeddingProviderError("Embedding response contained no vectors")

        return list(response.data[0].embedding)

    def _record_failure(self, started: float, reason: str) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        metrics.record_provider_call("embed", "error", latency_ms)
        metrics.inc_provider_error("embed", reason)
        logger.warning(f"Embedding call failed ({reason}) after {latency_ms:.0f}ms")


class HashEmbeddingClient:
    """Deterministic offline embedder (no API key required).

    Hashes word tokens into a fixed number of buckets and L2-normalizes,
    so identical texts embed identically and shared vocabulary yields
    positive cosine similarity. Suitable for local development and tests.
    """

    def __init__(self, dimensions: int = 1536) -> None:
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimensions
            vector[bucket] += 1.0 if digest[4] & 1 else -1.0

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0.0:
            return vector
        return [v / norm for v in vector]


def get_embedding_client(settings: Settings) -> EmbeddingClient:
    """Factory function to get the configured embedding client.

    Returns:
        HashEmbeddingClient when ``embedding_provider == "hash"``,
        OpenAIEmbeddingClient otherwise (even without a key)
    """
    if settings.embedding_provider == "hash":
        logger.warning("Using deterministic hash embeddings (not for production)")
        return HashEmbeddingClient(settings.embedding_dimensions)

    if settings.openai_key is None:
        logger.warning("No OpenAI API key configured; ingestion and queries will fail until set")

    return OpenAIEmbeddingClient(
        settings.openai_key,
        model=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        timeout_seconds=settings.provider_timeout_seconds,
    )
