"""Document retriever - semantic search over a tenant's chunks."""

import logging
from uuid import UUID

from backend.app.db.repositories import ChunkStore
from backend.app.docs.embeddings import EmbeddingClient
from backend.app.models.documents import ChunkMatch

logger = logging.getLogger(__name__)


class SimilaritySearch:
    """Embeds a query and returns the tenant's nearest chunks."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        chunks: ChunkStore,
        *,
        default_k: int = 5,
        default_min_similarity: float = 0.7,
    ) -> None:
        self._embedder = embedder
        self._chunks = chunks
        self.default_k = default_k
        self.default_min_similarity = default_min_similarity

    async def search(
        self,
        query: str,
        tenant_id: UUID,
        k: int | None = None,
        min_similarity: float | None = None,
    ) -> list[ChunkMatch]:
        """Search document chunks by cosine similarity to the query.

        Args:
            query: Natural-language query
            tenant_id: Team whose documents are searched
            k: Maximum number of results (default: configured top-k)
            min_similarity: Exclusive similarity threshold

        Returns:
            Matches ordered by similarity descending; empty when the query is
            blank or nothing clears the threshold

        Raises:
            ConfigurationError: Embedding provider missing or wrong dimensions
            ProviderError: Embedding call failed
            StoreError: Chunk store unavailable
        """
        if not query.strip():
            return []

        k = self.default_k if k is None else k
        if k <= 0:
            return []
        threshold = self.default_min_similarity if min_similarity is None else min_similarity

        query_vector = await self._embedder.embed(query)
        matches = await self._chunks.find_nearest(tenant_id, query_vector, k, threshold)

        logger.debug(f"Similarity search returned {len(matches)} chunks for team {tenant_id}")
        return matches
