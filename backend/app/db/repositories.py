"""Repository protocol interfaces for data access."""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from backend.app.errors import ConfigurationError
from backend.app.models.documents import ChunkMatch, DocumentRecord, DocumentStatus
from backend.app.models.usage import PlanLimits


@dataclass
class NewDocument:
    """Document about to be registered after upload."""

    team_id: UUID
    uploaded_by_id: UUID | None
    filename: str
    original_name: str
    mime_type: str
    size_bytes: int
    content: str
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class NewChunk:
    """Chunk text with its embedding, ready to persist."""

    chunk_index: int
    content: str
    embedding: list[float]
    token_count: int | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class NewUsageEvent:
    """Usage ledger entry."""

    team_id: UUID
    user_id: UUID | None
    event_type: str
    count: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)


class DocumentRepository(Protocol):
    """Repository for documents and their processing status."""

    async def create(self, new: NewDocument) -> DocumentRecord:
        """Register a document in ``pending`` status."""
        ...

    async def get(self, document_id: UUID, tenant_id: UUID) -> DocumentRecord | None:
        """Get document by ID, None if absent or owned by another tenant."""
        ...

    async def list_for_tenant(
        self, tenant_id: UUID, *, status: DocumentStatus | None = None, limit: int = 100
    ) -> list[DocumentRecord]:
        """List a tenant's documents, newest first."""
        ...

    async def list_by_status(self, status: DocumentStatus) -> list[DocumentRecord]:
        """Documents of every tenant in ``status``, oldest first."""
        ...

    async def transition(
        self,
        document_id: UUID,
        tenant_id: UUID,
        *,
        from_status: DocumentStatus,
        to_status: DocumentStatus,
        error: str | None = None,
    ) -> bool:
        """Conditionally move a document between states.

        The update applies only when the current status equals
        ``from_status``; this is the single-writer guard for ingestion.

        Returns:
            True if this caller performed the transition
        """
        ...

    async def delete(self, document_id: UUID, tenant_id: UUID) -> bool:
        """Delete a document and its chunks. Returns False if not found."""
        ...

    async def count(self, tenant_id: UUID) -> int:
        """Number of documents owned by the tenant."""
        ...

    async def total_size_bytes(self, tenant_id: UUID) -> int:
        """Sum of document sizes owned by the tenant."""
        ...


class ChunkStore(Protocol):
    """Store for embedded chunks, scoped by tenant."""

    dimensions: int

    async def save_chunks(
        self, document_id: UUID, tenant_id: UUID, chunks: Sequence[NewChunk]
    ) -> None:
        """Persist all chunks of a document atomically.

        Raises:
            ConfigurationError: If an embedding has the wrong dimensionality
            StoreError: If the write fails; nothing is persisted
        """
        ...

    async def delete_chunks_for_document(self, document_id: UUID) -> int:
        """Remove every chunk of a document. Idempotent.

        Returns:
            Number of chunks removed
        """
        ...

    async def count_chunks(self, document_id: UUID) -> int:
        """Number of chunks stored for a document."""
        ...

    async def find_nearest(
        self,
        tenant_id: UUID,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float,
    ) -> list[ChunkMatch]:
        """Top-k tenant chunks with cosine similarity above ``min_similarity``.

        Ordered by similarity descending, then creation order ascending.
        """
        ...


class UsageEventStore(Protocol):
    """Append-only usage ledger."""

    async def append(self, event: NewUsageEvent) -> None:
        """Append one usage event."""
        ...

    async def sum_since(self, tenant_id: UUID, event_type: str, since: datetime) -> int:
        """Sum of event counts for a tenant and type since ``since``."""
        ...


class PlanLimitsProvider(Protocol):
    """Read-only access to a tenant's plan limits."""

    async def get_limits(self, tenant_id: UUID) -> PlanLimits:
        """Get limits for a tenant.

        Raises:
            NotFoundError: If the tenant does not exist
        """
        ...


def check_dimensions(vector: Sequence[float], dimensions: int, *, what: str) -> None:
    """Reject vectors whose length differs from the configured dimensionality."""
    if len(vector) != dimensions:
        raise ConfigurationError(
            f"{what} has {len(vector)} dimensions, store is configured for {dimensions}"
        )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 if either is zero."""
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b, strict=True):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank_matches(matches: list[ChunkMatch], k: int) -> list[ChunkMatch]:
    """Deterministic ordering: similarity desc, created_at asc, chunk_index asc."""
    matches.sort(key=lambda m: (-m.similarity, m.created_at, m.chunk_index))
    return matches[:k]
