"""In-memory implementations of repository interfaces."""

import uuid
from collections.abc import Sequence
from datetime import datetime

from backend.app.db.models import utcnow
from backend.app.db.repositories import (
    NewChunk,
    NewDocument,
    NewUsageEvent,
    check_dimensions,
    cosine_similarity,
    rank_matches,
)
from backend.app.errors import StoreError
from backend.app.models.documents import ChunkMatch, DocumentRecord, DocumentStatus


class InMemoryDocumentRepository:
    """In-memory implementation of DocumentRepository."""

    def __init__(self) -> None:
        self._documents: dict[uuid.UUID, DocumentRecord] = {}

    async def create(self, new: NewDocument) -> DocumentRecord:
        """Register a document in pending status."""
        now = utcnow()
        record = DocumentRecord(
            document_id=uuid.uuid4(),
            team_id=new.team_id,
            uploaded_by_id=new.uploaded_by_id,
            filename=new.filename,
            original_name=new.original_name,
            mime_type=new.mime_type,
            size_bytes=new.size_bytes,
            content=new.content,
            status=DocumentStatus.pending,
            created_at=now,
            updated_at=now,
        )
        self._documents[record.document_id] = record
        return record

    async def get(self, document_id: uuid.UUID, tenant_id: uuid.UUID) -> DocumentRecord | None:
        """Get document by ID."""
        record = self._documents.get(document_id)

        # Enforce tenancy
        if record is None or record.team_id != tenant_id:
            return None

        return record

    async def list_for_tenant(
        self, tenant_id: uuid.UUID, *, status: DocumentStatus | None = None, limit: int = 100
    ) -> list[DocumentRecord]:
        """List documents for a tenant, newest first."""
        results = [
            record
            for record in self._documents.values()
            if record.team_id == tenant_id and (status is None or record.status == status)
        ]
        results.sort(key=lambda r: r.created_at, reverse=True)
        return results[:limit]

    async def list_by_status(self, status: DocumentStatus) -> list[DocumentRecord]:
        results = [r for r in self._documents.values() if r.status == status]
        results.sort(key=lambda r: r.created_at)
        return results

    async def transition(
        self,
        document_id: uuid.UUID,
        tenant_id: uuid.UUID,
        *,
        from_status: DocumentStatus,
        to_status: DocumentStatus,
        error: str | None = None,
    ) -> bool:
        """Compare-and-set on status; no await between check and write."""
        record = await self.get(document_id, tenant_id)
        if record is None or record.status != from_status:
            return False

        self._documents[document_id] = record.model_copy(
            update={"status": to_status, "processing_error": error, "updated_at": utcnow()}
        )
        return True

    async def delete(self, document_id: uuid.UUID, tenant_id: uuid.UUID) -> bool:
        """Delete document. Chunk cleanup is the chunk store's job."""
        if await self.get(document_id, tenant_id) is None:
            return False
        del self._documents[document_id]
        return True

    async def count(self, tenant_id: uuid.UUID) -> int:
        return sum(1 for r in self._documents.values() if r.team_id == tenant_id)

    async def total_size_bytes(self, tenant_id: uuid.UUID) -> int:
        return sum(r.size_bytes for r in self._documents.values() if r.team_id == tenant_id)

    def peek(self, document_id: uuid.UUID) -> DocumentRecord | None:
        """Tenant-agnostic lookup used by the chunk store join."""
        return self._documents.get(document_id)


class InMemoryChunkStore:
    """In-memory implementation of ChunkStore.

    Mirrors the SQL store's join against documents: only chunks whose
    document is ``processed`` are searchable.
    """

    def __init__(self, documents: InMemoryDocumentRepository, dimensions: int) -> None:
        self.dimensions = dimensions
        self._documents = documents
        self._chunks: dict[uuid.UUID, list[tuple[uuid.UUID, uuid.UUID, NewChunk, datetime]]] = {}

    async def save_chunks(
        self, document_id: uuid.UUID, tenant_id: uuid.UUID, chunks: Sequence[NewChunk]
    ) -> None:
        """Persist all chunks for a document at once."""
        for chunk in chunks:
            check_dimensions(chunk.embedding, self.dimensions, what=f"chunk {chunk.chunk_index}")

        existing = {c.chunk_index for _, _, c, _ in self._chunks.get(document_id, [])}
        if any(chunk.chunk_index in existing for chunk in chunks):
            raise StoreError(f"Duplicate chunk index for document {document_id}")

        created_at = utcnow()
        rows = [(uuid.uuid4(), tenant_id, chunk, created_at) for chunk in chunks]
        self._chunks.setdefault(document_id, []).extend(rows)

    async def delete_chunks_for_document(self, document_id: uuid.UUID) -> int:
        return len(self._chunks.pop(document_id, []))

    async def count_chunks(self, document_id: uuid.UUID) -> int:
        return len(self._chunks.get(document_id, []))

    async def find_nearest(
        self,
        tenant_id: uuid.UUID,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float,
    ) -> list[ChunkMatch]:
        """Brute-force cosine search over the tenant's chunks."""
        check_dimensions(query_vector, self.dimensions, what="query vector")

        matches: list[ChunkMatch] = []
        for document_id, rows in self._chunks.items():
            document = self._documents.peek(document_id)
            if document is None or document.status != DocumentStatus.processed:
                continue

            for chunk_id, chunk_tenant, chunk, created_at in rows:
                if chunk_tenant != tenant_id:
                    continue
                similarity = cosine_similarity(query_vector, chunk.embedding)
                if similarity <= min_similarity:
                    continue
                matches.append(
                    ChunkMatch(
                        chunk_id=chunk_id,
                        document_id=document_id,
                        chunk_index=chunk.chunk_index,
                        content=chunk.content,
                        similarity=similarity,
                        original_name=document.original_name,
                        metadata=chunk.metadata,
                        created_at=created_at,
                    )
                )

        return rank_matches(matches, k)


class InMemoryUsageEventStore:
    """In-memory implementation of UsageEventStore."""

    def __init__(self) -> None:
        self.events: list[tuple[NewUsageEvent, datetime]] = []

    async def append(self, event: NewUsageEvent) -> None:
        self.events.append((event, utcnow()))

    async def sum_since(self, tenant_id: uuid.UUID, event_type: str, since: datetime) -> int:
        return sum(
            event.count
            for event, created_at in self.events
            if event.team_id == tenant_id
            and event.event_type == event_type
            and created_at >= since
        )
