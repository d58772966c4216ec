"""SQL implementations of repository interfaces.

Each repository opens a short-lived session per operation from the shared
``async_sessionmaker``, so one failing write never poisons another caller's
unit of work.
"""

import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Float, bindparam, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.models import Document, DocumentChunk, Team, UsageEvent, utcnow
from backend.app.db.repositories import (
    NewChunk,
    NewDocument,
    NewUsageEvent,
    check_dimensions,
    cosine_similarity,
    rank_matches,
)
from backend.app.errors import NotFoundError, StoreError
from backend.app.models.documents import ChunkMatch, DocumentRecord, DocumentStatus
from backend.app.models.usage import PlanLimits

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _unit_of_work(
    session_factory: async_sessionmaker[AsyncSession], action: str
) -> AsyncIterator[AsyncSession]:
    """Open a session and translate driver errors into StoreError."""
    async with session_factory() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error while trying to {action}: {e}")
            raise StoreError(f"Failed to {action}: {type(e).__name__}") from e


def _to_record(doc: Document) -> DocumentRecord:
    return DocumentRecord(
        document_id=doc.document_id,
        team_id=doc.team_id,
        uploaded_by_id=doc.uploaded_by_id,
        filename=doc.filename,
        original_name=doc.original_name,
        mime_type=doc.mime_type,
        size_bytes=doc.size_bytes,
        content=doc.content,
        status=DocumentStatus(doc.status),
        processing_error=doc.processing_error,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


class SqlDocumentRepository:
    """SQL implementation of DocumentRepository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, new: NewDocument) -> DocumentRecord:
        """Register a document in pending status."""
        now = utcnow()
        doc = Document(
            document_id=uuid.uuid4(),
            team_id=new.team_id,
            uploaded_by_id=new.uploaded_by_id,
            filename=new.filename,
            original_name=new.original_name,
            mime_type=new.mime_type,
            size_bytes=new.size_bytes,
            content=new.content,
            metadata_=new.metadata,
            status=DocumentStatus.pending.value,
            created_at=now,
            updated_at=now,
        )

        async with _unit_of_work(self._session_factory, "create document") as session:
            session.add(doc)
            await session.commit()

        return _to_record(doc)

    async def get(self, document_id: uuid.UUID, tenant_id: uuid.UUID) -> DocumentRecord | None:
        """Get document by ID within the tenant."""
        stmt = select(Document).where(
            Document.document_id == document_id,
            Document.team_id == tenant_id,
        )

        async with _unit_of_work(self._session_factory, "load document") as session:
            result = await session.execute(stmt)
            doc = result.scalar_one_or_none()

        return _to_record(doc) if doc is not None else None

    async def list_for_tenant(
        self, tenant_id: uuid.UUID, *, status: DocumentStatus | None = None, limit: int = 100
    ) -> list[DocumentRecord]:
        """List documents for a tenant, newest first."""
        stmt = select(Document).where(Document.team_id == tenant_id)
        if status is not None:
            stmt = stmt.where(Document.status == status.value)
        stmt = stmt.order_by(Document.created_at.desc()).limit(limit)

        async with _unit_of_work(self._session_factory, "list documents") as session:
            result = await session.execute(stmt)
            docs = list(result.scalars().all())

        return [_to_record(doc) for doc in docs]

    async def list_by_status(self, status: DocumentStatus) -> list[DocumentRecord]:
        """Documents of every tenant in a status, oldest first."""
        stmt = (
            select(Document)
            .where(Document.status == status.value)
            .order_by(Document.created_at.asc())
        )

        async with _unit_of_work(self._session_factory, "list documents by status") as session:
            result = await session.execute(stmt)
            docs = list(result.scalars().all())

        return [_to_record(doc) for doc in docs]

    async def transition(
        self,
        document_id: uuid.UUID,
        tenant_id: uuid.UUID,
        *,
        from_status: DocumentStatus,
        to_status: DocumentStatus,
        error: str | None = None,
    ) -> bool:
        """Conditional UPDATE on status; only one concurrent caller can win."""
        stmt = (
            update(Document)
            .where(
                Document.document_id == document_id,
                Document.team_id == tenant_id,
                Document.status == from_status.value,
            )
            .values(status=to_status.value, processing_error=error, updated_at=utcnow())
        )

        async with _unit_of_work(self._session_factory, "update document status") as session:
            result = await session.execute(stmt)
            await session.commit()

        return bool(result.rowcount == 1)

    async def delete(self, document_id: uuid.UUID, tenant_id: uuid.UUID) -> bool:
        """Delete document and its chunks in one transaction."""
        async with _unit_of_work(self._session_factory, "delete document") as session:
            result = await session.execute(
                delete(Document).where(
                    Document.document_id == document_id,
                    Document.team_id == tenant_id,
                )
            )
            if result.rowcount == 0:
                await session.rollback()
                return False

            # Explicit for backends that do not enforce ON DELETE CASCADE
            await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
            )
            await session.commit()

        return True

    async def count(self, tenant_id: uuid.UUID) -> int:
        stmt = select(func.count()).select_from(Document).where(Document.team_id == tenant_id)
        async with _unit_of_work(self._session_factory, "count documents") as session:
            return int((await session.execute(stmt)).scalar_one())

    async def total_size_bytes(self, tenant_id: uuid.UUID) -> int:
        stmt = select(func.coalesce(func.sum(Document.size_bytes), 0)).where(
            Document.team_id == tenant_id
        )
        async with _unit_of_work(self._session_factory, "sum document sizes") as session:
            return int((await session.execute(stmt)).scalar_one())


class SqlChunkStore:
    """SQL implementation of ChunkStore.

    PostgreSQL ranks with pgvector's cosine distance operator; other
    dialects load the tenant's vectors and rank in Python.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], dimensions: int) -> None:
        self._session_factory = session_factory
        self.dimensions = dimensions

    async def save_chunks(
        self, document_id: uuid.UUID, tenant_id: uuid.UUID, chunks: Sequence[NewChunk]
    ) -> None:
        """Insert all chunks in a single transaction."""
        for chunk in chunks:
            check_dimensions(chunk.embedding, self.dimensions, what=f"chunk {chunk.chunk_index}")

        created_at = utcnow()
        rows = [
            DocumentChunk(
                chunk_id=uuid.uuid4(),
                document_id=document_id,
                team_id=tenant_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                embedding=list(chunk.embedding),
                token_count=chunk.token_count,
                metadata_=chunk.metadata,
                created_at=created_at,
            )
            for chunk in chunks
        ]

        async with _unit_of_work(self._session_factory, "save chunks") as session:
            session.add_all(rows)
            await session.commit()

    async def delete_chunks_for_document(self, document_id: uuid.UUID) -> int:
        async with _unit_of_work(self._session_factory, "delete chunks") as session:
            result = await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
            )
            await session.commit()
        return int(result.rowcount or 0)

    async def count_chunks(self, document_id: uuid.UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(DocumentChunk)
            .where(DocumentChunk.document_id == document_id)
        )
        async with _unit_of_work(self._session_factory, "count chunks") as session:
            return int((await session.execute(stmt)).scalar_one())

    async def find_nearest(
        self,
        tenant_id: uuid.UUID,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float,
    ) -> list[ChunkMatch]:
        """Top-k tenant chunks by cosine similarity."""
        check_dimensions(query_vector, self.dimensions, what="query vector")

        async with _unit_of_work(self._session_factory, "search chunks") as session:
            if session.get_bind().dialect.name == "postgresql":
                return await self._find_nearest_pgvector(
                    session, tenant_id, query_vector, k, min_similarity
                )
            return await self._find_nearest_scan(
                session, tenant_id, query_vector, k, min_similarity
            )

    async def _find_nearest_pgvector(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float,
    ) -> list[ChunkMatch]:
        query_param = bindparam("query_vector", list(query_vector), type_=Vector(self.dimensions))
        distance = DocumentChunk.embedding.op("<=>", return_type=Float)(query_param)
        similarity = 1 - distance

        stmt = (
            select(
                DocumentChunk.chunk_id,
                DocumentChunk.document_id,
                DocumentChunk.chunk_index,
                DocumentChunk.content,
                DocumentChunk.metadata_,
                DocumentChunk.created_at,
                Document.original_name,
                similarity.label("similarity"),
            )
            .join(Document, Document.document_id == DocumentChunk.document_id)
            .where(
                DocumentChunk.team_id == tenant_id,
                Document.team_id == tenant_id,
                Document.status == DocumentStatus.processed.value,
                similarity > min_similarity,
            )
            .order_by(distance, DocumentChunk.created_at, DocumentChunk.chunk_index)
            .limit(k)
        )

        result = await session.execute(stmt)
        return [
            ChunkMatch(
                chunk_id=chunk_id,
                document_id=document_id,
                chunk_index=chunk_index,
                content=content,
                metadata=metadata,
                created_at=created_at,
                original_name=original_name,
                similarity=float(score),
            )
            for (
                chunk_id,
                document_id,
                chunk_index,
                content,
                metadata,
                created_at,
                original_name,
                score,
            ) in result.all()
        ]

    async def _find_nearest_scan(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float,
    ) -> list[ChunkMatch]:
        stmt = (
            select(
                DocumentChunk.chunk_id,
                DocumentChunk.document_id,
                DocumentChunk.chunk_index,
                DocumentChunk.content,
                DocumentChunk.metadata_,
                DocumentChunk.created_at,
                Document.original_name,
                DocumentChunk.embedding,
            )
            .join(Document, Document.document_id == DocumentChunk.document_id)
            .where(
                DocumentChunk.team_id == tenant_id,
                Document.team_id == tenant_id,
                Document.status == DocumentStatus.processed.value,
            )
        )

        result = await session.execute(stmt)

        matches: list[ChunkMatch] = []
        for (
            chunk_id,
            document_id,
            chunk_index,
            content,
            metadata,
            created_at,
            original_name,
            embedding,
        ) in result.all():
            score = cosine_similarity(query_vector, embedding)
            if score <= min_similarity:
                continue
            matches.append(
                ChunkMatch(
                    chunk_id=chunk_id,
                    document_id=document_id,
                    chunk_index=chunk_index,
                    content=content,
                    metadata=metadata,
                    created_at=created_at,
                    original_name=original_name,
                    similarity=score,
                )
            )

        return rank_matches(matches, k)


class SqlUsageEventStore:
    """SQL implementation of UsageEventStore."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, event: NewUsageEvent) -> None:
        row = UsageEvent(
            event_id=uuid.uuid4(),
            team_id=event.team_id,
            user_id=event.user_id,
            event_type=event.event_type,
            count=event.count,
            metadata_=event.metadata,
            created_at=utcnow(),
        )
        async with _unit_of_work(self._session_factory, "record usage event") as session:
            session.add(row)
            await session.commit()

    async def sum_since(self, tenant_id: uuid.UUID, event_type: str, since: datetime) -> int:
        stmt = select(func.coalesce(func.sum(UsageEvent.count), 0)).where(
            UsageEvent.team_id == tenant_id,
            UsageEvent.event_type == event_type,
            UsageEvent.created_at >= since,
        )
        async with _unit_of_work(self._session_factory, "sum usage events") as session:
            return int((await session.execute(stmt)).scalar_one())


class SqlPlanLimits:
    """PlanLimitsProvider backed by the team table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_limits(self, tenant_id: uuid.UUID) -> PlanLimits:
        stmt = select(Team).where(Team.team_id == tenant_id)
        async with _unit_of_work(self._session_factory, "load plan limits") as session:
            team = (await session.execute(stmt)).scalar_one_or_none()

        if team is None:
            raise NotFoundError(f"Team {tenant_id} not found")

        return PlanLimits(
            query_limit=team.query_limit,
            documents_limit=team.documents_limit,
            storage_limit_mb=team.storage_limit_mb,
        )
