"""Document ingestion - split, embed and persist chunks with a status lifecycle.

pending -> processing -> processed | error; error -> pending on reprocess.
The pending -> processing step is a conditional update, so at most one
ingestion is in flight per document.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from backend.app.db.repositories import ChunkStore, DocumentRepository, NewChunk
from backend.app.docs.chunker import RecursiveTextSplitter, estimate_token_count
from backend.app.docs.embeddings import EmbeddingClient
from backend.app.errors import IngestionConflict, NotFoundError, RagError, StoreError
from backend.app.models.documents import DocumentRecord, DocumentStatus
from backend.app.models.usage import UsageEventType
from backend.app.usage.metering import UsageMeter
from backend.app.utils.logging import log_structured
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionResult:
    """Outcome of one ingestion run."""

    document_id: UUID
    status: DocumentStatus
    chunks_created: int = 0
    error_kind: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == DocumentStatus.processed


class IngestionPipeline:
    """Turns a pending document into searchable chunks."""

    def __init__(
        self,
        documents: DocumentRepository,
        chunks: ChunkStore,
        embedder: EmbeddingClient,
        splitter: RecursiveTextSplitter,
        meter: UsageMeter | None = None,
        *,
        embedding_concurrency: int = 4,
    ) -> None:
        if embedding_concurrency <= 0:
            raise ValueError("embedding_concurrency must be positive")
        self._documents = documents
        self._chunks = chunks
        self._embedder = embedder
        self._splitter = splitter
        self._meter = meter
        self._embedding_concurrency = embedding_concurrency

    async def ingest(
        self, document_id: UUID, tenant_id: UUID, raw_text: str | None = None
    ) -> IngestionResult:
        """Ingest a pending document.

        Args:
            document_id: Document to ingest
            tenant_id: Owning team
            raw_text: Text to split; defaults to the stored document content

        Returns:
            IngestionResult; processing failures are reported here, not raised

        Raises:
            NotFoundError: Document does not exist for this tenant
            IngestionConflict: Document is not pending (e.g. already processing)
        """
        document = await self._documents.get(document_id, tenant_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")

        claimed = await self._documents.transition(
            document_id,
            tenant_id,
            from_status=DocumentStatus.pending,
            to_status=DocumentStatus.processing,
        )
        if not claimed:
            await self._raise_not_claimable(document_id, tenant_id, "ingest")

        text = document.content if raw_text is None else raw_text

        try:
            chunks_created = await self._process(document_id, tenant_id, text)
        except asyncio.CancelledError:
            logger.warning(f"Ingestion of document {document_id} cancelled")
            await asyncio.shield(
                self._fail(
                    document_id, tenant_id, "cancelled", "Ingestion cancelled before completion"
                )
            )
            raise
        except RagError as e:
            log_structured(
                logger,
                logging.WARNING,
                f"Ingestion of document {document_id} failed: {e.message}",
                document_id=str(document_id),
                team_id=str(tenant_id),
                error_kind=e.kind,
            )
            return await self._fail(document_id, tenant_id, e.kind, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error ingesting document {document_id}")
            return await self._fail(document_id, tenant_id, "internal", f"Processing failed: {e}")

        metrics.inc_ingestion("processed", chunks=chunks_created)
        log_structured(
            logger,
            logging.INFO,
            f"Document {document_id} processed",
            document_id=str(document_id),
            team_id=str(tenant_id),
            chunks=chunks_created,
        )

        if self._meter is not None and chunks_created:
            await self._meter.record(
                tenant_id,
                document.uploaded_by_id,
                UsageEventType.embedding_generation,
                count=chunks_created,
                metadata={"document_id": str(document_id)},
            )

        return IngestionResult(
            document_id=document_id,
            status=DocumentStatus.processed,
            chunks_created=chunks_created,
        )

    async def reset_for_reprocess(self, document_id: UUID, tenant_id: UUID) -> None:
        """Move a failed document back to pending and drop its chunks.

        Raises:
            NotFoundError: Document does not exist for this tenant
            IngestionConflict: Document is not in the error state
        """
        moved = await self._documents.transition(
            document_id,
            tenant_id,
            from_status=DocumentStatus.error,
            to_status=DocumentStatus.pending,
        )
        if not moved:
            await self._raise_not_claimable(document_id, tenant_id, "reprocess")

        await self._chunks.delete_chunks_for_document(document_id)

    async def reprocess(self, document_id: UUID, tenant_id: UUID) -> IngestionResult:
        """Retry ingestion of a document that previously failed."""
        await self.reset_for_reprocess(document_id, tenant_id)
        return await self.ingest(document_id, tenant_id)

    async def recover_interrupted(self) -> list[DocumentRecord]:
        """Prepare documents a previous process left unfinished.

        Documents stuck in processing lose their partial chunks and go back
        to pending. Call before any worker starts claiming documents.

        Returns:
            Every pending document, oldest first
        """
        stale = await self._documents.list_by_status(DocumentStatus.processing)
        for document in stale:
            await self._chunks.delete_chunks_for_document(document.document_id)
            await self._documents.transition(
                document.document_id,
                document.team_id,
                from_status=DocumentStatus.processing,
                to_status=DocumentStatus.pending,
            )
        if stale:
            logger.warning(f"Reset {len(stale)} interrupted ingestions to pending")

        return await self._documents.list_by_status(DocumentStatus.pending)

    async def _process(self, document_id: UUID, tenant_id: UUID, text: str) -> int:
        # Whitespace-only documents are processed with zero chunks
        pieces = self._splitter.split(text) if text.strip() else []

        if pieces:
            vectors = await self._embed_all([piece.text for piece in pieces])
            new_chunks = [
                NewChunk(
                    chunk_index=piece.index,
                    content=piece.text,
                    embedding=vector,
                    token_count=estimate_token_count(piece.text),
                    metadata={"start": piece.start, "end": piece.end},
                )
                for piece, vector in zip(pieces, vectors, strict=True)
            ]
            await self._chunks.save_chunks(document_id, tenant_id, new_chunks)

        finished = await self._documents.transition(
            document_id,
            tenant_id,
            from_status=DocumentStatus.processing,
            to_status=DocumentStatus.processed,
        )
        if not finished:
            raise StoreError(f"Document {document_id} changed state during ingestion")

        return len(pieces)

    async def _embed_all(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts with bounded concurrency, preserving input order."""
        semaphore = asyncio.Semaphore(self._embedding_concurrency)

        async def embed_one(text: str) -> list[float]:
            async with semaphore:
                return await self._embedder.embed(text)

        tasks = [asyncio.ensure_future(embed_one(text)) for text in texts]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    async def _fail(
        self, document_id: UUID, tenant_id: UUID, error_kind: str, message: str
    ) -> IngestionResult:
        metrics.inc_ingestion("error")

        try:
            await self._chunks.delete_chunks_for_document(document_id)
            await self._documents.transition(
                document_id,
                tenant_id,
                from_status=DocumentStatus.processing,
                to_status=DocumentStatus.error,
                error=message,
            )
        except RagError:
            logger.exception(f"Could not mark document {document_id} as failed")

        return IngestionResult(
            document_id=document_id,
            status=DocumentStatus.error,
            error_kind=error_kind,
            error=message,
        )

    async def _raise_not_claimable(self, document_id: UUID, tenant_id: UUID, action: str) -> None:
        current = await self._documents.get(document_id, tenant_id)
        if current is None:
            raise NotFoundError(f"Document {document_id} not found")
        raise IngestionConflict(document_id, current.status.value, action)
