"""Document endpoints - upload, list, inspect, reprocess and delete."""

import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from backend.app.api.auth import get_current_context
from backend.app.api.deps import get_services
from backend.app.db.context import RequestContext
from backend.app.db.models import utcnow
from backend.app.db.repositories import NewDocument
from backend.app.docs.worker import IngestionJob
from backend.app.errors import LimitExceeded, NotFoundError
from backend.app.models.documents import DocumentRecord, DocumentStatus
from backend.app.models.usage import LimitStatus, UsageEventType
from backend.app.services import RagServices
from backend.app.usage.metering import STORAGE

router = APIRouter(prefix="/documents", tags=["documents"])
logger = logging.getLogger(__name__)


class UploadDocumentRequest(BaseModel):
    """Request body for POST /documents (text already extracted)."""

    filename: str = Field(..., min_length=1, max_length=255, description="Original file name")
    mime_type: str = Field("text/plain", max_length=100)
    content: str = Field(..., description="Extracted document text")
    size_bytes: int | None = Field(
        None, ge=0, description="Uploaded file size; defaults to the UTF-8 size of content"
    )


class DocumentResponse(BaseModel):
    """Document metadata and processing state."""

    document_id: UUID
    filename: str
    original_name: str
    mime_type: str
    size_bytes: int
    status: DocumentStatus
    processing_error: str | None = None
    chunk_count: int | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: DocumentRecord, chunk_count: int | None = None) -> "DocumentResponse":
        return cls(
            document_id=record.document_id,
            filename=record.filename,
            original_name=record.original_name,
            mime_type=record.mime_type,
            size_bytes=record.size_bytes,
            status=record.status,
            processing_error=record.processing_error,
            chunk_count=chunk_count,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class DocumentListResponse(BaseModel):
    """Response for GET /documents."""

    documents: list[DocumentResponse]


@router.post("", response_model=DocumentResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_document(
    request: UploadDocumentRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[RagServices, Depends(get_services)],
) -> DocumentResponse:
    """Register a document and queue it for ingestion.

    Returns:
        The pending document; poll GET /documents/{id} for completion

    Raises:
        LimitExceeded: Documents or storage limit reached (429)
    """
    size_bytes = (
        request.size_bytes
        if request.size_bytes is not None
        else len(request.content.encode("utf-8"))
    )

    documents_check = await services.meter.check_limit(ctx.team_id, UsageEventType.document_upload)
    if documents_check.status == LimitStatus.over:
        raise LimitExceeded(
            UsageEventType.document_upload.value, documents_check.used, documents_check.limit
        )

    storage_check = await services.meter.check_storage(ctx.team_id, size_bytes)
    if storage_check.status == LimitStatus.over:
        raise LimitExceeded(STORAGE, storage_check.used, storage_check.limit)

    record = await services.documents.create(
        NewDocument(
            team_id=ctx.team_id,
            uploaded_by_id=ctx.user_id,
            filename=f"{int(utcnow().timestamp() * 1000)}-{request.filename}",
            original_name=request.filename,
            mime_type=request.mime_type,
            size_bytes=size_bytes,
            content=request.content,
        )
    )

    await services.meter.record(
        ctx.team_id,
        ctx.user_id,
        UsageEventType.document_upload,
        metadata={"document_id": str(record.document_id), "size_bytes": size_bytes},
    )
    await services.worker.submit(IngestionJob(document_id=record.document_id, tenant_id=ctx.team_id))

    logger.info(
        f"Document {record.document_id} queued for ingestion",
        extra={"structured": {"team_id": str(ctx.team_id), "size_bytes": size_bytes}},
    )
    return DocumentResponse.from_record(record)


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[RagServices, Depends(get_services)],
    status_filter: Annotated[DocumentStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> DocumentListResponse:
    """List the team's documents, newest first."""
    records = await services.documents.list_for_tenant(
        ctx.team_id, status=status_filter, limit=limit
    )
    return DocumentListResponse(documents=[DocumentResponse.from_record(r) for r in records])


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[RagServices, Depends(get_services)],
) -> DocumentResponse:
    """Document status, error and chunk count. 404 for other teams' documents."""
    record = await services.documents.get(document_id, ctx.team_id)
    if record is None:
        raise NotFoundError(f"Document {document_id} not found")

    chunk_count = await services.chunks.count_chunks(document_id)
    return DocumentResponse.from_record(record, chunk_count)


@router.post(
    "/{document_id}/reprocess",
    response_model=DocumentResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reprocess_document(
    document_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[RagServices, Depends(get_services)],
) -> DocumentResponse:
    """Queue a failed document for another ingestion attempt (409 unless in error)."""
    await services.pipeline.reset_for_reprocess(document_id, ctx.team_id)
    await services.worker.submit(IngestionJob(document_id=document_id, tenant_id=ctx.team_id))

    record = await services.documents.get(document_id, ctx.team_id)
    if record is None:
        raise NotFoundError(f"Document {document_id} not found")
    return DocumentResponse.from_record(record)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[RagServices, Depends(get_services)],
) -> Response:
    """Delete a document and its chunks."""
    deleted = await services.documents.delete(document_id, ctx.team_id)
    if not deleted:
        raise NotFoundError(f"Document {document_id} not found")

    await services.chunks.delete_chunks_for_document(document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
