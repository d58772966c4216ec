"""Document, chunk and answer domain models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class DocumentStatus(str, Enum):
    """Document processing lifecycle."""

    pending = "pending"
    processing = "processing"
    processed = "processed"
    error = "error"


class DocumentRecord(BaseModel):
    """Uploaded document with extracted text and processing state."""

    document_id: UUID
    team_id: UUID
    uploaded_by_id: UUID | None = None
    filename: str
    original_name: str
    mime_type: str
    size_bytes: int
    content: str = ""
    status: DocumentStatus = DocumentStatus.pending
    processing_error: str | None = None
    created_at: datetime
    updated_at: datetime


class ChunkMatch(BaseModel):
    """Stored chunk returned by a similarity query."""

    chunk_id: UUID
    document_id: UUID
    chunk_index: int
    content: str
    similarity: float
    original_name: str
    metadata: dict[str, Any] | None = None
    created_at: datetime


class Source(BaseModel):
    """Citation shown alongside a generated answer."""

    document_id: UUID
    filename: str
    chunk_index: int
    preview: str = Field(..., description="Truncated chunk content")
    similarity: float


class AnswerOutcome(str, Enum):
    """How a query was resolved."""

    answered = "answered"
    no_context = "no_context"
    error = "error"
