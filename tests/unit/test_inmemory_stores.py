"""Unit tests for similarity helpers and the in-memory stores."""

import math
import uuid
from datetime import UTC, datetime, timedelta

import pytest

from backend.app.db.inmemory import (
    InMemoryChunkStore,
    InMemoryDocumentRepository,
    InMemoryUsageEventStore,
)
from backend.app.db.repositories import (
    NewChunk,
    NewUsageEvent,
    check_dimensions,
    cosine_similarity,
    rank_matches,
)
from backend.app.errors import ConfigurationError, StoreError
from backend.app.models.documents import ChunkMatch, DocumentStatus
from tests.helpers import TEAM_A, TEAM_B, new_document


def _match(similarity: float, created_at: datetime, chunk_index: int) -> ChunkMatch:
    return ChunkMatch(
        chunk_id=uuid.uuid4(),
        document_id=uuid.uuid4(),
        chunk_index=chunk_index,
        content=f"chunk {chunk_index}",
        similarity=similarity,
        original_name="doc.txt",
        created_at=created_at,
    )


async def _processed_document(documents: InMemoryDocumentRepository, team_id: uuid.UUID) -> uuid.UUID:
    record = await documents.create(new_document(team_id, "text"))
    await documents.transition(
        record.document_id, team_id, from_status=DocumentStatus.pending, to_status=DocumentStatus.processing
    )
    await documents.transition(
        record.document_id, team_id, from_status=DocumentStatus.processing, to_status=DocumentStatus.processed
    )
    return record.document_id


def test_cosine_similarity_of_parallel_vectors_is_one() -> None:
    """Test that scaling does not change cosine similarity."""
    assert math.isclose(cosine_similarity([1.0, 2.0, 3.0], [2.0, 4.0, 6.0]), 1.0)


def test_cosine_similarity_of_orthogonal_and_opposite_vectors() -> None:
    """Test the 0 and -1 ends of the range."""
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
    assert math.isclose(cosine_similarity([1.0, 0.0], [-1.0, 0.0]), -1.0)


def test_cosine_similarity_with_zero_vector_is_zero() -> None:
    """Test that a zero vector never divides by zero."""
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_check_dimensions_rejects_mismatch() -> None:
    """Test that wrong-length vectors are a configuration error."""
    check_dimensions([0.0] * 4, 4, what="query vector")

    with pytest.raises(ConfigurationError, match="3 dimensions"):
        check_dimensions([0.0] * 3, 4, what="query vector")


def test_rank_matches_orders_by_similarity_then_age_then_index() -> None:
    """Test deterministic ordering and the k cut-off."""
    t0 = datetime(2026, 1, 1, tzinfo=UTC)
    older = _match(0.8, t0, 5)
    newer = _match(0.8, t0 + timedelta(seconds=1), 0)
    same_time_low_index = _match(0.8, t0, 1)
    best = _match(0.95, t0 + timedelta(days=1), 9)

    ranked = rank_matches([newer, older, best, same_time_low_index], k=3)

    assert ranked == [best, same_time_low_index, older]


@pytest.mark.asyncio
async def test_document_transition_is_compare_and_set() -> None:
    """Test that only the first pending -> processing transition applies."""
    documents = InMemoryDocumentRepository()
    record = await documents.create(new_document(TEAM_A, "text"))

    first = await documents.transition(
        record.document_id, TEAM_A, from_status=DocumentStatus.pending, to_status=DocumentStatus.processing
    )
    second = await documents.transition(
        record.document_id, TEAM_A, from_status=DocumentStatus.pending, to_status=DocumentStatus.processing
    )

    assert (first, second) == (True, False)
    current = await documents.get(record.document_id, TEAM_A)
    assert current is not None
    assert current.status == DocumentStatus.processing


@pytest.mark.asyncio
async def test_documents_are_invisible_to_other_tenants() -> None:
    """Test tenancy on get, transition, list and delete."""
    documents = InMemoryDocumentRepository()
    record = await documents.create(new_document(TEAM_A, "text"))

    assert await documents.get(record.document_id, TEAM_B) is None
    assert await documents.list_for_tenant(TEAM_B) == []
    assert not await documents.transition(
        record.document_id, TEAM_B, from_status=DocumentStatus.pending, to_status=DocumentStatus.processing
    )
    assert not await documents.delete(record.document_id, TEAM_B)
    assert await documents.count(TEAM_A) == 1


@pytest.mark.asyncio
async def test_save_chunks_rejects_wrong_dimensions_before_writing() -> None:
    """Test that one bad vector means nothing is stored."""
    documents = InMemoryDocumentRepository()
    store = InMemoryChunkStore(documents, dimensions=2)
    document_id = await _processed_document(documents, TEAM_A)

    with pytest.raises(ConfigurationError):
        await store.save_chunks(
            document_id,
            TEAM_A,
            [NewChunk(0, "good", [1.0, 0.0]), NewChunk(1, "bad", [1.0, 0.0, 0.0])],
        )

    assert await store.count_chunks(document_id) == 0


@pytest.mark.asyncio
async def test_save_chunks_rejects_duplicate_indices() -> None:
    """Test that a second write of the same indices fails without partial state."""
    documents = InMemoryDocumentRepository()
    store = InMemoryChunkStore(documents, dimensions=2)
    document_id = await _processed_document(documents, TEAM_A)
    await store.save_chunks(document_id, TEAM_A, [NewChunk(0, "a", [1.0, 0.0])])

    with pytest.raises(StoreError):
        await store.save_chunks(
            document_id, TEAM_A, [NewChunk(1, "b", [1.0, 0.0]), NewChunk(0, "a", [1.0, 0.0])]
        )

    assert await store.count_chunks(document_id) == 1


@pytest.mark.asyncio
async def test_find_nearest_filters_tenant_threshold_and_status() -> None:
    """Test that only processed, same-tenant chunks above the threshold match."""
    documents = InMemoryDocumentRepository()
    store = InMemoryChunkStore(documents, dimensions=2)
    doc_a = await _processed_document(documents, TEAM_A)
    doc_b = await _processed_document(documents, TEAM_B)
    pending = await documents.create(new_document(TEAM_A, "pending"))

    await store.save_chunks(
        doc_a, TEAM_A, [NewChunk(0, "close", [1.0, 0.1]), NewChunk(1, "far", [0.0, 1.0])]
    )
    await store.save_chunks(doc_b, TEAM_B, [NewChunk(0, "other team", [1.0, 0.0])])
    await store.save_chunks(pending.document_id, TEAM_A, [NewChunk(0, "unfinished", [1.0, 0.0])])

    matches = await store.find_nearest(TEAM_A, [1.0, 0.0], k=5, min_similarity=0.7)

    assert [m.content for m in matches] == ["close"]
    assert matches[0].document_id == doc_a
    assert matches[0].similarity > 0.99


@pytest.mark.asyncio
async def test_find_nearest_threshold_is_exclusive() -> None:
    """Test that a similarity exactly at the threshold is excluded."""
    documents = InMemoryDocumentRepository()
    store = InMemoryChunkStore(documents, dimensions=2)
    document_id = await _processed_document(documents, TEAM_A)
    await store.save_chunks(document_id, TEAM_A, [NewChunk(0, "orthogonal", [0.0, 1.0])])

    assert await store.find_nearest(TEAM_A, [1.0, 0.0], k=5, min_similarity=0.0) == []


@pytest.mark.asyncio
async def test_find_nearest_rejects_query_dimension_mismatch() -> None:
    """Test that a wrong-length query vector is a configuration error."""
    store = InMemoryChunkStore(InMemoryDocumentRepository(), dimensions=2)

    with pytest.raises(ConfigurationError):
        await store.find_nearest(TEAM_A, [1.0, 0.0, 0.0], k=5, min_similarity=0.7)


@pytest.mark.asyncio
async def test_delete_chunks_is_idempotent() -> None:
    """Test that deleting twice returns the removed count, then zero."""
    documents = InMemoryDocumentRepository()
    store = InMemoryChunkStore(documents, dimensions=2)
    document_id = await _processed_document(documents, TEAM_A)
    await store.save_chunks(
        document_id, TEAM_A, [NewChunk(0, "a", [1.0, 0.0]), NewChunk(1, "b", [0.0, 1.0])]
    )

    assert await store.delete_chunks_for_document(document_id) == 2
    assert await store.delete_chunks_for_document(document_id) == 0


@pytest.mark.asyncio
async def test_usage_sum_since_filters_tenant_type_and_time() -> None:
    """Test that sums respect tenant, event type and period start."""
    events = InMemoryUsageEventStore()
    await events.append(NewUsageEvent(team_id=TEAM_A, user_id=None, event_type="query"))
    await events.append(NewUsageEvent(team_id=TEAM_A, user_id=None, event_type="query", count=2))
    await events.append(NewUsageEvent(team_id=TEAM_A, user_id=None, event_type="document_upload"))
    await events.append(NewUsageEvent(team_id=TEAM_B, user_id=None, event_type="query"))

    since = datetime.now(UTC) - timedelta(minutes=1)

    assert await events.sum_since(TEAM_A, "query", since) == 3
    assert await events.sum_since(TEAM_B, "query", since) == 1
    assert await events.sum_since(TEAM_A, "query", datetime.now(UTC) + timedelta(minutes=1)) == 0
