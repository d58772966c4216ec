"""Service wiring - builds the object graph owned by the application lifespan."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from backend.app.config import Settings
from backend.app.db.engine import create_async_engine_from_settings, create_session_factory
from backend.app.db.inmemory import (
    InMemoryChunkStore,
    InMemoryDocumentRepository,
    InMemoryUsageEventStore,
)
from backend.app.db.models import Base
from backend.app.db.repositories import (
    ChunkStore,
    DocumentRepository,
    PlanLimitsProvider,
    UsageEventStore,
)
from backend.app.db.sql_repositories import (
    SqlChunkStore,
    SqlDocumentRepository,
    SqlPlanLimits,
    SqlUsageEventStore,
)
from backend.app.docs.answer import RagAnswerComposer
from backend.app.docs.chunker import RecursiveTextSplitter
from backend.app.docs.embeddings import EmbeddingClient, get_embedding_client
from backend.app.docs.ingest import IngestionPipeline
from backend.app.docs.retriever import SimilaritySearch
from backend.app.docs.worker import IngestionWorker
from backend.app.llm.client import LLMClient, get_llm_client
from backend.app.usage.metering import UsageMeter
from backend.app.usage.plans import StaticPlanLimits

logger = logging.getLogger(__name__)


@dataclass
class RagServices:
    """Everything a request handler needs, constructed once per process."""

    settings: Settings
    documents: DocumentRepository
    chunks: ChunkStore
    usage_events: UsageEventStore
    plan_limits: PlanLimitsProvider
    embedder: EmbeddingClient
    llm: LLMClient
    splitter: RecursiveTextSplitter
    meter: UsageMeter
    pipeline: IngestionPipeline
    search: SimilaritySearch
    composer: RagAnswerComposer
    worker: IngestionWorker
    engine: AsyncEngine | None = None
    session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        documents: DocumentRepository,
        chunks: ChunkStore,
        usage_events: UsageEventStore,
        plan_limits: PlanLimitsProvider,
        embedder: EmbeddingClient | None = None,
        llm: LLMClient | None = None,
        engine: AsyncEngine | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> "RagServices":
        """Assemble services around the given stores."""
        embedder = embedder or get_embedding_client(settings)
        llm = llm or get_llm_client(settings)
        splitter = RecursiveTextSplitter(settings.chunk_size, settings.chunk_overlap)
        meter = UsageMeter(
            usage_events, plan_limits, documents, near_ratio=settings.near_limit_ratio
        )
        pipeline = IngestionPipeline(
            documents,
            chunks,
            embedder,
            splitter,
            meter,
            embedding_concurrency=settings.embedding_concurrency,
        )
        search = SimilaritySearch(
            embedder,
            chunks,
            default_k=settings.retrieval_top_k,
            default_min_similarity=settings.similarity_threshold,
        )
        composer = RagAnswerComposer(
            search, llm, meter, preview_chars=settings.source_preview_chars
        )

        return cls(
            settings=settings,
            documents=documents,
            chunks=chunks,
            usage_events=usage_events,
            plan_limits=plan_limits,
            embedder=embedder,
            llm=llm,
            splitter=splitter,
            meter=meter,
            pipeline=pipeline,
            search=search,
            composer=composer,
            worker=IngestionWorker(pipeline, workers=settings.ingestion_workers),
            engine=engine,
            session_factory=session_factory,
        )

    @classmethod
    async def create(
        cls,
        settings: Settings,
        *,
        embedder: EmbeddingClient | None = None,
        llm: LLMClient | None = None,
    ) -> "RagServices":
        """SQL-backed services from settings.

        SQLite databases (tests, local dev) get their schema from the ORM
        metadata; PostgreSQL schemas are managed by alembic.
        """
        engine = create_async_engine_from_settings(settings)
        session_factory = create_session_factory(engine)

        if engine.dialect.name == "sqlite":
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        logger.info(f"Database engine ready ({engine.dialect.name})")
        return cls.build(
            settings,
            documents=SqlDocumentRepository(session_factory),
            chunks=SqlChunkStore(session_factory, settings.embedding_dimensions),
            usage_events=SqlUsageEventStore(session_factory),
            plan_limits=SqlPlanLimits(session_factory),
            embedder=embedder,
            llm=llm,
            engine=engine,
            session_factory=session_factory,
        )

    @classmethod
    def in_memory(
        cls,
        settings: Settings,
        *,
        plan_limits: StaticPlanLimits | None = None,
        embedder: EmbeddingClient | None = None,
        llm: LLMClient | None = None,
    ) -> "RagServices":
        """Process-local services with no database."""
        documents = InMemoryDocumentRepository()
        return cls.build(
            settings,
            documents=documents,
            chunks=InMemoryChunkStore(documents, settings.embedding_dimensions),
            usage_events=InMemoryUsageEventStore(),
            plan_limits=plan_limits or StaticPlanLimits(),
            embedder=embedder,
            llm=llm,
        )

    async def close(self) -> None:
        """Stop background work and release the database pool."""
        await self.worker.stop()
        if self.engine is not None:
            await self.engine.dispose()
