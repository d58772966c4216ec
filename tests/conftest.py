"""Shared pytest fixtures for all test suites."""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from backend.app.config import Settings
from backend.app.db.models import Base
from backend.app.models.usage import PlanTier
from backend.app.services import RagServices
from backend.app.usage.plans import StaticPlanLimits, limits_for
from tests.helpers import KEYWORDS, TEAM_A, TEAM_B, KeywordEmbedder, RecordingLLM


@pytest.fixture
def settings() -> Settings:
    """Small, fast settings for unit and integration tests."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        openai_api_key=None,
        embedding_provider="hash",
        embedding_dimensions=len(KEYWORDS) + 1,
        chunk_size=200,
        chunk_overlap=40,
        retrieval_top_k=5,
        similarity_threshold=0.7,
        embedding_concurrency=2,
        ingestion_workers=1,
    )


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def llm() -> RecordingLLM:
    return RecordingLLM()


@pytest.fixture
def plan_limits() -> StaticPlanLimits:
    """Team A on the free plan, team B on enterprise."""
    return StaticPlanLimits(
        {
            TEAM_A: limits_for(PlanTier.free),
            TEAM_B: limits_for(PlanTier.enterprise),
        }
    )


@pytest.fixture
def services(
    settings: Settings,
    embedder: KeywordEmbedder,
    llm: RecordingLLM,
    plan_limits: StaticPlanLimits,
) -> RagServices:
    """In-memory services wired with test doubles."""
    return RagServices.in_memory(settings, plan_limits=plan_limits, embedder=embedder, llm=llm)


@pytest_asyncio.fixture
async def sqlite_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite database with the ORM schema, shared across sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string
    with the pgvector extension available. Tests using this fixture should
    be marked with @pytest.mark.postgres.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(database_url, poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.exec_driver_sql("CREATE EXTENSION IF NOT EXISTS vector")
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
