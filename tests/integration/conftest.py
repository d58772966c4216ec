"""Fixtures for HTTP-level tests against a SQLite-backed application."""

import time
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from backend.app.config import Settings
from backend.app.db.models import Team
from backend.app.db.seed_dev import create_team
from backend.app.main import create_app
from backend.app.models.usage import PlanTier
from backend.app.services import RagServices
from tests.helpers import TEAM_A, TEAM_B, TEAM_TINY, KeywordEmbedder, RecordingLLM


@pytest.fixture
def client(
    settings: Settings, embedder: KeywordEmbedder, llm: RecordingLLM, tmp_path: Path
) -> Generator[TestClient, None, None]:
    """Application with SQLite storage and test doubles, lifespan running.

    A file database gives the worker and request handlers separate
    connections.
    """
    database_path = tmp_path / "rag.db"
    settings = settings.model_copy(
        update={"database_url": f"sqlite+aiosqlite:///{database_path}"}
    )

    async def build_services(_: Settings) -> RagServices:
        services = await RagServices.create(settings, embedder=embedder, llm=llm)
        assert services.session_factory is not None

        await create_team(services.session_factory, "Team A", PlanTier.free, team_id=TEAM_A)
        await create_team(services.session_factory, "Team B", PlanTier.enterprise, team_id=TEAM_B)
        async with services.session_factory() as session:
            session.add(
                Team(
                    team_id=TEAM_TINY,
                    name="Tiny",
                    plan="custom",
                    query_limit=2,
                    documents_limit=1,
                    storage_limit_mb=1,
                )
            )
            await session.commit()
        return services

    with TestClient(create_app(build_services)) as test_client:
        yield test_client


@pytest.fixture
def wait_for_status(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Poll GET /documents/{id} until the document reaches ``status``."""

    def wait(
        document_id: str, status: str, headers: dict[str, str], timeout: float = 5.0
    ) -> dict[str, Any]:
        deadline = time.monotonic() + timeout
        while True:
            response = client.get(f"/documents/{document_id}", headers=headers)
            assert response.status_code == 200
            body: dict[str, Any] = response.json()
            if body["status"] == status:
                return body
            if time.monotonic() > deadline:
                raise AssertionError(f"document stuck in {body['status']}, expected {status}")
            time.sleep(0.02)

    return wait
