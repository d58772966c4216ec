"""Integration tests for dev seeding helper."""

import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.api.auth import DEV_TEAM_ID, DEV_USER_ID
from backend.app.db.models import Team
from backend.app.db.seed_dev import create_team, seed_dev_team
from backend.app.models.usage import PlanTier


def test_dev_ids_match_stub_auth() -> None:
    """Test that dev IDs match the stub auth defaults."""
    assert DEV_TEAM_ID == uuid.UUID("00000000-0000-0000-0000-000000000001")
    assert DEV_USER_ID == uuid.UUID("00000000-0000-0000-0000-000000000002")


@pytest.mark.asyncio
async def test_seed_is_idempotent(
    sqlite_session_factory: async_sessionmaker[AsyncSession],
) -> None:
    await seed_dev_team(sqlite_session_factory)
    await seed_dev_team(sqlite_session_factory)

    async with sqlite_session_factory() as session:
        count = (await session.execute(select(func.count()).select_from(Team))).scalar_one()
        team = await session.get(Team, DEV_TEAM_ID)

    assert count == 1
    assert team is not None
    assert team.plan == "free"
    assert team.query_limit == 100


@pytest.mark.asyncio
async def test_create_team_uses_plan_limits(
    sqlite_session_factory: async_sessionmaker[AsyncSession],
) -> None:
    team = await create_team(sqlite_session_factory, "Pro Team", PlanTier.pro)

    assert team.plan == "pro"
    assert team.query_limit == 5000
    assert team.documents_limit == 500
    assert team.storage_limit_mb == 10000
