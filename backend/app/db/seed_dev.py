"""Dev seeding helper for stub authentication."""

import asyncio
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.api.auth import DEV_TEAM_ID
from backend.app.config import get_settings
from backend.app.db.engine import create_async_engine_from_settings, create_session_factory
from backend.app.db.models import Team
from backend.app.models.usage import PlanTier
from backend.app.usage.plans import PLANS

logger = logging.getLogger(__name__)


async def create_team(
    session_factory: async_sessionmaker[AsyncSession],
    name: str,
    plan: PlanTier = PlanTier.free,
    *,
    team_id: uuid.UUID | None = None,
) -> Team:
    """Insert a team with the plan catalogue's default limits."""
    limits = PLANS[plan].limits
    team = Team(
        team_id=team_id or uuid.uuid4(),
        name=name,
        plan=plan.value,
        query_limit=limits.query_limit,
        documents_limit=limits.documents_limit,
        storage_limit_mb=limits.storage_limit_mb,
    )
    async with session_factory() as session:
        session.add(team)
        await session.commit()
    return team


async def seed_dev_team(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Seed the dev team used by stub authentication.

    This function is idempotent - safe to run multiple times.
    """
    async with session_factory() as session:
        result = await session.execute(select(Team).where(Team.team_id == DEV_TEAM_ID))
        team = result.scalar_one_or_none()

    if team is not None:
        logger.info(f"Dev team already exists: {team.name}")
        return

    logger.info(f"Creating dev team with id {DEV_TEAM_ID}...")
    await create_team(session_factory, "Dev Team", PlanTier.free, team_id=DEV_TEAM_ID)
    logger.info("Dev seeding complete")


async def _main() -> None:
    engine = create_async_engine_from_settings(get_settings())
    try:
        await seed_dev_team(create_session_factory(engine))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_main())
