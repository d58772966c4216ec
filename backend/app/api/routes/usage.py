"""Usage endpoint - GET /usage reports current-period usage against plan limits."""

from datetime import UTC, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.app.api.auth import get_current_context
from backend.app.api.deps import get_services
from backend.app.db.context import RequestContext
from backend.app.models.usage import LimitStatus
from backend.app.services import RagServices
from backend.app.usage.metering import period_start

router = APIRouter(tags=["usage"])


class UsageItem(BaseModel):
    """Usage against a single plan limit (-1 limit means unlimited)."""

    event_type: str
    status: LimitStatus
    used: int
    limit: int
    remaining: int | None


class UsageResponse(BaseModel):
    """Response for GET /usage."""

    team_id: UUID
    period_start: datetime
    usage: list[UsageItem]


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[RagServices, Depends(get_services)],
) -> UsageResponse:
    """Queries this month, live documents and storage versus the team's plan."""
    now = datetime.now(UTC)
    checks = await services.meter.usage_summary(ctx.team_id, now)

    return UsageResponse(
        team_id=ctx.team_id,
        period_start=period_start(now),
        usage=[
            UsageItem(
                event_type=check.event_type,
                status=check.status,
                used=check.used,
                limit=check.limit,
                remaining=check.remaining,
            )
            for check in checks
        ],
    )
