"""Plan catalogue and static plan-limit provider."""

import uuid
from dataclasses import dataclass

from backend.app.errors import NotFoundError
from backend.app.models.usage import UNLIMITED, PlanLimits, PlanTier


@dataclass(frozen=True)
class PlanDefinition:
    """Billing plan as shown on the pricing page."""

    name: str
    price_usd: int
    limits: PlanLimits


PLANS: dict[PlanTier, PlanDefinition] = {
    PlanTier.free: PlanDefinition(
        name="Free",
        price_usd=0,
        limits=PlanLimits(query_limit=100, documents_limit=10, storage_limit_mb=100),
    ),
    PlanTier.pro: PlanDefinition(
        name="Pro",
        price_usd=29,
        limits=PlanLimits(query_limit=5000, documents_limit=500, storage_limit_mb=10000),
    ),
    PlanTier.enterprise: PlanDefinition(
        name="Enterprise",
        price_usd=99,
        limits=PlanLimits(
            query_limit=UNLIMITED, documents_limit=UNLIMITED, storage_limit_mb=UNLIMITED
        ),
    ),
}


def limits_for(tier: PlanTier | str) -> PlanLimits:
    """Default limits for a plan tier."""
    return PLANS[PlanTier(tier)].limits


class StaticPlanLimits:
    """In-memory PlanLimitsProvider keyed by tenant."""

    def __init__(self, limits: dict[uuid.UUID, PlanLimits] | None = None) -> None:
        self._limits = dict(limits or {})

    def set(self, tenant_id: uuid.UUID, limits: PlanLimits) -> None:
        self._limits[tenant_id] = limits

    async def get_limits(self, tenant_id: uuid.UUID) -> PlanLimits:
        try:
            return self._limits[tenant_id]
        except KeyError:
            raise NotFoundError(f"Team {tenant_id} not found") from None
