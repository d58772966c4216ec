"""Usage metering and plan limit models."""

from enum import Enum

from pydantic import BaseModel

# Sentinel for "no limit" in plan configuration
UNLIMITED = -1


class UsageEventType(str, Enum):
    """Metered event types."""

    query = "query"
    document_upload = "document_upload"
    embedding_generation = "embedding_generation"


class PlanTier(str, Enum):
    """Subscription plan tier."""

    free = "free"
    pro = "pro"
    enterprise = "enterprise"


class PlanLimits(BaseModel):
    """Per-tenant limits; each is a positive int or UNLIMITED."""

    query_limit: int
    documents_limit: int
    storage_limit_mb: int


class LimitStatus(str, Enum):
    """Budget position relative to a plan limit."""

    within = "within"
    near = "near"
    over = "over"


class LimitCheck(BaseModel):
    """Result of an advisory plan limit check."""

    event_type: str
    status: LimitStatus
    used: int
    limit: int

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> int | None:
        """Remaining allowance, None when unlimited."""
        if self.unlimited:
            return None
        return max(0, self.limit - self.used)
