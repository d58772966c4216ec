"""Models package - re-exports for convenience."""

from backend.app.models.documents import (
    AnswerOutcome,
    ChunkMatch,
    DocumentRecord,
    DocumentStatus,
    Source,
)
from backend.app.models.usage import (
    UNLIMITED,
    LimitCheck,
    LimitStatus,
    PlanLimits,
    PlanTier,
    UsageEventType,
)

__all__ = [
    # Documents
    "DocumentStatus",
    "DocumentRecord",
    "ChunkMatch",
    "Source",
    "AnswerOutcome",
    # Usage
    "UNLIMITED",
    "UsageEventType",
    "PlanTier",
    "PlanLimits",
    "LimitStatus",
    "LimitCheck",
]
