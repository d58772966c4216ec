"""Usage metering: append-only event recording and advisory limit checks."""

import logging
import math
import uuid
from datetime import UTC, datetime
from typing import Any

from backend.app.db.repositories import (
    DocumentRepository,
    NewUsageEvent,
    PlanLimitsProvider,
    UsageEventStore,
)
from backend.app.models.usage import UNLIMITED, LimitCheck, LimitStatus, UsageEventType
from backend.app.utils.logging import log_structured
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
STORAGE = "storage"


def period_start(now: datetime) -> datetime:
    """Start of the current billing period (calendar month, UTC)."""
    now = now.astimezone(UTC) if now.tzinfo else now.replace(tzinfo=UTC)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def classify_usage(used: float, limit: float, near_ratio: float, *, inclusive: bool = True) -> LimitStatus:
    """Place usage relative to a limit.

    Args:
        used: Amount consumed (for storage: including the incoming upload)
        limit: Plan limit, or UNLIMITED
        near_ratio: Fraction above which usage counts as near the limit
        inclusive: When True, reaching the limit exactly counts as over
            (no room for another action); when False only exceeding it does

    Returns:
        LimitStatus
    """
    if limit == UNLIMITED:
        return LimitStatus.within
    if used > limit or (inclusive and used >= limit):
        return LimitStatus.over
    if limit > 0 and used / limit > near_ratio:
        return LimitStatus.near
    return LimitStatus.within


class UsageMeter:
    """Records usage events and evaluates plan limits.

    Recording is best-effort telemetry: failures are logged and counted,
    never raised. Limit checks are advisory; callers decide whether to
    block, warn, or allow.
    """

    def __init__(
        self,
        events: UsageEventStore,
        plan_limits: PlanLimitsProvider,
        documents: DocumentRepository,
        *,
        near_ratio: float = 0.8,
    ) -> None:
        self._events = events
        self._plan_limits = plan_limits
        self._documents = documents
        self._near_ratio = near_ratio

    async def record(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID | None,
        event_type: UsageEventType | str,
        count: int = 1,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append one usage event. Never raises."""
        event_name = event_type.value if isinstance(event_type, UsageEventType) else event_type
        event = NewUsageEvent(
            team_id=tenant_id,
            user_id=user_id,
            event_type=event_name,
            count=count,
            metadata=metadata or {},
        )
        try:
            await self._events.append(event)
        except Exception:
            # Metering must never fail the caller's action
            metrics.inc_metering_failure(event_name)
            logger.exception(
                "Failed to record usage event",
                extra={
                    "structured": {
                        "team_id": str(tenant_id),
                        "event_type": event_name,
                        "count": count,
                    }
                },
            )

    async def check_limit(
        self,
        tenant_id: uuid.UUID,
        event_type: UsageEventType | str,
        now: datetime | None = None,
    ) -> LimitCheck:
        """Compare current-period usage with the tenant's plan limit.

        Queries count usage events since the start of the month; documents
        count the tenant's live documents. Event types without a plan limit
        are always within budget.

        Raises:
            NotFoundError: If the tenant has no plan
            StoreError: If usage cannot be read
        """
        event_type = UsageEventType(event_type)
        limits = await self._plan_limits.get_limits(tenant_id)

        if event_type == UsageEventType.query:
            limit = limits.query_limit
            used = await self._events.sum_since(
                tenant_id, event_type.value, period_start(now or datetime.now(UTC))
            )
        elif event_type == UsageEventType.document_upload:
            limit = limits.documents_limit
            used = await self._documents.count(tenant_id)
        else:
            return LimitCheck(
                event_type=event_type.value, status=LimitStatus.within, used=0, limit=UNLIMITED
            )

        check = LimitCheck(
            event_type=event_type.value,
            status=classify_usage(used, limit, self._near_ratio),
            used=used,
            limit=limit,
        )
        if check.status != LimitStatus.within:
            log_structured(
                logger,
                logging.INFO,
                f"Team {tenant_id} is {check.status.value} its {event_type.value} limit",
                team_id=str(tenant_id),
                event_type=event_type.value,
                used=used,
                limit=limit,
            )
        return check

    async def check_storage(self, tenant_id: uuid.UUID, incoming_bytes: int = 0) -> LimitCheck:
        """Check storage (MB) including an upload that is about to be stored."""
        limits = await self._plan_limits.get_limits(tenant_id)
        used_bytes = await self._documents.total_size_bytes(tenant_id) + incoming_bytes
        limit_mb = limits.storage_limit_mb

        if limit_mb == UNLIMITED:
            status = LimitStatus.within
        else:
            status = classify_usage(
                used_bytes, limit_mb * BYTES_PER_MB, self._near_ratio, inclusive=False
            )

        return LimitCheck(
            event_type=STORAGE,
            status=status,
            used=math.ceil(used_bytes / BYTES_PER_MB),
            limit=limit_mb,
        )

    async def usage_summary(self, tenant_id: uuid.UUID, now: datetime | None = None) -> list[LimitCheck]:
        """Usage against every plan limit, for dashboards."""
        return [
            await self.check_limit(tenant_id, UsageEventType.query, now),
            await self.check_limit(tenant_id, UsageEventType.document_upload, now),
            await self.check_storage(tenant_id),
        ]
