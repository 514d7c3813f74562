from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from subscription_access.errors import SubscriptionRefreshError
from subscription_access.service import SubscriptionAccessService

logger = logging.getLogger(__name__)


@dataclass
class RefreshStats:
    started_at: str
    completed_at: Optional[str] = None
    refreshed: int = 0
    errors: int = 0


def run_subscription_refresh_cycle(service: SubscriptionAccessService, tenant_ids: Iterable[str]) -> RefreshStats:
    """Background snapshot refresh.

    Responsibilities:
    - re-resolve every known tenant so request paths hit a fresh cache
    - leave the last known snapshot in place when a tenant fails
    """

    stats = RefreshStats(started_at=datetime.now(timezone.utc).isoformat())

    for tenant_id in tenant_ids:
        try:
            service.refresh(tenant_id)
            stats.refreshed += 1
        except (SubscriptionRefreshError, ValueError) as e:
            stats.errors += 1
            logger.warning("Subscription refresh failed", extra={"tenant_id": tenant_id, "error": str(e)})

    stats.completed_at = datetime.now(timezone.utc).isoformat()
    logger.info(
        "Subscription refresh cycle complete",
        extra={"refreshed": stats.refreshed, "errors": stats.errors},
    )
    return stats


def run_forever(
    service: SubscriptionAccessService,
    tenant_ids_provider: Callable[[], Iterable[str]],
    interval_seconds: Optional[int] = None,
) -> None:
    interval = interval_seconds or service.settings.refresh_interval_seconds
    while True:
        run_subscription_refresh_cycle(service, tenant_ids_provider())
        time.sleep(interval)
