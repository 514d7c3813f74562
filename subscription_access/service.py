"""
Server-side, multi-tenant subscription access.

Each request gets its own SubscriptionAccessControl built from the tenant's
snapshot. Snapshots are served from the cache while fresh, re-resolved from
the authoritative backend when stale, and kept as last known good when the
backend fails. A tenant with no snapshot at all is treated as unsubscribed.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from .access import SubscriptionAccessControl, default_resolver
from .cache import CachedSnapshot, SubscriptionSnapshotCache
from .config import AccessControlSettings
from .errors import SubscriptionRefreshError
from .evaluator import Clock, utcnow
from .events import EventNotifier, SubscriptionEvent
from .routing import PermissionResolver

logger = logging.getLogger(__name__)

SubscriptionResolver = Callable[[str], Optional[Dict[str, Any]]]


class SubscriptionAccessService:
    """Builds per-tenant access controls from cached or freshly resolved snapshots."""

    def __init__(
        self,
        *,
        subscription_resolver: SubscriptionResolver,
        cache: Optional[SubscriptionSnapshotCache] = None,
        resolver: Optional[PermissionResolver] = None,
        settings: Optional[AccessControlSettings] = None,
        notifier: Optional[EventNotifier] = None,
        clock: Clock = utcnow,
        timer: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or AccessControlSettings()
        self.cache = cache or SubscriptionSnapshotCache(redis_url=self.settings.redis_url)
        self.resolver = resolver or default_resolver(self.settings)
        self.notifier = notifier or EventNotifier()
        self._subscription_resolver = subscription_resolver
        self._clock = clock
        self._now = timer

    def snapshot_for(self, tenant_id: str, *, force: bool = False) -> Optional[Dict[str, Any]]:
        """Subscription payload for tenant: fresh cache, else backend, else last known good."""
        if not str(tenant_id).strip():
            raise ValueError("tenant_id is required")

        now = self._now()
        cached = self.cache.get(tenant_id, now=now)
        if cached is not None and not force and cached.is_fresh(self.settings.snapshot_ttl_seconds, now):
            return cached.payload

        try:
            return self.refresh(tenant_id).payload
        except SubscriptionRefreshError as exc:
            if cached is not None:
                logger.warning(
                    "Using last known subscription snapshot",
                    extra={"tenant_id": tenant_id, "age_seconds": cached.age(now), "error": exc.detail},
                )
                return cached.payload
            logger.warning(
                "No subscription snapshot available; tenant treated as unsubscribed",
                extra={"tenant_id": tenant_id, "error": exc.detail},
            )
            return None

    def refresh(self, tenant_id: str) -> CachedSnapshot:
        """Resolve the authoritative record and cache it. Raises SubscriptionRefreshError."""
        try:
            payload = self._subscription_resolver(tenant_id)
        except Exception as exc:
            error = SubscriptionRefreshError(f"subscription lookup failed: {exc}")
            logger.error(
                "Subscription lookup failed",
                extra={"tenant_id": tenant_id, "error": str(exc), "error_code": error.error_code},
            )
            self.notifier.publish(SubscriptionEvent.SUBSCRIPTION_CHECK_FAILED, {"tenant_id": tenant_id, "error": error})
            raise error from exc

        snapshot = self.cache.set(tenant_id, payload, cached_at=self._now())
        self.notifier.publish(SubscriptionEvent.SUBSCRIPTION_CHECKED, {"tenant_id": tenant_id, "subscription": payload})
        return snapshot

    def access_for(self, tenant_id: str, role: Optional[str] = None) -> SubscriptionAccessControl:
        """Fresh access control for one request; never shared across tenants."""
        access = SubscriptionAccessControl(
            role=role,
            tenant_id=tenant_id,
            resolver=self.resolver,
            settings=self.settings,
            clock=self._clock,
        )
        if self.settings.is_bypass_role(role):
            return access
        access.initialize(self.snapshot_for(tenant_id))
        return access

    def handle_subscription_webhook(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        """Immediate recompute when billing reports a subscription change."""
        return self.snapshot_for(tenant_id, force=True)
