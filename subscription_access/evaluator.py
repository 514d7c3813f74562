"""
Restriction evaluation: the allow/deny decision for one outbound action.

Rules run in a fixed order and the first applicable rule decides:

1. privileged roles bypass every gate
2. authentication and trial activation endpoints are always allowed
3. without a subscription only bootstrap endpoints are allowed
4. status must be active or trial
5. an active trial must not have ended
6. the subscription term must not have ended
7. the resolved module permission must be granted by the plan
8. countable resource additions must fit the remaining quota
9. otherwise allow

The evaluator only reads state. check_status() is run by the state holder
after every change and publishes the status events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .config import AccessControlSettings
from .events import EventNotifier, SubscriptionEvent
from .models import (
    BEDS,
    BRANCHES,
    AccessDecision,
    Action,
    Subscription,
    SubscriptionState,
    SubscriptionStatus,
    classify,
    days_until,
)
from .routing import PermissionResolver, contains_segments, split_path
from .usage import UsageTracker

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

ALWAYS_ALLOWED_ENDPOINTS: Tuple[Tuple[str, ...], ...] = (("auth",), ("activate-trial",))
BOOTSTRAP_ENDPOINTS: Tuple[Tuple[str, ...], ...] = (
    ("auth", "login"),
    ("auth", "logout"),
    ("auth", "refresh"),
    ("users", "my-subscription"),
)

NO_SUBSCRIPTION_CODE = "NO_ACTIVE_SUBSCRIPTION"
STATUS_INACTIVE_CODE = "SUBSCRIPTION_INACTIVE"
TRIAL_EXPIRED_CODE = "TRIAL_EXPIRED"
SUBSCRIPTION_EXPIRED_CODE = "SUBSCRIPTION_EXPIRED"
PERMISSION_DENIED_CODE = "INSUFFICIENT_PERMISSIONS"
LIMIT_EXCEEDED_CODE = "RESOURCE_LIMIT_EXCEEDED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResourceRule:
    """An action that adds `delta` units of a countable resource.

    delta_key names an optional payload field that overrides the default delta.
    """

    verb: str
    path: str
    resource: str
    delta: int = 1
    delta_key: Optional[str] = None

    def matches(self, action: Action) -> bool:
        return action.verb == self.verb.upper() and contains_segments(split_path(action.path), split_path(self.path))

    def delta_for(self, action: Action) -> int:
        if self.delta_key and action.payload and self.delta_key in action.payload:
            try:
                return max(0, int(action.payload[self.delta_key]))
            except (TypeError, ValueError):
                logger.warning(
                    "Ignoring non-integer resource delta",
                    extra={"resource": self.resource, "delta_key": self.delta_key},
                )
        return self.delta


DEFAULT_RESOURCE_RULES: Tuple[ResourceRule, ...] = (
    ResourceRule(verb="POST", path="/api/residents", resource=BEDS, delta_key="additionalBeds"),
    ResourceRule(verb="POST", path="/api/branches", resource=BRANCHES, delta_key="additionalBranches"),
)


def _matches_any(segments: list, endpoints: Iterable[Tuple[str, ...]]) -> bool:
    return any(contains_segments(segments, endpoint) for endpoint in endpoints)


class RestrictionEvaluator:
    """Central allow/deny decision over the current subscription snapshot."""

    def __init__(
        self,
        *,
        snapshot: Callable[[], Optional[Subscription]],
        tracker: UsageTracker,
        resolver: PermissionResolver,
        notifier: Optional[EventNotifier] = None,
        settings: Optional[AccessControlSettings] = None,
        resource_rules: Iterable[ResourceRule] = DEFAULT_RESOURCE_RULES,
        clock: Clock = utcnow,
    ) -> None:
        self._snapshot = snapshot
        self._tracker = tracker
        self._resolver = resolver
        self._notifier = notifier or EventNotifier()
        self._settings = settings or AccessControlSettings()
        self._resource_rules = tuple(resource_rules)
        self._clock = clock
        for rule in self._resource_rules:
            if rule.resource not in tracker.resources:
                raise ValueError(f"resource rule references unknown resource: {rule.resource!r}")

    def state(self) -> SubscriptionState:
        return classify(self._snapshot(), self._clock())

    def evaluate(self, action: Action, *, role: Optional[str] = None) -> AccessDecision:
        if self._settings.is_bypass_role(role):
            return AccessDecision.allow()

        segments = split_path(action.path)
        if _matches_any(segments, ALWAYS_ALLOWED_ENDPOINTS):
            return AccessDecision.allow()

        subscription = self._snapshot()
        if subscription is None:
            if _matches_any(segments, BOOTSTRAP_ENDPOINTS):
                return AccessDecision.allow()
            return AccessDecision.deny("no active subscription", NO_SUBSCRIPTION_CODE)

        denial = self._status_denial(subscription)
        if denial is not None:
            return denial

        requirement = self._resolver.resolve(action.path, action.verb)
        if requirement is not None:
            if not subscription.restrictions.allows(requirement.module, requirement.submodule, requirement.permission):
                return AccessDecision.deny(f"insufficient permissions for {requirement.module}", PERMISSION_DENIED_CODE)

        remaining = self._tracker.remaining_all()
        for rule in self._resource_rules:
            if not rule.matches(action):
                continue
            delta = rule.delta_for(action)
            if remaining.get(rule.resource, 0) < delta:
                return AccessDecision.deny(
                    f"would exceed {rule.resource} limit; remaining: {remaining.get(rule.resource, 0)}",
                    LIMIT_EXCEEDED_CODE,
                    remaining=remaining,
                )

        return AccessDecision.allow(remaining=remaining)

    def can_access_module(
        self,
        module: str,
        submodule: Optional[str] = None,
        permission: Optional[str] = None,
        *,
        role: Optional[str] = None,
    ) -> bool:
        """Module grant check behind the status, trial and term gates."""
        if self._settings.is_bypass_role(role):
            return True
        subscription = self._snapshot()
        if subscription is None or self._status_denial(subscription) is not None:
            return False
        return subscription.restrictions.allows(module, submodule, permission)

    def can_access_feature(self, feature: str, *, role: Optional[str] = None) -> bool:
        if self._settings.is_bypass_role(role):
            return True
        subscription = self._snapshot()
        if subscription is None or self._status_denial(subscription) is not None:
            return False
        return subscription.restrictions.has_feature(feature)

    def _status_denial(self, subscription: Subscription) -> Optional[AccessDecision]:
        if subscription.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL):
            return AccessDecision.deny(f"subscription status: {subscription.status.value}", STATUS_INACTIVE_CODE)

        now = self._clock()
        if subscription.in_trial and subscription.trial_end_date is not None:
            if subscription.trial_end_date <= now:
                return AccessDecision.deny("trial expired", TRIAL_EXPIRED_CODE)

        if subscription.end_date is not None and subscription.end_date <= now:
            return AccessDecision.deny("subscription expired", SUBSCRIPTION_EXPIRED_CODE)
        return None

    def check_status(self, subscription: Optional[Subscription]) -> None:
        """Publish status events for a freshly applied snapshot (once per call)."""
        if subscription is None:
            self._notifier.publish(SubscriptionEvent.NO_SUBSCRIPTION, {"state": SubscriptionState.NO_SUBSCRIPTION.value})
            return

        now = self._clock()
        settings = self._settings

        if subscription.in_trial and subscription.trial_end_date is not None:
            days = days_until(subscription.trial_end_date, now)
            if days <= 0:
                self._notifier.publish(
                    SubscriptionEvent.TRIAL_EXPIRED, {"subscription": subscription, "days_remaining": 0}
                )
            elif days <= settings.trial_warning_days:
                self._notifier.publish(
                    SubscriptionEvent.TRIAL_EXPIRING_SOON, {"subscription": subscription, "days_remaining": days}
                )

        if subscription.status is SubscriptionStatus.ACTIVE and subscription.end_date is not None:
            days = days_until(subscription.end_date, now)
            if days <= 0:
                self._notifier.publish(
                    SubscriptionEvent.SUBSCRIPTION_EXPIRED, {"subscription": subscription, "days_remaining": 0}
                )
            elif days <= settings.expiry_warning_days:
                self._notifier.publish(
                    SubscriptionEvent.SUBSCRIPTION_EXPIRING_SOON, {"subscription": subscription, "days_remaining": days}
                )

        for resource in self._tracker.resources:
            limit = self._tracker.limit(resource)
            used = self._tracker.used(resource)
            if limit and used >= limit * settings.usage_warning_ratio:
                self._notifier.publish(
                    SubscriptionEvent.USAGE_LIMIT_WARNING,
                    {
                        "resource": resource,
                        "current": used,
                        "limit": limit,
                        "percentage": (used / limit) * 100,
                    },
                )

        self._notifier.publish(SubscriptionEvent.RESTRICTIONS_CHECKED, self.restriction_snapshot(subscription))

    def restriction_snapshot(self, subscription: Subscription) -> Dict[str, Any]:
        snapshot = subscription.restrictions.snapshot()
        snapshot["state"] = subscription.state(self._clock()).value
        snapshot["remaining"] = self._tracker.remaining_all()
        return snapshot
