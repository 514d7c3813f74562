"""
Per-session subscription access control.

SubscriptionAccessControl wires one state holder, usage tracker, evaluator
and event notifier together for a single authenticated session. The
permission resolver is immutable and may be shared by every session.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Iterable, Optional, Union

from .audit import log_access_denied
from .config import AccessControlSettings
from .errors import AccessDenied
from .evaluator import DEFAULT_RESOURCE_RULES, Clock, ResourceRule, RestrictionEvaluator, utcnow
from .events import EventNotifier, Handler, SubscriptionEvent
from .health import health_report
from .models import AccessDecision, Action, HealthReport, Subscription, SubscriptionState
from .routing import PermissionResolver
from .state import SubscriptionStateHolder
from .usage import DEFAULT_RESOURCES, UsageTracker

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def _default_resolver(depth: int) -> PermissionResolver:
    return PermissionResolver.from_json(depth=depth)


def default_resolver(settings: Optional[AccessControlSettings] = None) -> PermissionResolver:
    """Resolver for the bundled permission table, built once per path depth."""
    return _default_resolver((settings or AccessControlSettings()).path_depth)


# Server push message types re-published as local events
PUSH_EVENTS = {
    "TRIAL_EXPIRING": SubscriptionEvent.TRIAL_EXPIRING_SOON,
    "TRIAL_EXPIRED": SubscriptionEvent.TRIAL_EXPIRED,
    "USAGE_LIMIT_WARNING": SubscriptionEvent.USAGE_LIMIT_WARNING,
    "SUBSCRIPTION_EXPIRED": SubscriptionEvent.SUBSCRIPTION_EXPIRED,
}


class SubscriptionAccessControl:
    """Subscription gate for one session (role + subscription)."""

    def __init__(
        self,
        *,
        role: Optional[str] = None,
        tenant_id: Optional[str] = None,
        resolver: Optional[PermissionResolver] = None,
        settings: Optional[AccessControlSettings] = None,
        notifier: Optional[EventNotifier] = None,
        resources: Iterable[str] = DEFAULT_RESOURCES,
        resource_rules: Iterable[ResourceRule] = DEFAULT_RESOURCE_RULES,
        clock: Clock = utcnow,
    ) -> None:
        self.role = role
        self.tenant_id = tenant_id
        self.settings = settings or AccessControlSettings()
        self.notifier = notifier or EventNotifier()
        self._clock = clock
        self.holder = SubscriptionStateHolder(self.notifier)
        self.tracker = UsageTracker(self.holder.get, resources)
        self.evaluator = RestrictionEvaluator(
            snapshot=self.holder.get,
            tracker=self.tracker,
            resolver=resolver or default_resolver(self.settings),
            notifier=self.notifier,
            settings=self.settings,
            resource_rules=resource_rules,
            clock=clock,
        )
        self.holder.status_check = self.evaluator.check_status

    # state lifecycle

    def initialize(self, payload: Any) -> Optional[Subscription]:
        return self.holder.initialize(payload)

    def update(self, payload: Any) -> Optional[Subscription]:
        return self.holder.update(payload)

    def clear(self) -> None:
        self.holder.clear()

    def get(self) -> Optional[Subscription]:
        return self.holder.get()

    def state(self) -> SubscriptionState:
        return self.evaluator.state()

    # decisions

    def evaluate(self, action: Union[Action, str], verb: str = "GET", payload: Any = None) -> AccessDecision:
        if not isinstance(action, Action):
            action = Action(path=action, verb=verb, payload=payload)
        return self.evaluator.evaluate(action, role=self.role)

    def enforce(self, action: Union[Action, str], verb: str = "GET", payload: Any = None) -> AccessDecision:
        """Evaluate and raise AccessDenied on deny; observers are notified first."""
        if not isinstance(action, Action):
            action = Action(path=action, verb=verb, payload=payload)
        decision = self.evaluator.evaluate(action, role=self.role)
        if decision.allowed:
            return decision

        log_access_denied(action, decision, tenant_id=self.tenant_id, role=self.role)
        self.notifier.publish(
            SubscriptionEvent.ACCESS_DENIED,
            {"path": action.path, "verb": action.verb, "reason": decision.reason, "error_code": decision.error_code},
        )
        raise AccessDenied(decision, path=action.path, verb=action.verb)

    def can_access_module(self, module: str, submodule: Optional[str] = None, permission: Optional[str] = None) -> bool:
        return self.evaluator.can_access_module(module, submodule, permission, role=self.role)

    def can_access_feature(self, feature: str) -> bool:
        return self.evaluator.can_access_feature(feature, role=self.role)

    def remaining(self, resource: str) -> int:
        return self.tracker.remaining(resource)

    def can_add(self, resource: str, delta: int = 1) -> bool:
        return self.tracker.can_add(resource, delta)

    def health_report(self) -> HealthReport:
        return health_report(self.holder.get(), self._clock(), trial_warning_days=self.settings.trial_warning_days)

    # server push

    def handle_push_message(self, message: Any) -> bool:
        """
        Apply one server push message ({"type": ..., "payload": ...}).

        SUBSCRIPTION_UPDATED replaces the snapshot (malformed payloads mean no
        subscription) and publishes subscriptionUpdated. Notification types are
        re-published as their local events. Returns False for messages that
        were ignored.
        """
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            logger.warning("Ignoring malformed subscription push message", extra={"tenant_id": self.tenant_id})
            return False

        kind = message["type"].strip().upper()
        payload = message.get("payload")
        if kind == "SUBSCRIPTION_UPDATED":
            subscription = self.update(payload)
            self.notifier.publish(SubscriptionEvent.SUBSCRIPTION_UPDATED, {"subscription": subscription})
            return True

        event = PUSH_EVENTS.get(kind)
        if event is None:
            logger.info("Ignoring unknown subscription push message", extra={"tenant_id": self.tenant_id, "type": kind})
            return False
        self.notifier.publish(event, payload)
        return True

    # observation

    def subscribe(self, event: Union[str, SubscriptionEvent], handler: Handler):
        return self.notifier.subscribe(event, handler)
