"""
Subscription access control for the PG management platform.

This module provides:
- SubscriptionAccessControl: per-session gate (state holder, usage tracker, evaluator, events)
- PermissionResolver: route -> (module, submodule, permission) lookup from permissions.json
- SubscriptionAccessService: multi-tenant gate backed by a snapshot cache
- SubscriptionRefresher: periodic refresh from /users/my-subscription
- install_subscription_gate: httpx request hook enforcement
- SubscriptionGateMiddleware: FastAPI middleware for inbound enforcement

Warnings: trial within 3 days, subscription end within 7 days, usage at 90% of a limit
(configurable via AccessControlSettings / SUBSCRIPTION_* env vars)
"""

from .access import SubscriptionAccessControl, default_resolver
from .cache import CachedSnapshot, SubscriptionSnapshotCache
from .config import AccessControlSettings
from .errors import (
    AccessDenied,
    HandlerFailure,
    MalformedSubscriptionPayload,
    SubscriptionAccessError,
    SubscriptionRefreshError,
)
from .evaluator import ResourceRule, RestrictionEvaluator
from .events import EventNotifier, SubscriptionEvent
from .health import health_report, subscription_summary
from .interceptor import install_subscription_gate
from .middleware import SubscriptionGateMiddleware
from .models import (
    AccessDecision,
    Action,
    HealthReport,
    PermissionRequirement,
    Subscription,
    SubscriptionState,
    SubscriptionStatus,
)
from .refresh import SubscriptionRefresher
from .routing import PermissionResolver
from .schemas import parse_subscription
from .service import SubscriptionAccessService
from .state import SubscriptionStateHolder
from .usage import UsageTracker

__all__ = [
    # Session gate
    "SubscriptionAccessControl",
    "default_resolver",
    "SubscriptionStateHolder",
    "UsageTracker",
    "RestrictionEvaluator",
    "ResourceRule",
    # Routing
    "PermissionResolver",
    # Events
    "EventNotifier",
    "SubscriptionEvent",
    # Models
    "AccessDecision",
    "Action",
    "HealthReport",
    "PermissionRequirement",
    "Subscription",
    "SubscriptionState",
    "SubscriptionStatus",
    "parse_subscription",
    "health_report",
    "subscription_summary",
    # Server side
    "AccessControlSettings",
    "CachedSnapshot",
    "SubscriptionSnapshotCache",
    "SubscriptionAccessService",
    "SubscriptionRefresher",
    "install_subscription_gate",
    "SubscriptionGateMiddleware",
    # Errors
    "SubscriptionAccessError",
    "AccessDenied",
    "HandlerFailure",
    "MalformedSubscriptionPayload",
    "SubscriptionRefreshError",
]
