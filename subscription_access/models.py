from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Literal, Mapping, Optional, Tuple

PermissionKind = Literal["create", "read", "update", "delete"]
Severity = Literal["warning", "critical"]

PERMISSION_KINDS: FrozenSet[str] = frozenset({"create", "read", "update", "delete"})
BEDS = "beds"
BRANCHES = "branches"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SubscriptionState(str, Enum):
    """Evaluation state derived from a snapshot and the current time."""

    NO_SUBSCRIPTION = "no_subscription"
    TRIAL_ACTIVE = "trial_active"
    TRIAL_EXPIRED = "trial_expired"
    ACTIVE = "active"
    EXPIRED = "expired"
    OTHER_INACTIVE = "other_inactive"


def days_until(moment: datetime, now: datetime) -> int:
    """Whole days until `moment`, rounded up; zero or negative once passed."""
    return math.ceil((moment - now) / timedelta(days=1))


@dataclass(frozen=True)
class ModuleGrant:
    """A module enabled by the plan.

    permissions=None grants every submodule and permission kind; otherwise
    only the listed (submodule -> kinds) pairs are granted.
    """

    name: str
    enabled: bool = True
    permissions: Optional[Mapping[str, FrozenSet[str]]] = None

    def __post_init__(self) -> None:
        name = self.name.strip()
        if not name:
            raise ValueError("module name is required")
        object.__setattr__(self, "name", name)
        if self.permissions is not None:
            object.__setattr__(
                self,
                "permissions",
                MappingProxyType({k: frozenset(v) for k, v in self.permissions.items()}),
            )

    def allows(self, submodule: Optional[str] = None, permission: Optional[str] = None) -> bool:
        if not self.enabled:
            return False
        if self.permissions is None or submodule is None or permission is None:
            return True
        return permission in self.permissions.get(submodule, frozenset())


@dataclass(frozen=True)
class Restrictions:
    """Plan restrictions: countable limits plus enabled modules and features."""

    limits: Mapping[str, int] = field(default_factory=dict)
    modules: Mapping[str, ModuleGrant] = field(default_factory=dict)
    features: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "limits", MappingProxyType(dict(self.limits)))
        object.__setattr__(self, "modules", MappingProxyType(dict(self.modules)))
        object.__setattr__(self, "features", frozenset(self.features))

    @property
    def max_beds(self) -> Optional[int]:
        return self.limits.get(BEDS)

    @property
    def max_branches(self) -> Optional[int]:
        return self.limits.get(BRANCHES)

    def allows(self, module: str, submodule: Optional[str] = None, permission: Optional[str] = None) -> bool:
        """True if the module grants (submodule, permission), or the module is a flagged feature."""
        grant = self.modules.get(module)
        if grant is not None and grant.allows(submodule, permission):
            return True
        return module in self.features

    def has_feature(self, feature: str) -> bool:
        return feature in self.features

    def snapshot(self) -> Dict[str, Any]:
        return {
            "limits": dict(self.limits),
            "modules": sorted(name for name, grant in self.modules.items() if grant.enabled),
            "features": sorted(self.features),
        }


@dataclass(frozen=True)
class Usage:
    counts: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "counts", MappingProxyType(dict(self.counts)))

    @property
    def beds_used(self) -> int:
        return self.counts.get(BEDS, 0)

    @property
    def branches_used(self) -> int:
        return self.counts.get(BRANCHES, 0)


@dataclass(frozen=True)
class Subscription:
    """Immutable snapshot of a tenant's subscription entitlement."""

    status: SubscriptionStatus
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    is_trial_active: bool = False
    trial_end_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    restrictions: Restrictions = field(default_factory=Restrictions)
    usage: Usage = field(default_factory=Usage)

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", SubscriptionStatus(self.status))
        for name in ("trial_end_date", "end_date"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                raise ValueError(f"{name} must be timezone-aware")
        if self.status is SubscriptionStatus.TRIAL and self.trial_end_date is None:
            raise ValueError("trial subscriptions require trial_end_date")

    @property
    def in_trial(self) -> bool:
        return self.is_trial_active or self.status is SubscriptionStatus.TRIAL

    def state(self, now: Optional[datetime] = None) -> SubscriptionState:
        compare_at = now or datetime.now(timezone.utc)
        if self.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL):
            if self.status is SubscriptionStatus.EXPIRED:
                return SubscriptionState.EXPIRED
            return SubscriptionState.OTHER_INACTIVE
        if self.in_trial and self.trial_end_date is not None:
            if self.trial_end_date <= compare_at:
                return SubscriptionState.TRIAL_EXPIRED
        if self.end_date is not None and self.end_date <= compare_at:
            return SubscriptionState.EXPIRED
        if self.in_trial:
            return SubscriptionState.TRIAL_ACTIVE
        return SubscriptionState.ACTIVE


def classify(subscription: Optional[Subscription], now: Optional[datetime] = None) -> SubscriptionState:
    if subscription is None:
        return SubscriptionState.NO_SUBSCRIPTION
    return subscription.state(now)


@dataclass(frozen=True)
class PermissionRequirement:
    module: str
    submodule: str
    permission: str

    def __post_init__(self) -> None:
        if self.permission not in PERMISSION_KINDS:
            raise ValueError(f"permission must be one of: {', '.join(sorted(PERMISSION_KINDS))}")


@dataclass(frozen=True)
class Action:
    """An outbound request descriptor intercepted before dispatch."""

    path: str
    verb: str = "GET"
    payload: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "verb", self.verb.strip().upper() or "GET")


@dataclass(frozen=True)
class AccessDecision:
    """Result of one evaluation. reason is the human-readable deny reason."""

    allowed: bool
    reason: Optional[str] = None
    error_code: Optional[str] = None
    remaining: Optional[Mapping[str, int]] = None

    def __post_init__(self) -> None:
        if self.remaining is not None:
            object.__setattr__(self, "remaining", MappingProxyType(dict(self.remaining)))

    @classmethod
    def allow(cls, remaining: Optional[Mapping[str, int]] = None) -> "AccessDecision":
        return cls(allowed=True, remaining=remaining)

    @classmethod
    def deny(
        cls, reason: str, error_code: str, remaining: Optional[Mapping[str, int]] = None
    ) -> "AccessDecision":
        return cls(allowed=False, reason=reason, error_code=error_code, remaining=remaining)


@dataclass(frozen=True)
class HealthIssue:
    severity: Severity
    message: str


@dataclass(frozen=True)
class HealthReport:
    issues: Tuple[HealthIssue, ...]
    usage_percentage: Mapping[str, float]
    summary: Mapping[str, Any]

    @property
    def is_healthy(self) -> bool:
        return not self.issues

    def has_critical(self) -> bool:
        return any(issue.severity == "critical" for issue in self.issues)
