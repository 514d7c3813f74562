"""
Remaining quota for countable resources (beds, branches, ...).

Missing limits fail closed: no configured maximum means nothing remains.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional, Tuple

from .models import BEDS, BRANCHES, Subscription

DEFAULT_RESOURCES: Tuple[str, ...] = (BEDS, BRANCHES)


class UsageTracker:
    """Reads the current snapshot through `snapshot` on every call."""

    def __init__(
        self,
        snapshot: Callable[[], Optional[Subscription]],
        resources: Iterable[str] = DEFAULT_RESOURCES,
    ) -> None:
        self._snapshot = snapshot
        self._resources = tuple(dict.fromkeys(str(r).strip() for r in resources if str(r).strip()))
        if not self._resources:
            raise ValueError("at least one countable resource is required")

    @property
    def resources(self) -> Tuple[str, ...]:
        return self._resources

    def _require_resource(self, resource: str) -> str:
        if resource not in self._resources:
            raise ValueError(f"unknown countable resource: {resource!r}")
        return resource

    def _limit_and_used(self, resource: str) -> Tuple[int, int]:
        self._require_resource(resource)
        subscription = self._snapshot()
        if subscription is None:
            return 0, 0
        limit = int(subscription.restrictions.limits.get(resource) or 0)
        used = int(subscription.usage.counts.get(resource) or 0)
        return max(0, limit), max(0, used)

    def limit(self, resource: str) -> int:
        return self._limit_and_used(resource)[0]

    def used(self, resource: str) -> int:
        return self._limit_and_used(resource)[1]

    def remaining(self, resource: str) -> int:
        limit, used = self._limit_and_used(resource)
        return max(0, limit - used)

    def can_add(self, resource: str, delta: int = 1) -> bool:
        if delta < 0:
            raise ValueError("delta must not be negative")
        return self.remaining(resource) >= delta

    def remaining_all(self) -> Dict[str, int]:
        return {resource: self.remaining(resource) for resource in self._resources}

    def usage_percentage(self, resource: str) -> float:
        """Percent of the limit in use; 0 when no limit is configured."""
        limit, used = self._limit_and_used(resource)
        if limit <= 0:
            return 0.0
        return (used / limit) * 100
