"""
Runtime configuration for the subscription gate.

Values come from environment variables; every field has a default so the
gate works out of the box:

- SUBSCRIPTION_BYPASS_ROLES:                 comma separated (default: "superadmin,support,sales,sub_sales")
- SUBSCRIPTION_TRIAL_WARNING_DAYS:           default "3"
- SUBSCRIPTION_EXPIRY_WARNING_DAYS:          default "7"
- SUBSCRIPTION_USAGE_WARNING_RATIO:          default "0.9"
- SUBSCRIPTION_PATH_DEPTH:                   default "3", at least the deepest pattern in permissions.json
- SUBSCRIPTION_REFRESH_INTERVAL_SECONDS:     default "300"
- SUBSCRIPTION_MIN_REFRESH_INTERVAL_SECONDS: default "60"
- SUBSCRIPTION_SNAPSHOT_TTL_SECONDS:         default "300"
- SUBSCRIPTION_API_BASE_URL:                 default "http://localhost:5000/api"
- REDIS_URL:                                 optional, enables the shared snapshot cache
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from .routing import DEFAULT_PATH_DEPTH, bundled_table_depth

logger = logging.getLogger(__name__)

DEFAULT_BYPASS_ROLES: FrozenSet[str] = frozenset({"superadmin", "support", "sales", "sub_sales"})
DEFAULT_API_BASE_URL = "http://localhost:5000/api"


def _parse_roles(raw: Optional[str]) -> FrozenSet[str]:
    if raw is None:
        return DEFAULT_BYPASS_ROLES
    return frozenset(r.strip().lower() for r in raw.split(",") if r.strip())


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer in %s, using default", name, extra={"value": raw, "default": default})
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number in %s, using default", name, extra={"value": raw, "default": default})
        return default


def _env_path_depth() -> int:
    """SUBSCRIPTION_PATH_DEPTH, never shallower than the bundled permission table."""
    depth = _env_int("SUBSCRIPTION_PATH_DEPTH", DEFAULT_PATH_DEPTH)
    required = bundled_table_depth()
    if depth < required:
        logger.warning(
            "SUBSCRIPTION_PATH_DEPTH is shallower than the permission table, using default",
            extra={"value": depth, "required": required, "default": DEFAULT_PATH_DEPTH},
        )
        return max(DEFAULT_PATH_DEPTH, required)
    return depth


@dataclass(frozen=True)
class AccessControlSettings:
    """Tunables for evaluation, status warnings, refresh and caching."""

    bypass_roles: FrozenSet[str] = field(default_factory=lambda: DEFAULT_BYPASS_ROLES)
    trial_warning_days: int = 3
    expiry_warning_days: int = 7
    usage_warning_ratio: float = 0.9
    path_depth: int = DEFAULT_PATH_DEPTH
    refresh_interval_seconds: int = 300
    min_refresh_interval_seconds: int = 60
    snapshot_ttl_seconds: int = 300
    api_base_url: str = DEFAULT_API_BASE_URL
    redis_url: Optional[str] = None

    def __post_init__(self) -> None:
        if self.path_depth < 1:
            raise ValueError("path_depth must be at least 1")
        if not 0 < self.usage_warning_ratio <= 1:
            raise ValueError("usage_warning_ratio must be in (0, 1]")
        object.__setattr__(self, "bypass_roles", frozenset(r.lower() for r in self.bypass_roles))
        object.__setattr__(self, "api_base_url", self.api_base_url.rstrip("/"))

    def is_bypass_role(self, role: Optional[str]) -> bool:
        return bool(role) and role.strip().lower() in self.bypass_roles

    @classmethod
    def from_env(cls) -> "AccessControlSettings":
        """Load settings from environment variables."""
        return cls(
            bypass_roles=_parse_roles(os.getenv("SUBSCRIPTION_BYPASS_ROLES")),
            trial_warning_days=_env_int("SUBSCRIPTION_TRIAL_WARNING_DAYS", 3),
            expiry_warning_days=_env_int("SUBSCRIPTION_EXPIRY_WARNING_DAYS", 7),
            usage_warning_ratio=_env_float("SUBSCRIPTION_USAGE_WARNING_RATIO", 0.9),
            path_depth=_env_path_depth(),
            refresh_interval_seconds=_env_int("SUBSCRIPTION_REFRESH_INTERVAL_SECONDS", 300),
            min_refresh_interval_seconds=_env_int("SUBSCRIPTION_MIN_REFRESH_INTERVAL_SECONDS", 60),
            snapshot_ttl_seconds=_env_int("SUBSCRIPTION_SNAPSHOT_TTL_SECONDS", 300),
            api_base_url=os.getenv("SUBSCRIPTION_API_BASE_URL", DEFAULT_API_BASE_URL),
            redis_url=os.getenv("REDIS_URL") or None,
        )
