"""
Audit logging for subscription gate denials.

Denials are emitted as structured log records. Repeated denials for the same
tenant inside one minute raise a support alert.
"""

import logging
import time
from collections import defaultdict
from threading import Lock
from typing import DefaultDict, List, Optional

from .models import AccessDecision, Action

logger = logging.getLogger(__name__)

DENY_THRESHOLD_PER_MIN = 10
_WINDOW_SECONDS = 60

_deny_counts: DefaultDict[str, List[float]] = defaultdict(list)
_deny_lock = Lock()


def log_access_denied(
    action: Action,
    decision: AccessDecision,
    *,
    tenant_id: Optional[str] = None,
    role: Optional[str] = None,
) -> None:
    """Log a subscription denial. Never raises."""
    try:
        logger.warning(
            "Subscription access denied",
            extra={
                "tenant_id": tenant_id,
                "role": role,
                "action": "subscription.access_denied",
                "path": action.path,
                "verb": action.verb,
                "reason": decision.reason,
                "error_code": decision.error_code,
            },
        )
        if tenant_id:
            record_deny_and_alert(tenant_id, decision.error_code or "ACCESS_DENIED")
    except Exception as e:
        logger.error(
            "Failed to log subscription denial",
            extra={"error": str(e), "tenant_id": tenant_id, "path": action.path},
        )


def _record_deny(tenant_id: str, now: float) -> int:
    with _deny_lock:
        cutoff = now - _WINDOW_SECONDS
        recent = [t for t in _deny_counts.pop(tenant_id, ()) if t > cutoff]
        # Tenants with no denial inside the window are dropped
        for stale in [k for k, stamps in _deny_counts.items() if not stamps or stamps[-1] <= cutoff]:
            del _deny_counts[stale]
        recent.append(now)
        _deny_counts[tenant_id] = recent
        return len(recent)


def record_deny_and_alert(tenant_id: str, error_code: str, *, now: Optional[float] = None) -> int:
    """Record a denial; alert once the per-minute count reaches the threshold."""
    count = _record_deny(tenant_id, time.time() if now is None else now)
    if count >= DENY_THRESHOLD_PER_MIN:
        emit_deny_alert(tenant_id, error_code, count)
    return count


def emit_deny_alert(tenant_id: str, error_code: str, count: int) -> None:
    logger.warning(
        "Repeated subscription denials",
        extra={"tenant_id": tenant_id, "error_code": error_code, "count_per_min": count},
    )


def reset_deny_counts() -> None:
    with _deny_lock:
        _deny_counts.clear()
