"""
Subscription health: a read-only view of a snapshot at a point in time.

Recomputed on demand and never stored.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import BEDS, BRANCHES, HealthIssue, HealthReport, Subscription, SubscriptionStatus, days_until

APPROACHING_LIMIT_PERCENT = 90.0
TRIAL_WARNING_DAYS = 3

_LIMIT_MESSAGES = {
    BEDS: "Approaching bed limit",
    BRANCHES: "Approaching branch limit",
}


def _usage_percentage(subscription: Subscription, resource: str) -> float:
    limit = subscription.restrictions.limits.get(resource)
    if not limit:
        return 0.0
    return (subscription.usage.counts.get(resource, 0) / limit) * 100


def subscription_summary(subscription: Subscription, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Status, plan and remaining days for display and logging."""
    compare_at = now or datetime.now(timezone.utc)
    trial_days = 0
    if subscription.trial_end_date is not None:
        trial_days = max(0, days_until(subscription.trial_end_date, compare_at))
    term_days = 0
    if subscription.end_date is not None:
        term_days = max(0, days_until(subscription.end_date, compare_at))
    return {
        "status": subscription.status.value,
        "state": subscription.state(compare_at).value,
        "plan_id": subscription.plan_id,
        "plan_name": subscription.plan_name or "Free",
        "is_trial_active": subscription.in_trial,
        "trial_days_remaining": trial_days,
        "days_remaining": term_days,
        "limits": dict(subscription.restrictions.limits),
        "usage": dict(subscription.usage.counts),
    }


def health_report(
    subscription: Optional[Subscription],
    now: Optional[datetime] = None,
    *,
    trial_warning_days: int = TRIAL_WARNING_DAYS,
) -> HealthReport:
    if subscription is None:
        return HealthReport(
            issues=(HealthIssue("critical", "No active subscription"),),
            usage_percentage={BEDS: 0.0, BRANCHES: 0.0},
            summary={"status": None, "state": "no_subscription"},
        )

    summary = subscription_summary(subscription, now)
    usage = {resource: _usage_percentage(subscription, resource) for resource in (BEDS, BRANCHES)}
    issues: List[HealthIssue] = []

    if subscription.in_trial and subscription.trial_end_date is not None:
        if summary["trial_days_remaining"] == 0:
            issues.append(HealthIssue("critical", "Trial expired"))
        elif summary["trial_days_remaining"] <= trial_warning_days:
            issues.append(HealthIssue("warning", f"Trial expires in {summary['trial_days_remaining']} days"))

    if subscription.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL):
        issues.append(HealthIssue("critical", "Subscription not active"))

    for resource, percentage in usage.items():
        if percentage >= APPROACHING_LIMIT_PERCENT:
            issues.append(HealthIssue("warning", _LIMIT_MESSAGES[resource]))

    return HealthReport(issues=tuple(issues), usage_percentage=usage, summary=summary)
