from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from subscription_access.access import SubscriptionAccessControl
from subscription_access.audit import reset_deny_counts
from subscription_access.config import AccessControlSettings
from subscription_access.events import SubscriptionEvent

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

ALL_MODULES = [
    "resident_management",
    "payment_tracking",
    "room_allocation",
    "qr_code_payments",
    "ticket_system",
    "analytics_reports",
    "bulk_upload",
]


def make_payload(
    *,
    status: str = "active",
    modules=None,
    features=None,
    max_beds: int = 50,
    max_branches: int = 1,
    beds_used: int = 0,
    branches_used: int = 0,
    trial_end: datetime | None = None,
    end: datetime | None = None,
    is_trial_active: bool = False,
) -> dict:
    payload = {
        "status": status,
        "planId": "plan-basic",
        "planName": "Basic",
        "isTrialActive": is_trial_active or status == "trial",
        "restrictions": {
            "maxBeds": max_beds,
            "maxBranches": max_branches,
            "modules": list(ALL_MODULES if modules is None else modules),
            "features": list(features or []),
        },
        "usage": {"bedsUsed": beds_used, "branchesUsed": branches_used},
    }
    if trial_end is not None:
        payload["trialEndDate"] = trial_end.isoformat()
    if end is not None:
        payload["endDate"] = end.isoformat()
    return payload


def trial_payload(days: float = 10, **kwargs) -> dict:
    return make_payload(status="trial", trial_end=NOW + timedelta(days=days), **kwargs)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings():
    return AccessControlSettings()


@pytest.fixture
def access(settings):
    return SubscriptionAccessControl(role="admin", tenant_id="tenant-1", settings=settings, clock=lambda: NOW)


@pytest.fixture
def recorded(access):
    """Every published event as (name, payload) in order."""
    events = []
    for event in SubscriptionEvent:
        access.subscribe(event, lambda payload, name=event.value: events.append((name, payload)))
    return events


@pytest.fixture(autouse=True)
def _reset_audit_counters():
    reset_deny_counts()
    yield
    reset_deny_counts()
