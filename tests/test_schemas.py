from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import make_payload, trial_payload
from subscription_access.errors import MalformedSubscriptionPayload
from subscription_access.models import Subscription, SubscriptionStatus
from subscription_access.schemas import parse_subscription


def test_parses_camel_case_payload():
    subscription = parse_subscription(make_payload(max_beds=20, max_branches=2, beds_used=7, branches_used=1))

    assert subscription.status is SubscriptionStatus.ACTIVE
    assert subscription.plan_id == "plan-basic"
    assert subscription.restrictions.max_beds == 20
    assert subscription.restrictions.max_branches == 2
    assert subscription.usage.beds_used == 7
    assert subscription.usage.branches_used == 1
    assert "resident_management" in subscription.restrictions.modules


def test_status_is_case_insensitive():
    assert parse_subscription(make_payload(status=" Active ")).status is SubscriptionStatus.ACTIVE


def test_naive_dates_are_treated_as_utc():
    payload = make_payload()
    payload["endDate"] = "2026-04-01T00:00:00"

    subscription = parse_subscription(payload)

    assert subscription.end_date == datetime(2026, 4, 1, tzinfo=timezone.utc)


def test_trial_without_end_date_is_malformed():
    payload = make_payload(status="trial")

    with pytest.raises(MalformedSubscriptionPayload) as exc_info:
        parse_subscription(payload)

    assert exc_info.value.error_code == "MALFORMED_SUBSCRIPTION_PAYLOAD"


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        "active",
        {"planId": "p"},
        {"status": "frozen"},
        {"status": "active", "restrictions": {"maxBeds": -1}},
        {"status": "active", "usage": {"bedsUsed": "many"}},
    ],
)
def test_invalid_payloads_are_malformed(payload):
    with pytest.raises(MalformedSubscriptionPayload):
        parse_subscription(payload)


def test_populated_plan_object():
    payload = trial_payload(days=5)
    payload["planId"] = {"_id": "64f0c2", "planName": "Starter", "price": 0}
    del payload["planName"]

    subscription = parse_subscription(payload)

    assert subscription.plan_id == "64f0c2"
    assert subscription.plan_name == "Starter"
    assert subscription.in_trial is True


def test_module_entries_string_and_object():
    payload = make_payload(
        modules=[
            "room_allocation",
            {"moduleName": "ticket_system", "permissions": {"tickets": {"create": True, "update": False}}},
            {"moduleName": "payment_tracking"},
        ]
    )

    restrictions = parse_subscription(payload).restrictions

    assert restrictions.allows("room_allocation", "rooms", "delete") is True
    assert restrictions.allows("ticket_system", "tickets", "create") is True
    assert restrictions.allows("ticket_system", "tickets", "update") is False
    assert restrictions.allows("ticket_system", "comments", "create") is False
    assert restrictions.allows("payment_tracking", "payments", "update") is True
    assert restrictions.allows("multi_branch", "branch_management", "create") is False


def test_feature_entries_string_and_object():
    payload = make_payload(
        features=["whatsapp_alerts", {"name": "custom_branding", "enabled": True}, {"name": "api_access", "enabled": False}]
    )

    restrictions = parse_subscription(payload).restrictions

    assert restrictions.features == frozenset({"whatsapp_alerts", "custom_branding"})


def test_null_usage_counts_are_zero():
    payload = make_payload()
    payload["usage"] = {"bedsUsed": None, "branchesUsed": None}

    usage = parse_subscription(payload).usage

    assert usage.beds_used == 0
    assert usage.branches_used == 0


def test_unknown_fields_are_ignored():
    payload = make_payload()
    payload["billingCycle"] = "monthly"
    payload["restrictions"]["maxStaff"] = 4

    assert parse_subscription(payload).status is SubscriptionStatus.ACTIVE


def test_subscription_instances_pass_through():
    subscription = parse_subscription(make_payload())

    assert parse_subscription(subscription) is subscription


def test_snapshot_is_immutable():
    subscription = parse_subscription(make_payload())

    with pytest.raises(Exception):
        subscription.status = SubscriptionStatus.EXPIRED
    with pytest.raises(TypeError):
        subscription.restrictions.limits["beds"] = 1000


def test_subscription_requires_aware_dates():
    with pytest.raises(ValueError, match="timezone-aware"):
        Subscription(status="active", end_date=datetime(2026, 1, 1))
