from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import make_payload
from subscription_access.errors import SubscriptionRefreshError
from subscription_access.refresh import SubscriptionRefresher


class _Timer:
    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _ok(payload):
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": payload})

    return handler


@pytest.mark.asyncio
async def test_refresh_applies_backend_snapshot(access, recorded):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"success": True, "data": make_payload(max_beds=10, beds_used=4)})

    async with _client(handler) as client:
        refresher = SubscriptionRefresher(access, client=client, headers={"Authorization": "Bearer t"})
        applied = await refresher.refresh()

    assert applied is True
    assert access.remaining("beds") == 6
    assert str(seen[0].url) == "http://localhost:5000/api/users/my-subscription"
    assert seen[0].headers["authorization"] == "Bearer t"
    names = [name for name, _ in recorded]
    assert names[-1] == "subscriptionChecked"


@pytest.mark.asyncio
async def test_refresh_is_throttled_unless_forced(access):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"success": True, "data": make_payload()})

    timer = _Timer()
    async with _client(handler) as client:
        refresher = SubscriptionRefresher(access, client=client, timer=timer)
        assert await refresher.refresh() is True
        timer.value = 30
        assert await refresher.refresh() is False
        assert await refresher.refresh(force=True) is True
        timer.value = 100
        assert await refresher.refresh() is True

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_failed_refresh_keeps_last_known_snapshot(access, recorded):
    access.initialize(make_payload(max_beds=10, beds_used=2))

    def handler(request):
        return httpx.Response(503, json={"success": False, "message": "unavailable"})

    async with _client(handler) as client:
        refresher = SubscriptionRefresher(access, client=client)
        applied = await refresher.refresh()

    assert applied is False
    assert access.remaining("beds") == 8
    failures = [payload for name, payload in recorded if name == "subscriptionCheckFailed"]
    assert len(failures) == 1
    assert failures[0]["error"].status_code == 503
    assert refresher.stopped is False


@pytest.mark.asyncio
async def test_unauthorized_stops_periodic_refresh(access):
    def handler(request):
        return httpx.Response(401, json={"success": False, "message": "token expired"})

    async with _client(handler) as client:
        refresher = SubscriptionRefresher(access, client=client)
        await refresher.run_periodic(interval_seconds=1)

    assert refresher.stopped is True


@pytest.mark.asyncio
async def test_network_error_is_reported(access):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        refresher = SubscriptionRefresher(access, client=client)
        with pytest.raises(SubscriptionRefreshError, match="connection refused"):
            await refresher.fetch()


@pytest.mark.asyncio
async def test_unsuccessful_body_is_an_error(access):
    def handler(request):
        return httpx.Response(200, json={"success": False, "message": "No subscription found"})

    async with _client(handler) as client:
        refresher = SubscriptionRefresher(access, client=client)
        with pytest.raises(SubscriptionRefreshError, match="No subscription found"):
            await refresher.fetch()


@pytest.mark.asyncio
async def test_null_data_clears_subscription(access):
    access.initialize(make_payload())

    async with _client(_ok(None)) as client:
        refresher = SubscriptionRefresher(access, client=client)
        assert await refresher.refresh() is True

    assert access.get() is None


@pytest.mark.asyncio
async def test_forced_refresh_does_not_clear_in_flight_marker(access):
    release = asyncio.Event()
    calls = []

    async def handler(request):
        calls.append(request)
        if len(calls) == 1:
            await release.wait()
        return httpx.Response(200, json={"success": True, "data": make_payload()})

    async with _client(handler) as client:
        refresher = SubscriptionRefresher(access, client=client, timer=_Timer())
        slow = asyncio.create_task(refresher.refresh())
        while not calls:
            await asyncio.sleep(0)

        assert await refresher.refresh(force=True) is True
        assert refresher.in_flight is True
        assert await refresher.refresh() is False

        release.set()
        assert await slow is True

    assert refresher.in_flight is False
    assert len(calls) == 2
