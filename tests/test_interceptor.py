from __future__ import annotations

import httpx
import pytest

from conftest import make_payload
from subscription_access.errors import AccessDenied
from subscription_access.interceptor import action_from_request, install_subscription_gate


def _recording_transport(sent):
    def handler(request):
        sent.append(request)
        return httpx.Response(201, json={"success": True})

    return httpx.MockTransport(handler)


def test_denied_request_never_reaches_transport(access):
    access.initialize(make_payload(max_beds=10, beds_used=10))
    sent = []
    client = install_subscription_gate(
        httpx.Client(base_url="http://pg.test", transport=_recording_transport(sent)), access
    )

    with pytest.raises(AccessDenied) as exc_info:
        client.post("/api/residents", json={"name": "Ravi"})

    assert "beds limit" in exc_info.value.reason
    assert sent == []


def test_allowed_request_is_sent(access):
    access.initialize(make_payload(max_beds=10, beds_used=2))
    sent = []
    client = install_subscription_gate(
        httpx.Client(base_url="http://pg.test", transport=_recording_transport(sent)), access
    )

    response = client.post("/api/residents", json={"name": "Ravi"})

    assert response.status_code == 201
    assert len(sent) == 1


def test_json_body_delta_is_enforced(access):
    access.initialize(make_payload(max_beds=10, beds_used=8))
    sent = []
    client = install_subscription_gate(
        httpx.Client(base_url="http://pg.test", transport=_recording_transport(sent)), access
    )

    with pytest.raises(AccessDenied):
        client.post("/api/residents", json={"additionalBeds": 3})
    client.post("/api/residents", json={"additionalBeds": 2})

    assert len(sent) == 1


def test_existing_request_hooks_are_kept(access):
    access.initialize(make_payload())
    calls = []
    client = httpx.Client(
        base_url="http://pg.test",
        transport=_recording_transport([]),
        event_hooks={"request": [lambda request: calls.append(request.url.path)]},
    )
    install_subscription_gate(client, access)

    client.get("/api/rooms")

    assert calls == ["/api/rooms"]
    assert len(client.event_hooks["request"]) == 2


@pytest.mark.asyncio
async def test_async_client_gate(access):
    sent = []
    async with httpx.AsyncClient(base_url="http://pg.test", transport=_recording_transport(sent)) as client:
        install_subscription_gate(client, access)

        with pytest.raises(AccessDenied) as exc_info:
            await client.post("/api/rooms", json={"number": "101"})
        response = await client.post("/api/auth/login", json={"email": "a@b.c"})

    assert exc_info.value.reason == "no active subscription"
    assert response.status_code == 201
    assert len(sent) == 1


def test_action_from_request_reads_json_payload():
    request = httpx.Request("post", "http://pg.test/api/residents?x=1", json={"additionalBeds": 2})

    action = action_from_request(request)

    assert action.path == "/api/residents"
    assert action.verb == "POST"
    assert action.payload == {"additionalBeds": 2}


def test_action_from_request_ignores_non_json_body():
    request = httpx.Request("POST", "http://pg.test/api/pg/bulk-upload", content=b"a,b,c", headers={"content-type": "text/csv"})

    assert action_from_request(request).payload is None
