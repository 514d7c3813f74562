"""
Outbound request gate for httpx clients.

install_subscription_gate() registers a request event hook so every request
is evaluated before it is sent. A denied request raises AccessDenied and never
reaches the transport.

    client = httpx.Client(base_url="https://pg.example.com")
    install_subscription_gate(client, access)
    client.post("/api/residents", json={...})  # raises AccessDenied when over the bed limit
"""

import json
import logging
from typing import Any, Callable, Optional, Union

import httpx

from .access import SubscriptionAccessControl
from .models import Action

logger = logging.getLogger(__name__)


def action_from_request(request: httpx.Request) -> Action:
    """Describe an httpx request as an Action; JSON bodies become the payload."""
    payload: Optional[Any] = None
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = json.loads(request.content or b"null")
        except (ValueError, httpx.RequestNotRead):
            body = None
        if isinstance(body, dict):
            payload = body
    return Action(path=request.url.path, verb=request.method, payload=payload)


def subscription_request_hook(access: SubscriptionAccessControl) -> Callable[[httpx.Request], None]:
    def _gate(request: httpx.Request) -> None:
        access.enforce(action_from_request(request))

    return _gate


def async_subscription_request_hook(access: SubscriptionAccessControl):
    async def _gate(request: httpx.Request) -> None:
        access.enforce(action_from_request(request))

    return _gate


def install_subscription_gate(
    client: Union[httpx.Client, httpx.AsyncClient],
    access: SubscriptionAccessControl,
) -> Union[httpx.Client, httpx.AsyncClient]:
    """Add the gate as the first request hook of client and return the client."""
    if isinstance(client, httpx.AsyncClient):
        hook = async_subscription_request_hook(access)
    else:
        hook = subscription_request_hook(access)
    hooks = dict(client.event_hooks)
    hooks["request"] = [hook, *hooks.get("request", [])]
    client.event_hooks = hooks
    logger.debug("Installed subscription gate", extra={"tenant_id": access.tenant_id})
    return client
